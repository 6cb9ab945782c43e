from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest
import sqlalchemy as sa

from sqla_traverse import Database, Schema, sqla_cache_clear

from .models import Base, Categorization, Category, Post, User, make_schema


class QueryLog:
    """Statements sent to the database, recorded through a cursor event."""

    def __init__(self) -> None:
        self.statements: list[str] = []

    def record(
        self,
        conn: sa.Connection,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        self.statements.append(statement)

    def clear(self) -> None:
        self.statements.clear()

    def __len__(self) -> int:
        return len(self.statements)

    def kinds(self) -> list[str]:
        """``"INSERT user"``-style summaries, in execution order."""
        out: list[str] = []
        for statement in self.statements:
            words = statement.replace('"', "").split()
            verb = words[0].upper()
            if verb == "INSERT":
                out.append(f"INSERT {words[2]}")
            elif verb == "UPDATE":
                out.append(f"UPDATE {words[1]}")
            elif verb == "DELETE":
                out.append(f"DELETE {words[2]}")
            else:
                out.append(verb)

        return out


@pytest.fixture(scope="session")
def engine() -> Iterator[sa.Engine]:
    engine = sa.create_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def query_log(engine: sa.Engine) -> Iterator[QueryLog]:
    log = QueryLog()
    listener = log.record
    sa.event.listen(engine, "before_cursor_execute", listener)
    yield log
    sa.event.remove(engine, "before_cursor_execute", listener)


@pytest.fixture
def connection(engine: sa.Engine) -> Iterator[sa.Connection]:
    with engine.connect() as conn:
        trans = conn.begin()
        yield conn
        trans.rollback()


@pytest.fixture
def schema() -> Schema:
    return make_schema()


@pytest.fixture
def db(connection: sa.Connection, schema: Schema) -> Database:
    return Database(connection, schema)


@pytest.fixture
def seed_data(connection: sa.Connection, query_log: QueryLog) -> dict[str, list[dict[str, Any]]]:
    users = [
        {"id": 1, "name": "alice"},
        {"id": 2, "name": "bob"},
        {"id": 3, "name": "charlie"},
    ]
    posts = [
        {"id": 1, "title": "Alice Post 1", "published": True, "author_id": 1, "editor_id": 2},
        {"id": 2, "title": "Alice Post 2", "published": False, "author_id": 1, "editor_id": None},
        {"id": 3, "title": "Bob Post 1", "published": True, "author_id": 2, "editor_id": None},
    ]
    categories = [
        {"id": 1, "title": "news", "parent_id": None},
        {"id": 2, "title": "tech", "parent_id": 1},
        {"id": 3, "title": "life", "parent_id": 1},
    ]
    categorizations = [
        {"post_id": 1, "category_id": 1},
        {"post_id": 1, "category_id": 2},
        {"post_id": 2, "category_id": 2},
        {"post_id": 3, "category_id": 3},
    ]

    connection.execute(sa.insert(User.__table__), users)
    connection.execute(sa.insert(Post.__table__), posts)
    connection.execute(sa.insert(Category.__table__), categories)
    connection.execute(sa.insert(Categorization.__table__), categorizations)
    query_log.clear()

    return {
        "users": users,
        "posts": posts,
        "categories": categories,
        "categorizations": categorizations,
    }


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    sqla_cache_clear()
