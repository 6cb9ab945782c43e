from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import sqlalchemy as sa
from sqlalchemy import orm

from .planner import Planner, SaveReport
from .result import Result
from .row import Row
from .schema import Schema, get_schema


logger = logging.getLogger(__name__)


class Database:
    """Entry point: a connection plus the schema describing its tables.

    The connection is used as given; open, commit and roll back transactions
    around the calls that need them::

        with engine.begin() as connection:
            db = Database(connection, get_schema(Base).with_alias("author", "user"))
            for post in db.table("post").where("published", True):
                print(post["title"], post.referenced("author")["name"])
    """

    __slots__ = ("_connection", "_schema")

    def __init__(self, connection: sa.Connection, schema: Schema | None = None) -> None:
        self._connection = connection
        self._schema = schema if schema is not None else Schema()

    @classmethod
    def from_base(
        cls, connection: sa.Connection, base: sa.MetaData | type[orm.DeclarativeBase]
    ) -> Database:
        """Build the schema from SQLAlchemy metadata; see :func:`get_schema`."""
        return cls(connection, get_schema(base))

    @property
    def connection(self) -> sa.Connection:
        return self._connection

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def supports_returning(self) -> bool:
        return bool(getattr(self._connection.dialect, "insert_returning", False))

    def table(self, name: str) -> Result:
        """A result over every row of table (or alias) *name*."""
        return Result.from_table(self, self._schema.resolve_alias(name))

    def row(self, name: str, data: Mapping[str, Any] | None = None) -> Row:
        """A new, unsaved row; *data* may contain nested association data."""
        return Row(self, self._schema.resolve_alias(name), data)

    def save(self, row: Row) -> SaveReport:
        return Planner(self).save(row)

    @staticmethod
    def literal(sql: str) -> sa.ColumnElement[Any]:
        """Mark *sql* as an expression that is written into statements verbatim."""
        return sa.literal_column(sql)

    def execute(
        self,
        statement: sa.Executable,
        parameters: Sequence[Mapping[str, Any]] | Mapping[str, Any] | None = None,
    ) -> sa.CursorResult[Any]:
        """Run one statement; every query and write of the package goes through here."""
        logger.debug("Executing %s", statement)

        return self._connection.execute(statement, parameters)
