from __future__ import annotations

from typing import Any

import pytest
import sqlalchemy as sa

from sqla_traverse import Database, ResultState, UsageError

from ..conftest import QueryLog


class TestImmutability:
    def test_filters_return_new_results(
        self, db: Database, seed_data: dict[str, list[dict[str, Any]]], query_log: QueryLog
    ) -> None:
        posts = db.table("post")
        rows = posts.fetch_all()

        published = posts.where("published", True)
        ordered = posts.order_by("id", "DESC")

        assert published is not posts
        assert ordered is not posts
        assert all(a is b for a, b in zip(posts.rows, rows))
        assert len(posts) == 3
        assert len(query_log) == 1

    def test_state(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("post")
        assert posts.state is ResultState.UNEXECUTED

        posts.fetch()

        assert posts.state is ResultState.CACHED
        assert posts.where("id", 1).state is ResultState.UNEXECUTED

    def test_rows_remember_their_result(
        self, db: Database, seed_data: dict[str, list[dict[str, Any]]]
    ) -> None:
        post = db.table("post").fetch()

        assert post is not None
        assert post.exists
        assert post.is_clean()
        assert post.table == "post"

    def test_alias_table(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        authors = db.table("author")

        assert authors.table == "user"
        assert len(authors) == 3


class TestWhere:
    def test_mapping(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("post").where({"author_id": 1, "published": True})

        assert [p["id"] for p in posts] == [1]

    def test_operator_in_key(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("post").where({"id >": 1})

        assert sorted(p["id"] for p in posts) == [2, 3]

    def test_column_and_operator(
        self, db: Database, seed_data: dict[str, list[dict[str, Any]]]
    ) -> None:
        assert [p["id"] for p in db.table("post").where("id <=", 1)] == [1]

    def test_fragment_with_positional_params(
        self, db: Database, seed_data: dict[str, list[dict[str, Any]]]
    ) -> None:
        posts = db.table("post").where("id > ? AND author_id = ?", 1, 1)

        assert [p["id"] for p in posts] == [2]

    def test_fragment_with_sequence_param(
        self, db: Database, seed_data: dict[str, list[dict[str, Any]]]
    ) -> None:
        posts = db.table("post").where("id IN ?", [1, 3])

        assert sorted(p["id"] for p in posts) == [1, 3]

    def test_fragment_with_named_params(
        self, db: Database, seed_data: dict[str, list[dict[str, Any]]]
    ) -> None:
        posts = db.table("post").where("title = :title", title="Bob Post 1")

        assert [p["id"] for p in posts] == [3]

    def test_sqlalchemy_clause(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("post").where(sa.column("title").like("Alice%"))

        assert len(posts) == 2

    def test_in_with_null(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("post").where("editor_id", [2, None])

        assert sorted(p["id"] for p in posts) == [1, 2, 3]

    def test_not_in_with_null(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("post").where_not("editor_id", [None])

        assert [p["id"] for p in posts] == [1]

    def test_where_not(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("post").where_not("author_id", 1)

        assert [p["id"] for p in posts] == [3]

    def test_conditions_accumulate(
        self, db: Database, seed_data: dict[str, list[dict[str, Any]]]
    ) -> None:
        posts = db.table("post").where("author_id", 1).where("published", False)

        assert [p["id"] for p in posts] == [2]

    def test_invalid_condition(self, db: Database) -> None:
        with pytest.raises(UsageError):
            db.table("post").where(42)  # type: ignore[arg-type]


class TestShaping:
    def test_select_columns(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        post = db.table("post").select("id", "title").where("id", 3).fetch()

        assert post is not None
        assert post.to_dict() == {"id": 3, "title": "Bob Post 1"}

    def test_order_and_limit(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("post").order_by("id", "DESC").limit(2)

        assert [p["id"] for p in posts] == [3, 2]

    def test_paged(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("post").order_by("id")

        assert [p["id"] for p in posts.paged(2, 1)] == [1, 2]
        assert [p["id"] for p in posts.paged(2, 2)] == [3]
        assert posts.paged(2, 3).fetch_all() == []

    def test_invalid_page(self, db: Database) -> None:
        with pytest.raises(UsageError):
            db.table("post").paged(0, 1)
        with pytest.raises(UsageError):
            db.table("post").limit(-1)

    def test_invalid_direction(self, db: Database) -> None:
        with pytest.raises(UsageError):
            db.table("post").order_by("id", "SIDEWAYS")

    def test_fetch_on_empty(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        assert db.table("post").where("id", 99).fetch() is None


class TestAggregates:
    def test_count(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        assert db.table("post").count() == 3
        assert db.table("post").where("published", True).count() == 2
        assert db.table("post").count("editor_id") == 1

    def test_min_max_sum(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("post")

        assert posts.min("id") == 1
        assert posts.max("id") == 3
        assert posts.sum("id") == 6

    def test_expression(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        assert db.table("post").aggregate("COUNT(DISTINCT author_id)") == 2

    def test_cached_per_expression(
        self, db: Database, seed_data: dict[str, list[dict[str, Any]]], query_log: QueryLog
    ) -> None:
        posts = db.table("post")
        posts.count()
        posts.count()
        posts.max("id")

        assert len(query_log) == 2

    def test_cache_tells_bound_values_apart(
        self, db: Database, seed_data: dict[str, list[dict[str, Any]]]
    ) -> None:
        posts = db.table("post")

        assert posts.aggregate(sa.func.sum(sa.column("id") + 1)) == 9
        assert posts.aggregate(sa.func.sum(sa.column("id") + 100)) == 306

    def test_ignores_limit(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        assert db.table("post").limit(1).count() == 3

    def test_on_association(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("user").where("name", "alice").referenced("postList")

        assert posts.count() == 2
        assert posts.max("id") == 2

    def test_empty_association(
        self, db: Database, seed_data: dict[str, list[dict[str, Any]]], query_log: QueryLog
    ) -> None:
        editors = db.table("post").where("id", 2).referenced("editor")
        editors.count()
        query_log.clear()

        assert editors.max("id") is None
        assert len(query_log) == 0


class TestBulkWrites:
    def test_insert(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        db.table("user").insert([{"name": "dave"}, {"name": "erin"}])
        db.table("user").insert({"name": "frank"})

        names = [u["name"] for u in db.table("user").order_by("id")]
        assert names == ["alice", "bob", "charlie", "dave", "erin", "frank"]

    def test_insert_nothing(self, db: Database, query_log: QueryLog) -> None:
        assert db.table("user").insert([]) == 0
        assert len(query_log) == 0

    def test_update(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        count = db.table("post").where("author_id", 1).update({"published": True})

        assert count == 2
        assert db.table("post").where("published", True).count() == 3

    def test_update_association(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        posts = db.table("user").where("name", "bob").referenced("postList")

        assert posts.update({"title": "Renamed"}) == 1
        assert db.table("post").where("id", 3).fetch()["title"] == "Renamed"  # type: ignore[index]

    def test_delete(self, db: Database, seed_data: dict[str, list[dict[str, Any]]]) -> None:
        assert db.table("categorization").where("post_id", 1).delete() == 2
        assert db.table("categorization").count() == 2

    def test_delete_empty_association(
        self, db: Database, seed_data: dict[str, list[dict[str, Any]]], query_log: QueryLog
    ) -> None:
        posts = db.table("user").where("id", 99).referenced("postList")
        query_log.clear()

        assert posts.delete() == 0
        assert query_log.kinds() == ["SELECT"]

    def test_limit_rejected(self, db: Database) -> None:
        with pytest.raises(UsageError):
            db.table("post").limit(1).delete()
        with pytest.raises(UsageError):
            db.table("post").limit(1).update({"title": "x"})
