from __future__ import annotations

import enum
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa

from .association import Association, JoinKey, join_key, parse_association
from .builder import (
    Clause,
    build_condition,
    build_delete,
    build_insert,
    build_order,
    build_select,
    build_update,
    build_where,
    column,
)
from .errors import ConfigurationError, UsageError
from .row import Row
from .tools import distinct_values, partition


if TYPE_CHECKING:
    from .database import Database


class ResultState(enum.Enum):
    UNEXECUTED = "unexecuted"
    EXECUTING = "executing"
    CACHED = "cached"


@dataclass(frozen=True, slots=True)
class _Query:
    table: str
    conditions: tuple[Clause, ...] = ()
    columns: tuple[sa.ColumnElement[Any], ...] = ()
    order_by: tuple[sa.ColumnElement[Any], ...] = ()
    limit: int | None = None
    offset: int | None = None


@dataclass(frozen=True, slots=True)
class _Origin:
    parent: Result
    association: Association
    key: JoinKey
    via: str | None = None


class Result:
    """Immutable, lazily executed SELECT over one table.

    Filter calls (``where``, ``where_not``, ``select``, ``order_by``,
    ``limit``, ``paged``) return new instances; the receiver and its cached
    rows are never touched.  The first call that needs rows executes exactly
    one query and caches the rows on that instance.

    ``referenced(name)`` resolves an association for every row of the result
    at once: the association result is memoized on its parent, executes one
    ``IN (...)`` query and is then partitioned per source row, so a
    traversal ``users -> postList -> categorizationList -> category`` costs
    four queries no matter how many rows each level holds::

        for user in db.table("user"):
            for post in user.referenced("postList"):
                for link in post.referenced("categorizationList"):
                    print(user["name"], post["title"], link.referenced("category")["title"])
    """

    __slots__ = (
        "_aggregates",
        "_db",
        "_index",
        "_origin",
        "_query",
        "_references",
        "_rows",
        "_state",
    )

    def __init__(
        self,
        db: Database,
        query: _Query,
        origin: _Origin | None = None,
        rows: Sequence[Row] | None = None,
    ) -> None:
        self._db = db
        self._query = query
        self._origin = origin
        self._references: dict[tuple[str, str | None], Result] = {}
        self._aggregates: dict[str, Any] = {}
        self._index: Mapping[Any, Sequence[Row]] | None = None
        self._rows: list[Row] | None = None
        self._state = ResultState.UNEXECUTED

        if rows is not None:
            self._rows = list(rows)
            self._state = ResultState.CACHED

    @classmethod
    def from_table(cls, db: Database, table: str) -> Result:
        return cls(db, _Query(table=table))

    @classmethod
    def of_rows(
        cls,
        db: Database,
        table: str,
        rows: Sequence[Row],
        conditions: Sequence[Clause] = (),
    ) -> Result:
        """A result that is already executed and holds *rows*.

        *conditions* describe the rows so further filtering re-queries the
        right subset.
        """
        return cls(db, _Query(table=table, conditions=tuple(conditions)), rows=rows)

    @property
    def db(self) -> Database:
        return self._db

    @property
    def table(self) -> str:
        return self._query.table

    @property
    def state(self) -> ResultState:
        return self._state

    @property
    def association(self) -> Association | None:
        return self._origin.association if self._origin is not None else None

    @property
    def join_key(self) -> JoinKey | None:
        return self._origin.key if self._origin is not None else None

    # query specification

    def _derive(self, **changes: Any) -> Result:
        return type(self)(self._db, replace(self._query, **changes), self._origin)

    def where(
        self,
        condition: str | Mapping[str, Any] | Clause,
        *args: Any,
        **params: Any,
    ) -> Result:
        """Add a condition; see :func:`~sqla_traverse.builder.build_where` for the forms."""
        clauses = build_where(condition, args, params)

        return self._derive(conditions=(*self._query.conditions, *clauses))

    def where_not(
        self,
        condition: str | Mapping[str, Any] | Clause,
        *args: Any,
        **params: Any,
    ) -> Result:
        clauses = build_where(condition, args, params, negate=True)

        return self._derive(conditions=(*self._query.conditions, *clauses))

    def select(self, *columns: str | sa.ColumnElement[Any]) -> Result:
        """Restrict the selected columns; plain strings that are not identifiers are SQL."""
        selected = tuple(column(c) if isinstance(c, str) else c for c in columns)

        return self._derive(columns=(*self._query.columns, *selected))

    def order_by(self, name: str | sa.ColumnElement[Any], direction: str = "ASC") -> Result:
        return self._derive(order_by=(*self._query.order_by, build_order(name, direction)))

    def limit(self, count: int, offset: int | None = None) -> Result:
        if self._origin is not None:
            raise ConfigurationError(
                f"LIMIT is ambiguous on the association {self._origin.association.label!r}; "
                "it would apply to all source rows together"
            )
        if count < 0 or (offset is not None and offset < 0):
            raise UsageError(f"Invalid limit {count!r} / offset {offset!r}")

        return self._derive(limit=count, offset=offset)

    def paged(self, page_size: int, page: int) -> Result:
        """Page *page* (starting at 1) of *page_size* rows."""
        if page < 1 or page_size < 1:
            raise UsageError(f"Invalid page {page!r} of size {page_size!r}")

        return self.limit(page_size, (page - 1) * page_size)

    def via(self, key: str) -> Result:
        """Re-derive this association with *key* as its foreign-key column.

        Filters and ordering are kept; the schema is not changed.
        """
        if self._origin is None:
            raise UsageError("via() only applies to association results")

        origin = self._origin
        parent_table = origin.parent.table
        return type(self)(
            self._db,
            self._query,
            replace(
                origin,
                key=join_key(self._db.schema, parent_table, origin.association, key),
                via=key,
            ),
        )

    # execution

    def _scope(self) -> tuple[Clause, ...] | None:
        """Conditions of the query, or ``None`` when no row can match."""
        if self._origin is None:
            return self._query.conditions

        values = distinct_values(self._origin.parent.fetch_all(), self._origin.key.source_column)
        if not values:
            return None

        return (*self._query.conditions, build_condition(self._origin.key.target_column, values))

    def _physical_table(self) -> str:
        return self._db.schema.physical_name(self._query.table)

    def _execute(self) -> list[Row]:
        if self._state is ResultState.CACHED:
            assert self._rows is not None
            return self._rows

        if self._state is ResultState.EXECUTING:
            raise UsageError(f"Result over {self.table!r} is already executing")

        self._state = ResultState.EXECUTING
        try:
            self._rows = self._load()
        finally:
            self._state = ResultState.CACHED if self._rows is not None else ResultState.UNEXECUTED

        return self._rows

    def _load(self) -> list[Row]:
        if (conditions := self._scope()) is None:
            return []

        query = self._query
        statement = build_select(
            self._physical_table(),
            conditions,
            query.columns,
            query.order_by,
            query.limit,
            query.offset,
        )

        return [
            Row(self._db, query.table, data, exists=True, result=self)
            for data in self._db.execute(statement).mappings()
        ]

    @property
    def rows(self) -> list[Row]:
        return self._execute()

    def fetch_all(self) -> list[Row]:
        return list(self._execute())

    def fetch(self) -> Row | None:
        """The first row, or ``None``."""
        rows = self._execute()
        return rows[0] if rows else None

    def __iter__(self) -> Iterator[Row]:
        return iter(self._execute())

    def __len__(self) -> int:
        return len(self._execute())

    def __getitem__(self, index: int) -> Row:
        return self._execute()[index]

    def __repr__(self) -> str:
        label = f" via {self._origin.association.label!r}" if self._origin is not None else ""
        return f"<{type(self).__name__} {self.table!r}{label} {self._state.value}>"

    # aggregates

    def aggregate(self, expression: str | sa.ColumnElement[Any]) -> Any:
        """Evaluate an aggregate expression over the rows this result describes.

        Limit and offset do not apply.  The value is cached per expression
        and its bound parameter values.
        """
        element = sa.literal_column(expression) if isinstance(expression, str) else expression
        compiled = element.compile()
        cache_key = f"{compiled} {sorted(compiled.params.items())!r}"
        if cache_key in self._aggregates:
            return self._aggregates[cache_key]

        if (conditions := self._scope()) is None:
            value = None
        else:
            statement = build_select(self._physical_table(), conditions, (element,))
            value = self._db.execute(statement).scalar()

        self._aggregates[cache_key] = value
        return value

    def count(self, name: str = "*") -> int:
        target = sa.literal_column("*") if name == "*" else column(name)
        return int(self.aggregate(sa.func.count(target)) or 0)

    def min(self, name: str) -> Any:
        return self.aggregate(sa.func.min(column(name)))

    def max(self, name: str) -> Any:
        return self.aggregate(sa.func.max(column(name)))

    def sum(self, name: str) -> Any:
        return self.aggregate(sa.func.sum(column(name)))

    # bulk writes

    def insert(self, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> int:
        """Insert plain rows into the table; nested data is not followed."""
        if isinstance(rows, Mapping):
            result = self._db.execute(build_insert(self._physical_table(), rows))
            return result.rowcount

        rows = list(rows)
        if not rows:
            return 0

        return self._db.execute(build_insert(self._physical_table(), rows), rows).rowcount

    def update(self, values: Mapping[str, Any]) -> int:
        """Update every row matching the conditions; returns the row count."""
        self._check_bulk("update")
        if (conditions := self._scope()) is None:
            return 0

        return self._db.execute(build_update(self._physical_table(), values, conditions)).rowcount

    def delete(self) -> int:
        """Delete every row matching the conditions; returns the row count."""
        self._check_bulk("delete")
        if (conditions := self._scope()) is None:
            return 0

        return self._db.execute(build_delete(self._physical_table(), conditions)).rowcount

    def _check_bulk(self, kind: str) -> None:
        if self._query.limit is not None or self._query.offset:
            raise UsageError(f"Bulk {kind} cannot honour LIMIT/OFFSET")

    # associations

    def referenced(self, name: str, *, via: str | None = None) -> Result:
        """Resolve association *name* for all rows of this result.

        ``"author"`` follows a reference, ``"postList"`` a back-reference.
        The returned result is memoized per ``(name, via)``.

        Raises:
            ConfigurationError: Unknown association or compound key.
        """
        cache_key = (name, via)
        if (cached := self._references.get(cache_key)) is not None:
            return cached

        schema = self._db.schema
        association = parse_association(schema, name)
        origin = _Origin(
            parent=self,
            association=association,
            key=join_key(schema, self.table, association, via),
            via=via,
        )
        result = type(self)(self._db, _Query(table=association.table), origin)
        self._references[cache_key] = result

        return result

    def rows_for(self, row: Row) -> Sequence[Row]:
        """The rows of this association result that belong to source *row*."""
        if self._origin is None:
            raise UsageError("rows_for() only applies to association results")

        value = row.get(self._origin.key.source_column)
        if value is None:
            return ()

        if self._index is None:
            self._index = partition(self._execute(), self._origin.key.target_column)

        return self._index.get(value, ())
