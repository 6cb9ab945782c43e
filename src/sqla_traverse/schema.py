from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from typing import Final

import sqlalchemy as sa
from sqlalchemy import orm

from .datastructures import frozendict
from .errors import ConfigurationError


DEFAULT_PRIMARY_KEY: Final[tuple[str, ...]] = ("id",)


@dataclass(frozen=True, slots=True)
class Schema:
    """Immutable table metadata consumed by the resolver and the planner.

    A schema is built once during setup, either from SQLAlchemy metadata via
    :func:`get_schema` or by chaining the ``with_*`` builders, and is
    read-only afterwards.  Every builder returns a new ``Schema``.

    Conventions applied when nothing is configured:

    * primary key of every table is ``("id",)``;
    * the reference ``post -> author`` is stored in ``post.author_id``;
    * the back-reference ``user -> postList`` is stored in ``post.user_id``;
    * an association name is also its table name unless an alias maps it.

    When ``tables`` is non-empty, association targets outside it are
    rejected with :class:`~sqla_traverse.errors.ConfigurationError`.

    Example:
        >>> schema = (
        ...     Schema()
        ...     .with_alias("author", "user")
        ...     .with_required("post", "author_id")
        ...     .with_primary("categorization", "post_id", "category_id")
        ... )
        >>> schema.resolve_alias("author")
        'user'
    """

    tables: frozenset[str] = frozenset()
    aliases: frozendict[str, str] = field(default_factory=frozendict)
    primary_keys: frozendict[str, tuple[str, ...]] = field(default_factory=frozendict)
    references: frozendict[tuple[str, str], str] = field(default_factory=frozendict)
    back_references: frozendict[tuple[str, str], str] = field(default_factory=frozendict)
    required: frozendict[str, frozenset[str]] = field(default_factory=frozendict)
    rewrite: Callable[[str], str] | None = None

    # builders

    def with_tables(self, *tables: str) -> Schema:
        """Declare known tables; enables validation of association targets."""
        return replace(self, tables=self.tables | frozenset(tables))

    def with_alias(self, alias: str, table: str) -> Schema:
        return replace(self, aliases=self.aliases.merge({alias: table}))

    def with_primary(self, table: str, *columns: str) -> Schema:
        if not columns:
            raise ConfigurationError(f"Primary key of {table!r} needs at least one column")

        return replace(self, primary_keys=self.primary_keys.merge({table: tuple(columns)}))

    def with_reference(self, table: str, name: str, key: str) -> Schema:
        """Store the reference *name* of *table* in column *key* of *table*."""
        return replace(self, references=self.references.merge({(table, name): key}))

    def with_back_reference(self, table: str, name: str, key: str) -> Schema:
        """Match the back-reference *name* of *table* on column *key* of the target."""
        return replace(
            self, back_references=self.back_references.merge({(table, name): key})
        )

    def with_required(self, table: str, *columns: str) -> Schema:
        current = self.required.get(table, frozenset())
        return replace(
            self, required=self.required.merge({table: current | frozenset(columns)})
        )

    def with_rewrite(self, rewrite: Callable[[str], str] | None) -> Schema:
        return replace(self, rewrite=rewrite)

    # lookups

    def resolve_alias(self, name: str) -> str:
        """Map an association or alias name to its logical table name."""
        table = self.aliases.get(name, name)
        if self.tables and table not in self.tables:
            raise ConfigurationError(
                f"Unknown table {table!r}"
                + (f" (alias {name!r})" if table != name else "")
                + f". Known tables: {sorted(self.tables)}"
            )

        return table

    def physical_name(self, table: str) -> str:
        """Apply the rewrite function to a logical table name."""
        return self.rewrite(table) if self.rewrite is not None else table

    def resolve_table(self, name: str) -> str:
        """Alias, then rewrite: the table name used in SQL."""
        return self.physical_name(self.resolve_alias(name))

    def primary_key(self, table: str) -> tuple[str, ...]:
        return self.primary_keys.get(table, DEFAULT_PRIMARY_KEY)

    def reference_key(self, table: str, name: str) -> str:
        return self.references.get((table, name), f"{name}_id")

    def back_reference_key(self, table: str, name: str) -> str:
        return self.back_references.get((table, name), f"{table}_id")

    def required_columns(self, table: str) -> frozenset[str]:
        return self.required.get(table, frozenset())

    def is_required(self, table: str, column: str) -> bool:
        return column in self.required_columns(table)


def _foreign_key_links(
    tables: Iterable[sa.Table],
) -> dict[tuple[str, str], set[str]]:
    """Group foreign-key columns by ``(holding table, referenced table)``."""
    links: defaultdict[tuple[str, str], set[str]] = defaultdict(set)
    for table in tables:
        for fk in table.foreign_keys:
            links[(table.name, fk.column.table.name)].add(fk.parent.name)

    return links


def get_schema(source: sa.MetaData | type[orm.DeclarativeBase]) -> Schema:
    """Build a :class:`Schema` from SQLAlchemy table metadata.

    Introspects every table of *source* (a ``MetaData`` or a declarative base)
    and records:

    * the table set, so unknown association targets fail fast;
    * primary keys, including compound ones;
    * required columns: non-nullable columns carrying a foreign key;
    * reference and back-reference keys for every pair of tables linked by
      exactly one foreign-key column.  Pairs linked through several columns
      (``message.from_user_id`` / ``message.to_user_id``) are ambiguous and
      left to explicit ``with_reference`` / ``with_back_reference`` calls.

    Args:
        source: ``sa.MetaData`` or a subclass of ``orm.DeclarativeBase``.

    Returns:
        A new schema; chain ``with_*`` calls on it for aliases and overrides.
    """
    if isinstance(source, sa.MetaData):
        metadata = source
    elif isinstance(source, type) and issubclass(source, orm.DeclarativeBase):
        metadata = source.metadata
    else:
        raise TypeError(f"Expected MetaData or a declarative base, got {source!r}")

    tables = list(metadata.tables.values())
    primary_keys = {
        table.name: tuple(column.name for column in table.primary_key.columns)
        for table in tables
        if len(table.primary_key.columns)
    }
    required = {
        table.name: frozenset(
            column.name for column in table.columns if column.foreign_keys and not column.nullable
        )
        for table in tables
    }

    references: dict[tuple[str, str], str] = {}
    back_references: dict[tuple[str, str], str] = {}
    for (holder, target), columns in _foreign_key_links(tables).items():
        if len(columns) != 1:
            continue

        (column,) = columns
        references[(holder, target)] = column
        back_references[(target, holder)] = column

    return Schema(
        tables=frozenset(table.name for table in tables),
        primary_keys=frozendict(primary_keys),
        references=frozendict(references),
        back_references=frozendict(back_references),
        required=frozendict({name: cols for name, cols in required.items() if cols}),
    )
