from __future__ import annotations

from collections import defaultdict
from collections.abc import Hashable, Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

from .errors import ConfigurationError


if TYPE_CHECKING:
    from .row import Row
    from .schema import Schema

_R = TypeVar("_R", bound="Row")


def single_key(schema: Schema, table: str) -> str:
    """Return the primary-key column of *table*, which must not be compound.

    Associations and generated keys are matched on exactly one column.

    Raises:
        ConfigurationError: If the table's primary key spans several columns.
    """
    primary = schema.primary_key(table)
    if len(primary) != 1:
        raise ConfigurationError(
            f"Table {table!r} has the compound primary key {primary}; "
            "associations pointing at it need a single-column key"
        )

    return primary[0]


def distinct_values(rows: Iterable[Row], column: str) -> list[Any]:
    """Distinct non-null values of *column*, in order of first appearance."""
    values: dict[Any, None] = {}
    for row in rows:
        value = row.get(column)
        if value is not None and isinstance(value, Hashable):
            values.setdefault(value, None)

    return list(values)


def partition(rows: Iterable[_R], column: str) -> Mapping[Any, Sequence[_R]]:
    """Group *rows* by their value of *column*, keeping row order per group."""
    groups: defaultdict[Any, list[_R]] = defaultdict(list)
    for row in rows:
        value = row.get(column)
        if value is not None:
            groups[value].append(row)

    return dict(groups)


def sqla_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for all internal caches."""
    from .association import parse_association
    from .builder import column

    return {fn.__name__: fn.cache_info() for fn in (parse_association, column)}


def sqla_cache_clear() -> None:
    """Clear all internal LRU caches."""
    from .association import parse_association
    from .builder import column

    for fn in (parse_association, column):
        fn.cache_clear()
