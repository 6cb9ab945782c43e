from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Union

import sqlalchemy as sa

from .association import BACK_REFERENCE_SUFFIX, Association, JoinKey, join_key, parse_association
from .builder import build_condition, build_delete, key_conditions
from .errors import UsageError


if TYPE_CHECKING:
    from .database import Database
    from .planner import SaveReport
    from .result import Result

    Nested = Union["Row", Sequence["Row"], "Result", None]


def _unchanged(old: Any, new: Any) -> bool:
    # SQL expressions compare into clauses, never into booleans.
    if isinstance(old, sa.ClauseElement) or isinstance(new, sa.ClauseElement):
        return old is new

    return bool(old == new)


class Row:
    """One record of a table: column values, identity, state and associations.

    Columns are read and written explicitly (``get`` / ``set`` / ``unset`` or
    the mapping operators).  Setting a :class:`Row` or a mapping under an
    association name stores nested data instead of a column value::

        post = db.row("post", {
            "title": "Hello",
            "author": {"name": "alice"},
            "categorizationList": [{"category": {"title": "news"}}],
        })
        post.save()

    Nested data and associations resolved by :meth:`referenced` share one slot
    per association name; whichever fills it first is what later calls see.
    """

    __slots__ = (
        "_associations",
        "_data",
        "_db",
        "_dirty",
        "_exists",
        "_original",
        "_result",
        "table",
    )

    def __init__(
        self,
        db: Database,
        table: str,
        data: Mapping[str, Any] | None = None,
        *,
        exists: bool = False,
        result: Result | None = None,
    ) -> None:
        self._db = db
        self.table = table
        self._data: dict[str, Any] = {}
        self._original: dict[str, Any] = {}
        self._dirty: set[str] = set()
        self._associations: dict[str | tuple[str, str], Nested] = {}
        self._exists = exists
        self._result = result

        if data is not None and exists:
            self._data = dict(data)
            self._original = dict(data)
        elif data is not None:
            self.set_data(data)

    @property
    def db(self) -> Database:
        return self._db

    @property
    def exists(self) -> bool:
        return self._exists

    @property
    def dirty(self) -> frozenset[str]:
        return frozenset(self._dirty)

    def is_clean(self) -> bool:
        return not self._dirty

    @property
    def identity(self) -> tuple[Any, ...]:
        """Primary-key values in key-column order."""
        return tuple(self._data.get(c) for c in self._db.schema.primary_key(self.table))

    @property
    def persisted_identity(self) -> tuple[Any, ...]:
        """Primary-key values as last loaded or saved; used to address UPDATE and DELETE."""
        return tuple(self._original.get(c) for c in self._db.schema.primary_key(self.table))

    @property
    def key(self) -> Any:
        """The primary key: a scalar for one column, a tuple for compound keys."""
        identity = self.identity
        return identity[0] if len(identity) == 1 else identity

    # columns

    def get(self, name: str, default: Any = None) -> Any:
        return self._data.get(name, default)

    def __getitem__(self, name: str) -> Any:
        try:
            return self._data[name]
        except KeyError:
            raise KeyError(f"{self.table}.{name} is not set") from None

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def __delitem__(self, name: str) -> None:
        self.unset(name)

    def __contains__(self, name: object) -> bool:
        return name in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def items(self) -> Iterator[tuple[str, Any]]:
        return iter(self._data.items())

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    def set(self, name: str, value: Any) -> Row:
        if self._is_nested(name, value):
            self._associations[name] = self._nest(name, value)
            return self

        self._data[name] = value
        if self._exists and name in self._original and _unchanged(self._original[name], value):
            self._dirty.discard(name)
        else:
            self._dirty.add(name)

        return self

    def unset(self, name: str) -> Row:
        """Remove a column value (written as NULL on update) or nested data."""
        if name in self._associations:
            del self._associations[name]
            return self

        self._data.pop(name, None)
        if self._exists and self._original.get(name) is not None:
            self._dirty.add(name)
        else:
            self._dirty.discard(name)

        return self

    def set_data(self, data: Mapping[str, Any]) -> Row:
        for name, value in data.items():
            self.set(name, value)

        return self

    def _is_nested(self, name: str, value: Any) -> bool:
        from .result import Result

        if isinstance(value, (Row, Mapping)):
            return True

        return name.endswith(BACK_REFERENCE_SUFFIX) and isinstance(value, (list, tuple, Result))

    def _nest(self, name: str, value: Any) -> Nested:
        from .result import Result

        association = parse_association(self._db.schema, name)

        def to_row(item: Any) -> Row:
            if isinstance(item, Row):
                if item.table != association.table:
                    raise UsageError(
                        f"{name!r} expects rows of {association.table!r}, got {item.table!r}"
                    )
                return item

            if isinstance(item, Mapping):
                return Row(self._db, association.table, item)

            raise UsageError(f"Cannot store {item!r} under the association {name!r}")

        if association.is_reference:
            if not isinstance(value, (Row, Mapping)):
                raise UsageError(f"The reference {name!r} takes one row, got {value!r}")
            return to_row(value)

        if isinstance(value, Result):
            return value
        if isinstance(value, Mapping):
            raise UsageError(f"The back-reference {name!r} takes a sequence of rows")

        return [to_row(item) for item in value]

    def nested(self) -> Iterator[tuple[str, Row | Sequence[Row] | Result | None]]:
        """Association slots holding nested or resolved data, by association name."""
        for name, value in self._associations.items():
            if isinstance(name, str):
                yield name, value

    # associations

    def referenced(self, name: str, *, via: str | None = None) -> Any:
        """Resolve association *name* for this row.

        Returns ``Row | None`` for a reference and a :class:`Result` for a
        back-reference.  The lookup is batched over every row of the result
        this row came from and cached in the row's association slot.
        """
        from .result import Result

        slot: str | tuple[str, str] = name if via is None else (name, via)
        if slot in self._associations:
            value = self._associations[slot]
            if isinstance(value, list):
                # rebuilt per call: the scope uses this row's current key
                schema = self._db.schema
                association = parse_association(schema, name)
                return self._children(association, join_key(schema, self.table, association, via), value)
            return value

        source = self._result if self._result is not None else Result.of_rows(self._db, self.table, [self])
        full = source.referenced(name, via=via)
        rows = full.rows_for(self)
        association = full.association
        key = full.join_key
        assert association is not None and key is not None

        value: Nested
        if association.is_reference:
            value = rows[0] if rows else None
        else:
            value = self._children(association, key, rows)

        self._associations[slot] = value
        return value

    def _children(self, association: Association, key: JoinKey, rows: Sequence[Row]) -> Result:
        """An executed result over *rows*, scoped to the rows that point at this one."""
        from .result import Result

        source_value = self.get(key.source_column)
        scope = (
            build_condition(key.target_column, source_value)
            if source_value is not None
            else sa.false()
        )

        return Result.of_rows(self._db, association.table, rows, (scope,))

    # persistence

    def save(self) -> SaveReport:
        """Save this row and every nested row, in foreign-key order."""
        from .planner import Planner

        return Planner(self._db).save(self)

    def update(self, data: Mapping[str, Any]) -> SaveReport:
        return self.set_data(data).save()

    def delete(self) -> int:
        """Delete the row by its persisted primary key.

        Raises:
            UsageError: The row does not exist or its key is incomplete.
        """
        if not self._exists:
            raise UsageError(f"Cannot delete a {self.table!r} row that does not exist")

        schema = self._db.schema
        where = key_conditions(schema.primary_key(self.table), self.persisted_identity)
        count = self._db.execute(build_delete(schema.physical_name(self.table), where)).rowcount

        self._exists = False
        self._original = {}
        self._dirty = set(self._data)
        return count

    def _mark_persisted(self) -> None:
        self._exists = True
        self._original = dict(self._data)
        self._dirty.clear()

    def _fill(self, name: str, value: Any) -> None:
        """Store a generated value without marking it dirty."""
        self._data[name] = value

    def __repr__(self) -> str:
        state = "exists" if self._exists else "new"
        return f"<{type(self).__name__} {self.table!r} {state} {self._data!r}>"
