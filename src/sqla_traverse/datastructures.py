from __future__ import annotations

import sys
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


K = TypeVar("K")
V = TypeVar("V")


class frozendict(Mapping[K, V]):  # noqa: N801
    """Hashable, read-only mapping used for schema configuration.

    Every :class:`~sqla_traverse.schema.Schema` field is a ``frozendict`` so
    the schema itself can be hashed and used as an ``lru_cache`` key.  Keys may
    be any hashable value; the schema uses ``(table, association)`` tuples.

    Changes never happen in place: :meth:`merge` returns a new instance.

    Example:
        >>> keys = frozendict({("post", "author"): "author_id"})
        >>> keys.merge({("post", "editor"): "editor_id"})[("post", "editor")]
        'editor_id'
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: object) -> bool:
        return key in self._dict

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def merge(self, other: Mapping[K, V] | Iterable[tuple[K, V]] = (), /) -> Self:
        """Return a copy with the items of *other* added or replaced."""
        merged = dict(self._dict)
        merged.update(other)
        return type(self)(merged)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        # Hashed lazily: values are only required to be hashable once the
        # mapping is actually used as a key.
        if self._hash is None:
            self._hash = hash(frozenset(self._dict.items()))

        return self._hash
