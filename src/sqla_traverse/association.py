from __future__ import annotations

import enum
from dataclasses import dataclass
from functools import lru_cache
from typing import Final

from .errors import ConfigurationError
from .schema import Schema
from .tools import single_key


BACK_REFERENCE_SUFFIX: Final[str] = "List"


class AssociationKind(enum.Enum):
    # many-to-one, foreign key on the source table
    REFERENCE = "reference"
    # one-to-many, foreign key on the target table
    BACK_REFERENCE = "back_reference"


@dataclass(frozen=True, slots=True)
class Association:
    """A parsed association name such as ``"author"`` or ``"postList"``."""

    kind: AssociationKind
    name: str
    table: str

    @property
    def is_reference(self) -> bool:
        return self.kind is AssociationKind.REFERENCE

    @property
    def label(self) -> str:
        """The name as written by callers, suffix included."""
        return self.name if self.is_reference else f"{self.name}{BACK_REFERENCE_SUFFIX}"


@dataclass(frozen=True, slots=True)
class JoinKey:
    """How source rows and target rows of one association line up.

    ``source_column`` is read from every source row; the collected values are
    matched with ``target_column IN (...)`` on the target table.
    """

    source_column: str
    target_column: str


@lru_cache(maxsize=2048)
def parse_association(schema: Schema, name: str) -> Association:
    """Parse an association name once into its tagged form.

    A trailing ``List`` selects back-reference semantics; the remaining name
    goes through the schema's alias map to find the target table.

    Raises:
        ConfigurationError: Empty name or unknown target table.
    """
    if name.endswith(BACK_REFERENCE_SUFFIX) and len(name) > len(BACK_REFERENCE_SUFFIX):
        kind = AssociationKind.BACK_REFERENCE
        base = name[: -len(BACK_REFERENCE_SUFFIX)]
    else:
        kind = AssociationKind.REFERENCE
        base = name

    if not base:
        raise ConfigurationError(f"Invalid association name {name!r}")

    return Association(kind=kind, name=base, table=schema.resolve_alias(base))


def join_key(
    schema: Schema,
    source_table: str,
    association: Association,
    via: str | None = None,
) -> JoinKey:
    """Compute the join key of *association* starting from *source_table*.

    Reference ``post -> author``: ``post.author_id`` matched against the
    primary key of ``user``.  Back-reference ``user -> postList``: the primary
    key of ``user`` matched against ``post.user_id``.  *via* replaces the
    foreign-key column for this call only.
    """
    if association.is_reference:
        return JoinKey(
            source_column=via or schema.reference_key(source_table, association.name),
            target_column=single_key(schema, association.table),
        )

    return JoinKey(
        source_column=single_key(schema, source_table),
        target_column=via or schema.back_reference_key(source_table, association.name),
    )
