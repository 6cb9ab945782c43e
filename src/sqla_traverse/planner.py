from __future__ import annotations

import enum
import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .association import parse_association
from .builder import build_insert, build_update, key_conditions
from .errors import ConfigurationError
from .graph import DependencyGraph
from .row import Row
from .tools import single_key


if TYPE_CHECKING:
    from .database import Database

logger = logging.getLogger(__name__)


class WriteKind(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"


@dataclass(frozen=True, slots=True)
class WriteOperation:
    kind: WriteKind
    table: str
    values: Mapping[str, Any]
    identity: tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class SaveReport:
    """Statements executed by one ``save`` call, in execution order."""

    operations: tuple[WriteOperation, ...] = ()
    # (table, primary key) of every inserted row
    identities: tuple[tuple[str, tuple[Any, ...]], ...] = ()

    def __len__(self) -> int:
        return len(self.operations)

    @property
    def tables(self) -> tuple[str, ...]:
        return tuple(op.table for op in self.operations)


@dataclass(frozen=True, slots=True)
class _Link:
    """``source.column`` holds the primary key ``target.target_column``."""

    source: int
    target: int
    column: str
    target_column: str
    required: bool


class Planner:
    """Saves a tree of rows with one INSERT or UPDATE per changed row.

    ``save`` runs in four steps:

    1. flatten the nested association slots into graph nodes and links;
       a reference ``post.author`` links ``post.author_id`` to the author's
       key, a back-reference ``post.categorizationList`` links every child's
       ``post_id`` to the post's key;
    2. order the nodes by their *required* links; non-required links never
       order anything, so mutual optional references cannot deadlock;
    3. validate that every new row's required columns will get a value;
    4. write rows in order, copying known keys into foreign-key columns.  A
       non-required link whose target is not written yet is left NULL and
       patched with an UPDATE as soon as the target has its key.

    No transaction is opened here: statements run on the caller's connection
    in order, and a failure leaves earlier statements to the caller's
    rollback.
    """

    __slots__ = ("_db", "_deferred", "_graph", "_identities", "_links", "_operations", "_outgoing")

    def __init__(self, db: Database) -> None:
        self._db = db
        self._graph: DependencyGraph[Row] = DependencyGraph()
        self._links: list[_Link] = []
        self._outgoing: defaultdict[int, list[_Link]] = defaultdict(list)
        self._deferred: defaultdict[int, list[_Link]] = defaultdict(list)
        self._operations: list[WriteOperation] = []
        self._identities: list[tuple[str, tuple[Any, ...]]] = []

    def save(self, root: Row) -> SaveReport:
        self._flatten(root)
        order = self._graph.sort(label=lambda row: row.table)
        self._validate()

        logger.debug(
            "Saving %d row(s) in order %s", len(order), [self._graph[i].table for i in order]
        )
        for index in order:
            self._write(index)

        return SaveReport(operations=tuple(self._operations), identities=tuple(self._identities))

    def _flatten(self, root: Row) -> None:
        schema = self._db.schema
        pending: list[tuple[Row, Row, str]] = []
        stack = [root]

        while stack:
            row = stack.pop()
            _, created = self._graph.add(row)
            if not created:
                continue

            children: list[Row] = []
            for name, value in row.nested():
                association = parse_association(schema, name)
                if association.is_reference:
                    if isinstance(value, Row):
                        pending.append((row, value, schema.reference_key(row.table, association.name)))
                        children.append(value)
                    continue

                if value is None:
                    continue

                column = schema.back_reference_key(row.table, association.name)
                for child in value:
                    pending.append((child, row, column))
                    children.append(child)

            stack.extend(reversed([child for child in children if child not in self._graph]))

        for source, target, column in pending:
            link = _Link(
                source=self._graph.index(source),
                target=self._graph.index(target),
                column=column,
                target_column=single_key(schema, target.table),
                required=schema.is_required(source.table, column),
            )
            self._links.append(link)
            self._outgoing[link.source].append(link)
            if link.required:
                self._graph.require(link.source, link.target)

    def _validate(self) -> None:
        schema = self._db.schema
        for index, row in enumerate(self._graph):
            linked = {link.column for link in self._outgoing[index]}
            for column in sorted(schema.required_columns(row.table)):
                if column in linked:
                    continue

                if row.get(column) is None and (not row.exists or column in row.dirty):
                    raise ConfigurationError(
                        f"Required column {row.table}.{column} has no value "
                        "and no row in the saved tree supplies it"
                    )

    def _write(self, index: int) -> None:
        row = self._graph[index]

        for link in self._outgoing[index]:
            target = self._graph[link.target]
            value = target.get(link.target_column)
            if target.exists and value is not None:
                row.set(link.column, value)
            elif link.required:
                raise ConfigurationError(
                    f"{target.table!r} row has no key for required column {row.table}.{link.column}"
                )
            else:
                self._deferred[link.target].append(link)

        self._persist(row)

        for link in self._deferred.pop(index, ()):
            source = self._graph[link.source]
            source.set(link.column, row.get(link.target_column))
            self._persist(source)

    def _persist(self, row: Row) -> None:
        if row.exists:
            if row.is_clean():
                return

            self._update(row)
        else:
            self._insert(row)

        row._mark_persisted()  # noqa: SLF001

    def _update(self, row: Row) -> None:
        schema = self._db.schema
        dirty = row.dirty
        values = {name: row.get(name) for name in row if name in dirty}
        values.update({name: None for name in dirty if name not in row})
        where = key_conditions(schema.primary_key(row.table), row.persisted_identity)

        self._db.execute(build_update(schema.physical_name(row.table), values, where))
        self._operations.append(
            WriteOperation(WriteKind.UPDATE, row.table, values, row.persisted_identity)
        )

    def _insert(self, row: Row) -> None:
        schema = self._db.schema
        primary = schema.primary_key(row.table)
        values = row.to_dict()

        generated = primary[0] if len(primary) == 1 and values.get(primary[0]) is None else None
        if generated is not None:
            values.pop(generated, None)

        returning = (generated,) if generated is not None and self._db.supports_returning else ()
        result = self._db.execute(
            build_insert(schema.physical_name(row.table), values, returning=returning)
        )

        if generated is not None:
            key = result.scalar_one() if returning else result.lastrowid
            row._fill(generated, key)  # noqa: SLF001

        self._operations.append(WriteOperation(WriteKind.INSERT, row.table, values, row.identity))
        self._identities.append((row.table, row.identity))
