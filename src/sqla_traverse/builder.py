from __future__ import annotations

import itertools
import operator
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from functools import lru_cache
from typing import Any, Final

import sqlalchemy as sa

from .errors import UsageError


Clause = sa.ColumnElement[bool] | sa.TextClause

_IDENTIFIER: Final = re.compile(r"^[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)?$")
_COLUMN_OPERATOR: Final = re.compile(
    r"^\s*(?P<column>[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)?)(?:\s*(?P<op>[=!<>]+))?\s*$"
)
_NAMED_PARAM: Final = re.compile(r"(?<![:\w]):(\w+)")

_OPERATORS: Final[dict[str, Callable[[Any, Any], Any]]] = {
    "=": operator.eq,
    "!=": operator.ne,
    "<>": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}
_DIRECTIONS: Final = frozenset({"ASC", "DESC"})
_SEQUENCE_TYPES: Final = (list, tuple, set, frozenset)

# Positional parameters become uniquely named binds so several raw fragments
# can live in one statement.
_bind_names = itertools.count()


@lru_cache(maxsize=1024)
def column(name: str) -> sa.ColumnElement[Any]:
    """Column reference for *name*; anything that is not an identifier is literal SQL."""
    if _IDENTIFIER.match(name):
        return sa.literal_column(name) if "." in name else sa.column(name)

    return sa.literal_column(name)


def table(name: str, columns: Iterable[str] = ()) -> sa.TableClause:
    return sa.table(name, *(sa.column(c) for c in dict.fromkeys(columns)))


def build_condition(
    name: str,
    value: Any,
    *,
    op: str = "=",
    negate: bool = False,
) -> sa.ColumnElement[bool]:
    """Render one column condition.

    * ``None`` becomes ``IS NULL`` (``IS NOT NULL`` when negated);
    * a list, tuple or set becomes ``IN``.  ``None`` inside the sequence is
      split out: ``(col IN (...) OR col IS NULL)``, negated
      ``(col NOT IN (...) AND col IS NOT NULL)``;
    * anything else is compared with *op*.

    Raises:
        UsageError: Unknown operator, or an operator other than ``=`` combined
            with ``None`` or a sequence.
    """
    if (comparator := _OPERATORS.get(op)) is None:
        raise UsageError(f"Invalid operator {op!r}; expected one of {sorted(_OPERATORS)}")

    col = column(name)

    if value is None or isinstance(value, _SEQUENCE_TYPES):
        if op != "=":
            raise UsageError(f"Operator {op!r} cannot be used with {value!r} on {name!r}")

    if value is None:
        return col.is_not(None) if negate else col.is_(None)

    if isinstance(value, _SEQUENCE_TYPES):
        values = list(value)
        present = [v for v in values if v is not None]
        has_null = len(present) != len(values)

        if negate:
            clause = col.not_in(present)
            if has_null:
                clause = sa.and_(clause, col.is_not(None)) if present else col.is_not(None)
        else:
            clause = col.in_(present)
            if has_null:
                clause = sa.or_(clause, col.is_(None)) if present else col.is_(None)

        return clause

    clause = comparator(col, value)

    return sa.not_(clause) if negate else clause


def build_expression(
    fragment: str,
    args: Sequence[Any] = (),
    params: Mapping[str, Any] | None = None,
    *,
    negate: bool = False,
) -> sa.TextClause:
    """Render a raw SQL fragment with positional ``?`` or named ``:name`` parameters.

    Sequence values expand to a parenthesised list: ``"id IN ?"`` with
    ``[1, 2]`` renders ``id IN (1, 2)``.

    Raises:
        UsageError: Positional and named parameters are mixed, or the number of
            values does not match the placeholders.
    """
    params = params or {}
    if args and params:
        raise UsageError("Cannot mix positional and named parameters in one fragment")

    placeholders = fragment.count("?")
    binds: list[sa.BindParameter[Any]] = []

    if placeholders or args:
        if placeholders != len(args):
            raise UsageError(
                f"Fragment {fragment!r} has {placeholders} placeholder(s) "
                f"but {len(args)} parameter(s) were given"
            )

        head, *tail = fragment.split("?")
        parts = [head]
        for value, rest in zip(args, tail):
            name = f"p_{next(_bind_names)}"
            parts.append(f":{name}{rest}")
            binds.append(_bind(name, value))

        fragment = "".join(parts)
    else:
        expected = set(_NAMED_PARAM.findall(fragment))
        if expected != set(params):
            raise UsageError(
                f"Fragment {fragment!r} expects parameters {sorted(expected)}, "
                f"got {sorted(params)}"
            )

        binds = [_bind(name, value) for name, value in params.items()]

    if negate:
        fragment = f"NOT ({fragment})"

    return sa.text(fragment).bindparams(*binds)


def _bind(name: str, value: Any) -> sa.BindParameter[Any]:
    if isinstance(value, _SEQUENCE_TYPES):
        return sa.bindparam(name, list(value), expanding=True)

    return sa.bindparam(name, value)


def build_where(
    condition: str | Mapping[str, Any] | Clause,
    args: Sequence[Any] = (),
    params: Mapping[str, Any] | None = None,
    *,
    negate: bool = False,
) -> tuple[Clause, ...]:
    """Translate the arguments of ``Result.where`` into clauses.

    Accepted forms::

        where("title", "Hello")             # column = value
        where("editor_id", [1, None])       # IN with NULL rewrite
        where("score >=", 10)               # column + operator
        where({"published": True, "author_id": 3})
        where("created > ? AND created < ?", start, end)
        where("title LIKE :pattern", pattern="A%")
        where(sa.column("score") > 10)
    """
    params = params or {}

    if isinstance(condition, Mapping):
        if args or params:
            raise UsageError("A condition mapping takes no extra parameters")

        clauses: list[Clause] = []
        for key, value in condition.items():
            if (match := _COLUMN_OPERATOR.match(key)) is None:
                raise UsageError(f"Invalid column condition {key!r}")

            clauses.append(
                build_condition(
                    match["column"], value, op=match["op"] or "=", negate=negate
                )
            )

        return tuple(clauses)

    if isinstance(condition, (sa.ColumnElement, sa.TextClause)):
        if args or params:
            raise UsageError("A SQL expression condition takes no extra parameters")

        if negate:
            if isinstance(condition, sa.TextClause):
                raise UsageError("Negate a text() clause by writing NOT into its SQL")

            return (sa.not_(condition),)

        return (condition,)

    if isinstance(condition, str):
        match = _COLUMN_OPERATOR.match(condition)
        if match is not None and len(args) == 1 and not params:
            return (
                build_condition(match["column"], args[0], op=match["op"] or "=", negate=negate),
            )

        return (build_expression(condition, args, params, negate=negate),)

    raise UsageError(f"Unsupported condition {condition!r}")


def build_order(name: str | sa.ColumnElement[Any], direction: str = "ASC") -> sa.ColumnElement[Any]:
    direction = direction.upper()
    if direction not in _DIRECTIONS:
        raise UsageError(f"Invalid direction {direction!r}; expected ASC or DESC")

    col = column(name) if isinstance(name, str) else name

    return col.desc() if direction == "DESC" else col.asc()


def key_conditions(columns: Sequence[str], values: Sequence[Any]) -> tuple[sa.ColumnElement[bool], ...]:
    """``col = value`` for every primary-key column."""
    if len(columns) != len(values) or any(v is None for v in values):
        raise UsageError(f"Incomplete primary key {dict(zip(columns, values))!r}")

    return tuple(column(c) == v for c, v in zip(columns, values))


def build_select(
    table_name: str,
    conditions: Sequence[Clause] = (),
    columns: Sequence[sa.ColumnElement[Any]] = (),
    order_by: Sequence[sa.ColumnElement[Any]] = (),
    limit: int | None = None,
    offset: int | None = None,
) -> sa.Select[Any]:
    query = sa.select(*(columns or (sa.literal_column("*"),))).select_from(table(table_name))
    if conditions:
        query = query.where(*conditions)
    if order_by:
        query = query.order_by(*order_by)
    if limit is not None:
        query = query.limit(limit)
    if offset:
        query = query.offset(offset)

    return query


def build_insert(
    table_name: str,
    values: Mapping[str, Any] | Sequence[Mapping[str, Any]],
    returning: Sequence[str] = (),
) -> sa.Insert:
    """INSERT for one row, or an executemany-style INSERT for several.

    For several rows the values are not embedded; pass them to
    ``Connection.execute`` as the parameter list.
    """
    rows = [values] if isinstance(values, Mapping) else list(values)
    target = table(table_name, itertools.chain(returning, *(row.keys() for row in rows)))
    statement = sa.insert(target)

    if isinstance(values, Mapping):
        statement = statement.values(dict(values))
    if returning:
        statement = statement.returning(*(target.c[name] for name in returning))

    return statement


def build_update(
    table_name: str,
    values: Mapping[str, Any],
    where: Sequence[Clause] = (),
) -> sa.Update:
    statement = sa.update(table(table_name, values)).values(dict(values))

    return statement.where(*where) if where else statement


def build_delete(table_name: str, where: Sequence[Clause] = ()) -> sa.Delete:
    statement = sa.delete(table(table_name))

    return statement.where(*where) if where else statement
