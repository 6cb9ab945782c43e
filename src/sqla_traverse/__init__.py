"""Foreign-key traversal and nested saves on top of SQLAlchemy Core.

sqla_traverse walks a database's foreign-key graph as if it were a tree of
objects.  Build a ``Database`` around a connection and a ``Schema`` (usually
``get_schema(Base)`` plus aliases), then follow associations with
``referenced("author")`` or ``referenced("postList")``: every traversal level
costs one query however many rows it spans.  ``Row.save()`` writes a whole
tree of nested rows, ordered so required foreign keys always point at rows
that already exist.
"""

from ._version import __version__, __version_tuple__
from .association import Association, AssociationKind, JoinKey, parse_association
from .builder import build_condition, build_where
from .database import Database
from .datastructures import frozendict
from .errors import ConfigurationError, DependencyCycleError, TraverseError, UsageError
from .graph import DependencyGraph
from .planner import Planner, SaveReport, WriteKind, WriteOperation
from .result import Result, ResultState
from .row import Row
from .schema import Schema, get_schema
from .tools import sqla_cache_clear, sqla_cache_info


__all__ = (
    "Association",
    "AssociationKind",
    "ConfigurationError",
    "Database",
    "DependencyCycleError",
    "DependencyGraph",
    "JoinKey",
    "Planner",
    "Result",
    "ResultState",
    "Row",
    "SaveReport",
    "Schema",
    "TraverseError",
    "UsageError",
    "WriteKind",
    "WriteOperation",
    "__version__",
    "__version_tuple__",
    "build_condition",
    "build_where",
    "frozendict",
    "get_schema",
    "parse_association",
    "sqla_cache_clear",
    "sqla_cache_info",
)
