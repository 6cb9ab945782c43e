"""Exceptions raised by sqla_traverse.

Storage failures are not wrapped: whatever SQLAlchemy raises while executing
a statement (``sqlalchemy.exc.IntegrityError``, ``OperationalError``, ...)
reaches the caller unchanged.
"""

from __future__ import annotations


class TraverseError(Exception):
    """Base exception for sqla_traverse."""


class ConfigurationError(TraverseError):
    """Schema metadata cannot satisfy the request.

    Raised before any statement is sent to the database: unknown tables or
    associations, compound keys where a single column is needed, required
    columns with no value, LIMIT on an association result.
    """


class DependencyCycleError(ConfigurationError):
    """Required foreign keys form a cycle, so no write order exists."""

    def __init__(self, tables: tuple[str, ...]) -> None:
        self.tables = tables
        super().__init__(
            "Required foreign keys form a cycle: " + " -> ".join(tables)
        )


class UsageError(TraverseError):
    """An operation was called with malformed arguments."""
