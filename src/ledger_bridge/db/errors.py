"""Typed database exceptions for the DB package.

Repository modules raise these for SQLite failures instead of collapsing
them into boolean return values. Domain outcomes like "row not found" are
still ``None``. The API layer maps these to a 500 response.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class DatabaseOperationContext:
    """Structured operation metadata carried by repository exceptions.

    Attributes:
        operation: Stable operation identifier, e.g. ``"orders.get_order"``.
        details: Optional human-readable context for logs.
    """

    operation: str
    details: str | None = None


class DatabaseError(RuntimeError):
    """Base exception for DB-layer failures."""


class DatabaseOperationError(DatabaseError):
    """Base exception for repository operation failures."""

    def __init__(
        self,
        *,
        context: DatabaseOperationContext,
        cause: Exception | None = None,
    ) -> None:
        message = context.operation
        if context.details:
            message = f"{message}: {context.details}"
        super().__init__(message)
        self.context = context
        self.cause = cause


class DatabaseReadError(DatabaseOperationError):
    """Repository read/query failure."""


class DatabaseWriteError(DatabaseOperationError):
    """Repository mutation/transaction failure."""
