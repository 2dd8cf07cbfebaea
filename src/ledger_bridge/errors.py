"""Typed bridge exceptions.

Every error that crosses the HTTP boundary derives from :class:`BridgeError`
and carries a stable machine-readable ``code``, a human message, the status
code the API layer renders it with, and optional extra fields merged into the
response body. ``api/server.py`` installs the single exception handler that
turns these into ``{"error": code, "message": ..., **extra}``.
"""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base exception for bridge failures surfaced to API callers."""

    status_code: int = 500
    default_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code
        self.extra = dict(extra or {})

    def to_body(self) -> dict[str, Any]:
        """Render the JSON error body."""
        return {"error": self.code, "message": self.message, **self.extra}


class ConfigurationError(BridgeError):
    """A required setting is missing or malformed."""

    status_code = 500
    default_code = "configuration_error"


class AuthError(BridgeError):
    """Signed envelope or admin token rejected.

    Signature codes: ``auth_required``, ``invalid_timestamp``,
    ``auth_expired``, ``invalid_address``, ``address_mismatch``,
    ``replay_detected``, ``body_hash_required``, ``body_hash_mismatch``,
    ``invalid_signature``. Admin codes: ``unauthorized``, ``forbidden``,
    ``not_order_participant``.
    """

    status_code = 401
    default_code = "unauthorized"


class SponsorshipError(BridgeError):
    """A sponsorship request failed validation.

    Codes: ``invalid_sender``, ``invalid_transaction``,
    ``command_not_allowed``, ``target_not_allowed``, ``gas_owner_mismatch``,
    ``gas_budget_exceeded``, ``sponsor_not_configured``,
    ``sponsor_gas_unavailable``.
    """

    status_code = 400
    default_code = "invalid_transaction"


class LedgerRPCError(BridgeError):
    """The ledger node could not be reached or returned a JSON-RPC error."""

    status_code = 502
    default_code = "ledger_unavailable"


class LedgerExecutionError(BridgeError):
    """A submitted transaction executed with a failure status."""

    status_code = 502
    default_code = "ledger_execution_failed"


class OrderNotFoundOnLedgerError(BridgeError):
    """The resolver exhausted every strategy; ``extra`` carries diagnostics."""

    status_code = 404
    default_code = "order_not_found_on_ledger"


class OrderGuardError(BridgeError):
    """A manual edit conflicts with the order's source of truth."""

    status_code = 409
    default_code = "chain_managed_order"


class SyncLockedError(BridgeError):
    """Another bulk sync holds the lock."""

    status_code = 429
    default_code = "sync_locked"
