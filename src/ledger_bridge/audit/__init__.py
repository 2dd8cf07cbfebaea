"""Audit package: append-only JSONL record of privileged bridge operations.

Public surface
--------------
- :func:`append_event`        append one event to a stream (raises on failure).
- :func:`record_audit_event`  best-effort wrapper used by request handlers.
- :func:`verify_audit_stream` integrity check of a stream's last event.
- :exc:`AuditWriteError`
- :class:`AuditVerifyResult`
"""

from __future__ import annotations

import logging

from ledger_bridge.audit.writer import (
    AuditVerifyResult,
    AuditWriteError,
    append_event,
    verify_audit_stream,
)

logger = logging.getLogger(__name__)


def record_audit_event(
    stream: str,
    event_type: str,
    data: dict,
    *,
    meta: dict | None = None,
) -> str | None:
    """Append an audit event unless auditing is disabled.

    Write failures are logged as warnings and never propagate; the caller's
    operation has already happened and must still be reported.

    Returns:
        The ``event_id`` on success, otherwise ``None``.
    """
    from ledger_bridge.config import config

    if not config.audit.enabled:
        return None
    try:
        return append_event(stream, event_type, data, meta=meta)
    except AuditWriteError:
        logger.warning("Audit write failed for %s; operation continues.", event_type, exc_info=True)
        return None


__all__ = [
    "AuditVerifyResult",
    "AuditWriteError",
    "append_event",
    "record_audit_event",
    "verify_audit_stream",
]
