"""JSONL audit trail writer.

Overview
--------
Every privileged or state-changing operation the bridge performs (mirroring
a ledger order locally, clearing the snapshot cache, relaying a sponsored
transaction, queueing a reconcile action) leaves one event in an append-only
JSONL stream. The stream is an audit record, not a source of truth: a failed
write is logged and the operation still completes.

Storage
-------
One file per stream::

    <audit.path>/<stream>.jsonl

Streams in use: ``orders``, ``cache``, ``reconcile``, ``sponsor``.

Envelope format
---------------
.. code-block:: json

    {
      "event_id":       "a3f91c9e2d4b5e6f...",
      "timestamp":      "2026-02-27T14:23:01.452345+00:00",
      "stream":         "orders",
      "event_type":     "order.chain_synced",
      "schema_version": "1.0",
      "meta":           {"actor": "0x..."},
      "data":           { ... event-specific payload ... },
      "_checksum":      "sha256:b94f3e..."
    }

``_checksum`` covers the envelope body without itself, serialized with
``sort_keys=True``.

Concurrency
-----------
``fcntl.flock(LOCK_EX)`` is held around every append, which serializes writers
in one process and across processes on the same host. ``fcntl`` is POSIX-only.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = "1.0"

# Bytes read from the end of a stream when verifying its last event.
_TAIL_CHUNK_BYTES = 16_384


class AuditWriteError(Exception):
    """Raised when an audit append fails due to a filesystem or encoding error.

    Callers that must not fail because of auditing use
    :func:`ledger_bridge.audit.record_audit_event`, which catches this.
    """


@dataclass(frozen=True)
class AuditVerifyResult:
    """Result of :func:`verify_audit_stream`.

    Attributes:
        status: ``"ok"``, ``"empty"`` or ``"corrupt"``.
        last_event_id: ``event_id`` of the last valid event.
        error_detail: Failure reason for ``"corrupt"``.
    """

    status: Literal["ok", "empty", "corrupt"]
    last_event_id: str | None
    error_detail: str | None


def _audit_root() -> Path:
    from ledger_bridge.config import config

    return config.audit.absolute_path


def append_event(
    stream: str,
    event_type: str,
    data: dict,
    *,
    meta: dict | None = None,
) -> str:
    """Append one event to ``<audit root>/<stream>.jsonl``.

    Args:
        stream: Stream name, used as the filename stem. Must be non-empty.
        event_type: Dot-namespaced type such as ``"cache.cleared"``.
        data: JSON-serializable payload.
        meta: Optional actor/request metadata.

    Returns:
        The 32-character hex ``event_id``.

    Raises:
        ValueError: ``stream`` or ``event_type`` is blank.
        AuditWriteError: The payload could not be serialized or written.
    """
    if not stream or not stream.strip():
        raise ValueError("append_event: stream must be a non-empty string.")
    if not event_type or not event_type.strip():
        raise ValueError("append_event: event_type must be a non-empty string.")

    event_id = uuid.uuid4().hex
    envelope_body: dict = {
        "event_id": event_id,
        "timestamp": datetime.now(UTC).isoformat(),
        "stream": stream,
        "event_type": event_type,
        "schema_version": _SCHEMA_VERSION,
        "meta": meta if meta is not None else {},
        "data": data,
    }

    path = _stream_path(stream)
    try:
        checksum = _compute_checksum(envelope_body)
        envelope = {**envelope_body, "_checksum": f"sha256:{checksum}"}
        line = json.dumps(envelope, ensure_ascii=False, sort_keys=True)
        _append_line_locked(path, line)
    except (OSError, TypeError, ValueError) as exc:
        raise AuditWriteError(
            f"Failed to write audit event {event_id!r} ({event_type}) to {path}: {exc}"
        ) from exc

    logger.debug("audit: appended %r event %s to %s", event_type, event_id, path.name)
    return event_id


def verify_audit_stream(stream: str) -> AuditVerifyResult:
    """Check that the last event of ``stream`` parses and its checksum matches."""
    path = _stream_path(stream)
    if not path.exists():
        return AuditVerifyResult(status="empty", last_event_id=None, error_detail=None)

    last_line = _read_last_nonempty_line(path)
    if last_line is None:
        return AuditVerifyResult(status="empty", last_event_id=None, error_detail=None)

    try:
        envelope = json.loads(last_line)
    except json.JSONDecodeError as exc:
        return AuditVerifyResult(
            status="corrupt",
            last_event_id=None,
            error_detail=f"Last line is not valid JSON: {exc}",
        )
    if not isinstance(envelope, dict):
        return AuditVerifyResult(
            status="corrupt",
            last_event_id=None,
            error_detail="Last line deserialised to a non-dict type.",
        )

    recorded = envelope.get("_checksum")
    if not isinstance(recorded, str):
        return AuditVerifyResult(
            status="corrupt",
            last_event_id=None,
            error_detail="Last line is missing or has a non-string '_checksum' field.",
        )

    body = {k: v for k, v in envelope.items() if k != "_checksum"}
    expected = f"sha256:{_compute_checksum(body)}"
    if recorded != expected:
        return AuditVerifyResult(
            status="corrupt",
            last_event_id=envelope.get("event_id"),
            error_detail=(
                f"Checksum mismatch on last event. Recorded: {recorded!r}. "
                f"Expected: {expected!r}."
            ),
        )

    event_id = envelope.get("event_id")
    if not isinstance(event_id, str) or not event_id:
        return AuditVerifyResult(
            status="corrupt",
            last_event_id=None,
            error_detail="Last line is missing a valid 'event_id' string.",
        )
    return AuditVerifyResult(status="ok", last_event_id=event_id, error_detail=None)


def _stream_path(stream: str) -> Path:
    return _audit_root() / f"{stream}.jsonl"


def _compute_checksum(payload: dict) -> str:
    canonical = json.dumps(payload, ensure_ascii=False, sort_keys=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _append_line_locked(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fcntl.flock(fh, fcntl.LOCK_EX)
        try:
            fh.write(line + "\n")
            fh.flush()
        finally:
            fcntl.flock(fh, fcntl.LOCK_UN)


def _read_last_nonempty_line(path: Path) -> str | None:
    """Return the last non-blank line, reading only the tail of the file."""
    try:
        with path.open("rb") as fh:
            fh.seek(0, 2)
            size = fh.tell()
            if size == 0:
                return None
            fh.seek(max(0, size - _TAIL_CHUNK_BYTES))
            chunk = fh.read()
    except OSError:
        return None

    for line in reversed(chunk.decode("utf-8", errors="replace").splitlines()):
        stripped = line.strip()
        if stripped:
            return stripped
    return None
