"""Local order repository.

Two writers touch the ``orders`` table:

* admins, through :func:`update_order_manual`, which refuses to edit the
  lifecycle fields of any order the ledger manages;
* the sync path, through :func:`apply_chain_state`, which is the only code
  allowed to write ``stage``, ``payment_status`` and ``chain_status`` of a
  ledger-managed order.
"""

from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Callable, Mapping
from typing import Any, NoReturn

from ledger_bridge.db.connection import connection_scope
from ledger_bridge.db.errors import (
    DatabaseError,
    DatabaseOperationContext,
    DatabaseReadError,
    DatabaseWriteError,
)
from ledger_bridge.errors import OrderGuardError

STAGES = ("pending", "confirmed", "in_progress", "completed", "cancelled")
SOURCES = ("manual", "app", "chain")

STAGE_FLOW: dict[str, tuple[str, ...]] = {
    "pending": ("pending", "confirmed", "in_progress", "cancelled"),
    "confirmed": ("confirmed", "in_progress", "cancelled"),
    "in_progress": ("in_progress", "completed", "cancelled"),
    "completed": ("completed",),
    "cancelled": ("cancelled",),
}

MANUAL_FIELDS = ("stage", "payment_status", "note", "companion_address")
CHAIN_MANAGED_FIELDS = ("stage", "payment_status", "chain_status")

_COLUMNS = (
    "id",
    "user_address",
    "companion_address",
    "stage",
    "chain_status",
    "payment_status",
    "source",
    "service_fee",
    "deposit",
    "amount",
    "chain_digest",
    "note",
    "meta_json",
    "created_at",
    "updated_at",
)
_WRITABLE_CHAIN_COLUMNS = (
    "user_address",
    "companion_address",
    "stage",
    "chain_status",
    "payment_status",
    "service_fee",
    "deposit",
    "amount",
    "chain_digest",
    "note",
    "meta",
    "created_at",
)


def _raise_read_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    """Raise a typed repository read error while preserving chained cause."""
    if isinstance(exc, DatabaseError):
        raise exc
    raise DatabaseReadError(
        context=DatabaseOperationContext(operation=operation, details=details),
        cause=exc,
    ) from exc


def _raise_write_error(operation: str, exc: Exception, *, details: str | None = None) -> NoReturn:
    """Raise a typed repository write error while preserving chained cause."""
    if isinstance(exc, (DatabaseError, OrderGuardError)):
        raise exc
    raise DatabaseWriteError(
        context=DatabaseOperationContext(operation=operation, details=details),
        cause=exc,
    ) from exc


def _now_ms() -> int:
    return int(time.time() * 1000)


def _row_to_order(row: sqlite3.Row) -> dict[str, Any]:
    order = {key: row[key] for key in _COLUMNS if key != "meta_json"}
    try:
        order["meta"] = json.loads(row["meta_json"] or "{}")
    except json.JSONDecodeError:
        order["meta"] = {}
    return order


def _select_order(conn: sqlite3.Connection, order_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        f"SELECT {', '.join(_COLUMNS)} FROM orders WHERE id = ?", (order_id,)
    ).fetchone()
    return _row_to_order(row) if row else None


def is_chain_managed(order: Mapping[str, Any]) -> bool:
    """True once the ledger is the source of truth for this order."""
    return (
        order.get("source") == "chain"
        or order.get("chain_status") is not None
        or bool(order.get("chain_digest"))
    )


def can_transition_stage(current: str, target: str) -> bool:
    return target in STAGE_FLOW.get(current, ())


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_order(order_id: str) -> dict[str, Any] | None:
    """Return one order or ``None``."""
    try:
        with connection_scope() as conn:
            return _select_order(conn, order_id)
    except Exception as exc:
        _raise_read_error("orders.get_order", exc, details=f"order_id={order_id!r}")


def list_chain_linked_orders() -> list[dict[str, Any]]:
    """Orders with ``source == 'chain'`` or a mirrored ``chain_status``."""
    try:
        with connection_scope() as conn:
            rows = conn.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM orders "
                "WHERE source = 'chain' OR chain_status IS NOT NULL "
                "ORDER BY created_at DESC"
            ).fetchall()
            return [_row_to_order(row) for row in rows]
    except Exception as exc:
        _raise_read_error("orders.list_chain_linked_orders", exc)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def create_order(
    order_id: str,
    *,
    source: str = "manual",
    user_address: str | None = None,
    companion_address: str | None = None,
    stage: str = "pending",
    payment_status: str = "unpaid",
    service_fee: float = 0,
    deposit: float = 0,
    amount: float | None = None,
    note: str | None = None,
    meta: Mapping[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Insert a manual or app order.

    Returns:
        The stored order, or ``None`` if ``order_id`` already exists.

    Raises:
        ValueError: ``source`` or ``stage`` is not a known value. Ledger
            orders are created by :func:`apply_chain_state` only.
    """
    if source not in ("manual", "app"):
        raise ValueError(f"create_order: source must be 'manual' or 'app', got {source!r}")
    if stage not in STAGES:
        raise ValueError(f"create_order: unknown stage {stage!r}")
    now = _now_ms()
    try:
        with connection_scope(write=True) as conn:
            conn.execute(
                """
                INSERT INTO orders (
                    id, user_address, companion_address, stage, payment_status, source,
                    service_fee, deposit, amount, note, meta_json, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order_id,
                    user_address,
                    companion_address,
                    stage,
                    payment_status,
                    source,
                    service_fee,
                    deposit,
                    amount if amount is not None else service_fee + deposit,
                    note,
                    json.dumps(dict(meta or {})),
                    now,
                    now,
                ),
            )
            return _select_order(conn, order_id)
    except sqlite3.IntegrityError:
        return None
    except Exception as exc:
        _raise_write_error("orders.create_order", exc, details=f"order_id={order_id!r}")


def update_order_manual(order_id: str, changes: Mapping[str, Any]) -> dict[str, Any] | None:
    """Apply an admin edit.

    Raises:
        ValueError: ``changes`` names a field admins cannot edit.
        OrderGuardError: ``chain_managed_order`` when touching lifecycle
            fields of a ledger-managed order; ``invalid_stage_transition``
            when the stage change is not a forward step.
    """
    unknown = set(changes) - set(MANUAL_FIELDS)
    if unknown:
        raise ValueError(f"update_order_manual: fields not editable: {sorted(unknown)}")
    if not changes:
        return get_order(order_id)

    try:
        with connection_scope(write=True) as conn:
            existing = _select_order(conn, order_id)
            if existing is None:
                return None

            guarded = sorted(set(changes) & set(CHAIN_MANAGED_FIELDS))
            if guarded and is_chain_managed(existing):
                raise OrderGuardError(
                    f"Order {order_id} is managed by the ledger; {', '.join(guarded)} "
                    "can only change through chain sync",
                    extra={"orderId": order_id, "fields": guarded},
                )
            if "stage" in changes:
                target = changes["stage"]
                if target not in STAGES or not can_transition_stage(existing["stage"], target):
                    raise OrderGuardError(
                        f"Cannot move order {order_id} from {existing['stage']} to {target}",
                        code="invalid_stage_transition",
                        extra={"orderId": order_id, "from": existing["stage"], "to": target},
                    )

            assignments = "".join(f"{key} = ?, " for key in changes)
            conn.execute(
                f"UPDATE orders SET {assignments}updated_at = ? WHERE id = ?",  # nosec B608
                (*changes.values(), _now_ms(), order_id),
            )
            return _select_order(conn, order_id)
    except Exception as exc:
        _raise_write_error("orders.update_order_manual", exc, details=f"order_id={order_id!r}")


def apply_chain_state(
    order_id: str,
    build_patch: Callable[[dict[str, Any] | None], Mapping[str, Any]],
) -> dict[str, Any]:
    """Write ledger-derived state for one order in a single transaction.

    ``build_patch`` receives the current row (or ``None``) read inside the
    same ``BEGIN IMMEDIATE`` transaction and returns the columns to write, so
    two concurrent syncs of one order cannot interleave their read and write.
    A missing row is created with ``source = 'chain'``.
    """
    try:
        with connection_scope(write=True) as conn:
            conn.execute("BEGIN IMMEDIATE")
            existing = _select_order(conn, order_id)
            patch = dict(build_patch(existing))
            unknown = set(patch) - set(_WRITABLE_CHAIN_COLUMNS)
            if unknown:
                raise ValueError(f"apply_chain_state: unknown columns {sorted(unknown)}")
            if "meta" in patch:
                patch["meta_json"] = json.dumps(patch.pop("meta"))

            now = _now_ms()
            if existing is None:
                patch.setdefault("created_at", now)
                columns = ["id", "source", "updated_at", *patch]
                values = [order_id, "chain", now, *patch.values()]
                placeholders = ", ".join("?" for _ in columns)
                conn.execute(
                    f"INSERT INTO orders ({', '.join(columns)}) VALUES ({placeholders})",  # nosec B608
                    values,
                )
            else:
                patch.pop("created_at", None)
                assignments = "".join(f"{key} = ?, " for key in patch)
                conn.execute(
                    f"UPDATE orders SET {assignments}updated_at = ? WHERE id = ?",  # nosec B608
                    (*patch.values(), now, order_id),
                )
            stored = _select_order(conn, order_id)
            assert stored is not None
            return stored
    except Exception as exc:
        _raise_write_error("orders.apply_chain_state", exc, details=f"order_id={order_id!r}")
