"""Ledger status codes and the local fields derived from them.

The ledger status is the source of truth; ``stage`` and ``payment_status``
on a local record are always derived from it, never set independently.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

PAYMENT_STATUS = {
    0: "unpaid",
    1: "service_fee_paid",
    2: "deposit_locked",
    3: "awaiting_settlement",
    4: "disputed",
    5: "settled",
    6: "cancelled",
}


def map_stage(status: int) -> str:
    if status == 6:
        return "cancelled"
    if status == 5:
        return "completed"
    if status >= 2:
        return "in_progress"
    if status == 1:
        return "confirmed"
    return "pending"


def map_payment_status(status: int) -> str:
    return PAYMENT_STATUS.get(status, "unknown")


def local_chain_status(order: Mapping[str, Any] | None) -> int | None:
    """Mirrored status of a local order, from the column or ``meta.chain``."""
    if not order:
        return None
    if isinstance(order.get("chain_status"), int):
        return order["chain_status"]
    chain_meta = (order.get("meta") or {}).get("chain") or {}
    status = chain_meta.get("status")
    return status if isinstance(status, int) else None


def resolve_effective_status(local: int | None, incoming: int) -> int:
    """Statuses only move forward; a lower incoming value keeps the local one."""
    if local is not None and local > incoming:
        return local
    return incoming


def derive_order_status(effective_status: int) -> dict[str, Any]:
    return {
        "chain_status": effective_status,
        "payment_status": map_payment_status(effective_status),
        "stage": map_stage(effective_status),
    }
