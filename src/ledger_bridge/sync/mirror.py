"""Mirror a ledger observation into the local order store.

This is the sync path's only write. It runs inside
:func:`ledger_bridge.db.orders_repo.apply_chain_state`, so the status
comparison and the write happen in one transaction.
"""

from __future__ import annotations

import logging
from typing import Any

from ledger_bridge.chain.crypto import is_valid_address, normalize_address
from ledger_bridge.chain.types import ZERO_ADDRESS, ChainOrderRecord
from ledger_bridge.db import orders_repo
from ledger_bridge.sync.status import (
    derive_order_status,
    local_chain_status,
    resolve_effective_status,
)

logger = logging.getLogger(__name__)

# Ledger amounts are integers in hundredths of the display currency.
AMOUNT_SCALE = 100


def to_currency(value: int) -> float:
    return round(value / AMOUNT_SCALE, 2)


def _companion(address: str) -> str | None:
    normalized = normalize_address(address)
    if not is_valid_address(normalized) or normalized == ZERO_ADDRESS:
        return None
    return normalized


def build_chain_patch(existing: dict[str, Any] | None, record: ChainOrderRecord) -> dict[str, Any]:
    """Columns to write for ``record`` given the current local row."""
    local_status = local_chain_status(existing)
    effective = resolve_effective_status(local_status, record.status)
    meta = dict((existing or {}).get("meta") or {})

    if effective > record.status:
        logger.warning(
            "Ledger status regressed for order %s: local=%s incoming=%s; keeping local",
            record.order_id,
            local_status,
            record.status,
        )
        meta["chain"] = {**(meta.get("chain") or {}), "status": effective}
    else:
        meta["chain"] = {
            "status": record.status,
            "disputeDeadline": record.dispute_deadline,
            "lastUpdatedMs": record.last_updated_ms,
            "ruleSetId": record.rule_set_id,
            "evidenceHash": record.evidence_hash,
        }

    service_fee = to_currency(record.service_fee)
    deposit = to_currency(record.deposit)
    patch: dict[str, Any] = {
        "user_address": normalize_address(record.user),
        **derive_order_status(effective),
        "service_fee": service_fee,
        "deposit": deposit,
        "meta": meta,
    }

    companion = _companion(record.companion)
    if companion is not None or not (existing or {}).get("companion_address"):
        patch["companion_address"] = companion
    if record.digest:
        patch["chain_digest"] = record.digest

    if existing is None:
        patch["amount"] = round(service_fee + deposit, 2)
        patch["note"] = "ledger sync"
        patch["created_at"] = record.created_at or None
        if patch["created_at"] is None:
            del patch["created_at"]
    return patch


def mirror_chain_order(record: ChainOrderRecord) -> dict[str, Any]:
    """Persist ``record`` into the local store and return the stored order."""
    stored = orders_repo.apply_chain_state(
        record.order_id, lambda existing: build_chain_patch(existing, record)
    )
    logger.info(
        "Mirrored ledger order %s (status %s -> stage %s)",
        record.order_id,
        stored.get("chain_status"),
        stored.get("stage"),
    )
    return stored
