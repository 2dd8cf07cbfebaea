"""Ledger-observed order records."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import IntEnum
from typing import Any

ZERO_ADDRESS = "0x" + "0" * 64


class ChainOrderStatus(IntEnum):
    """Lifecycle stage codes stored by the order contract."""

    CREATED = 0
    PAID = 1
    DEPOSITED = 2
    COMPLETED = 3
    DISPUTED = 4
    RESOLVED = 5
    CANCELLED = 6


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass(frozen=True)
class ChainOrderRecord:
    """One observation of an order on the ledger.

    Amounts are fixed-point integers in the ledger's smallest unit. Records
    are never mutated; a newer observation is a new record.
    """

    order_id: str
    user: str
    companion: str
    status: int
    rule_set_id: int = 0
    service_fee: int = 0
    deposit: int = 0
    platform_fee_bps: int = 0
    created_at: int = 0
    finish_at: int = 0
    dispute_deadline: int = 0
    vault_service: int = 0
    vault_deposit: int = 0
    evidence_hash: str = "0x"
    dispute_status: int = 0
    resolved_by: str = ZERO_ADDRESS
    resolved_at: int = 0
    last_updated_ms: int = 0
    digest: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {_camel(key): value for key, value in asdict(self).items()}
