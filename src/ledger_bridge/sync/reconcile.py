"""Diff the ledger snapshot against ledger-linked local orders.

The engine only reads. Fixes are applied one order at a time through the
chain-sync route; a partial or stale snapshot can therefore never overwrite
local state in bulk.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ledger_bridge.chain.types import ChainOrderRecord
from ledger_bridge.sync.cache import LedgerQueryCache
from ledger_bridge.sync.status import local_chain_status

logger = logging.getLogger(__name__)

DETAIL_LIMIT = 50

RECONCILE_ACTIONS = ("sync_missing", "fix_status", "sync_all")


def order_id_sort_key(order_id: str) -> tuple[int, int, str]:
    """Numeric ledger ids first, by value; anything else after, by text."""
    if order_id.isdigit():
        return (0, int(order_id), "")
    return (1, 0, order_id)


@dataclass
class Discrepancies:
    missing_in_local: list[str] = field(default_factory=list)
    missing_in_ledger: list[str] = field(default_factory=list)
    status_mismatch: list[dict[str, Any]] = field(default_factory=list)
    needs_sync: list[dict[str, str]] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not (self.missing_in_local or self.missing_in_ledger or self.status_mismatch)

    def order_ids_for(self, action: str) -> list[str]:
        """Orders a reconcile ``action`` would touch, in order id order."""
        if action not in RECONCILE_ACTIONS:
            raise ValueError(f"unknown reconcile action {action!r}")
        ids: list[str] = []
        if action in ("sync_missing", "sync_all"):
            ids.extend(self.missing_in_local)
        if action in ("fix_status", "sync_all"):
            ids.extend(item["orderId"] for item in self.status_mismatch)
        return sorted(ids, key=order_id_sort_key)


def classify(
    ledger_orders: Iterable[ChainOrderRecord],
    local_orders: Iterable[dict[str, Any]],
) -> Discrepancies:
    """Sort every disagreement into exactly one presence or status bucket."""
    ledger_by_id = {order.order_id: order for order in ledger_orders}
    local_by_id = {order["id"]: order for order in local_orders}
    result = Discrepancies()

    for order_id, ledger_order in ledger_by_id.items():
        local = local_by_id.get(order_id)
        if local is None:
            result.missing_in_local.append(order_id)
            result.needs_sync.append(
                {"orderId": order_id, "reason": "ledger order not yet mirrored locally"}
            )
            continue
        local_status = local_chain_status(local)
        if ledger_order.status != local_status:
            result.status_mismatch.append(
                {"orderId": order_id, "chainStatus": ledger_order.status, "localStatus": local_status}
            )
            result.needs_sync.append(
                {
                    "orderId": order_id,
                    "reason": f"status mismatch: ledger={ledger_order.status}, local={local_status}",
                }
            )

    for order_id, local in local_by_id.items():
        if local.get("source") == "chain" and order_id not in ledger_by_id:
            result.missing_in_ledger.append(order_id)

    return result


class ReconciliationEngine:
    def __init__(
        self,
        cache: LedgerQueryCache,
        *,
        local_orders: Callable[[], list[dict[str, Any]]],
    ) -> None:
        self.cache = cache
        self._local_orders = local_orders

    async def discrepancies(self, force_refresh: bool = False) -> tuple[Discrepancies, dict[str, Any]]:
        snapshot = await self.cache.get(force=force_refresh)
        local = self._local_orders()
        result = classify(snapshot.orders, local)

        by_source: dict[str, int] = {}
        for order in local:
            source = order.get("source") or "unknown"
            by_source[source] = by_source.get(source, 0) + 1
        context = {
            "ledgerTotal": len(snapshot.orders),
            "localTotal": len(local),
            "localBySource": by_source,
            "snapshotStale": snapshot.stale,
        }
        return result, context

    async def reconcile(self, force_refresh: bool = False, detailed: bool = False) -> dict[str, Any]:
        """Build the reconciliation report."""
        result, context = await self.discrepancies(force_refresh)
        cache_stats = self.cache.stats()

        issues: list[str] = []
        if result.missing_in_local:
            issues.append(f"{len(result.missing_in_local)} ledger orders are not mirrored locally")
        if result.missing_in_ledger:
            issues.append(f"{len(result.missing_in_ledger)} local ledger orders are absent from the ledger")
        if result.status_mismatch:
            issues.append(f"{len(result.status_mismatch)} orders disagree on status")

        summary = {
            "timestamp": datetime.now(UTC).isoformat(),
            "ledgerOrders": {
                "total": context["ledgerTotal"],
                "byStatus": self.cache.order_stats()["byStatus"],
            },
            "localOrders": {"total": context["localTotal"], "bySource": context["localBySource"]},
            "discrepancies": {
                "missingInLocal": len(result.missing_in_local),
                "missingInLedger": len(result.missing_in_ledger),
                "statusMismatch": len(result.status_mismatch),
                "needsSync": len(result.needs_sync),
            },
            "cache": {
                "ageMs": cache_stats["cacheAgeMs"],
                "hits": cache_stats["hits"],
                "misses": cache_stats["misses"],
                "lastFetch": cache_stats["lastFetch"],
                "stale": context["snapshotStale"],
            },
            "health": {
                "status": "healthy" if result.healthy else "needs_attention",
                "issues": issues,
            },
        }
        if not result.healthy:
            logger.info("Reconciliation found discrepancies: %s", "; ".join(issues))

        report: dict[str, Any] = {"summary": summary}
        if detailed:
            report["details"] = {
                "missingInLocal": result.missing_in_local[:DETAIL_LIMIT],
                "missingInLedger": result.missing_in_ledger[:DETAIL_LIMIT],
                "statusMismatch": result.status_mismatch[:DETAIL_LIMIT],
                "needsSync": result.needs_sync[:DETAIL_LIMIT],
            }
        return report
