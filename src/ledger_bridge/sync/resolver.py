"""Resolve one order's ledger state, tolerating indexer lag.

Strategies, in order:

1. The cached snapshot (forced fresh when ``force`` is set).
2. The backoff ladder: sleep each configured delay and re-query the cache
   with ``force=True``. The cumulative sleep never exceeds the caller's
   ``max_wait_ms``, itself capped by the configured ceiling.
3. With ``force``: one direct node scan that bypasses the cache.
4. With a transaction digest (given, or recovered from the local record):
   rebuild the order from that transaction's events, filling gaps from the
   local record. The result is tagged ``source="digest"``.

When everything fails the resolver raises
:class:`~ledger_bridge.errors.OrderNotFoundOnLedgerError` whose ``extra`` is
the diagnostic payload returned to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from ledger_bridge.chain.events import OrderEventReader
from ledger_bridge.chain.types import ChainOrderRecord
from ledger_bridge.errors import BridgeError, OrderNotFoundOnLedgerError
from ledger_bridge.sync.cache import LedgerQueryCache

logger = logging.getLogger(__name__)

ResolutionSource = Literal["cache", "node", "digest"]


@dataclass(frozen=True)
class ResolvedOrder:
    record: ChainOrderRecord
    source: ResolutionSource
    retries: int = 0
    waited_ms: int = 0


def _local_fallback(order_id: str, local: dict[str, Any] | None) -> dict[str, Any]:
    """Fields the digest rebuild may borrow from the local record."""
    fallback: dict[str, Any] = {"orderId": order_id}
    if not local:
        return fallback
    chain_meta = (local.get("meta") or {}).get("chain") or {}
    fallback.update(
        {
            "user": local.get("user_address"),
            "companion": local.get("companion_address"),
            "ruleSetId": chain_meta.get("ruleSetId"),
            "serviceFee": round((local.get("service_fee") or 0) * 100),
            "deposit": round((local.get("deposit") or 0) * 100),
            "createdAt": local.get("created_at"),
        }
    )
    return {key: value for key, value in fallback.items() if value not in (None, "")}


def _local_digest(local: dict[str, Any] | None) -> str | None:
    if not local:
        return None
    meta = local.get("meta") or {}
    return local.get("chain_digest") or meta.get("chainDigest") or None


class LedgerOrderResolver:
    def __init__(
        self,
        cache: LedgerQueryCache,
        reader: OrderEventReader,
        *,
        local_lookup: Callable[[str], dict[str, Any] | None],
        backoff_ms: Sequence[int] = (1000, 2000, 4000, 8000),
        default_max_wait_ms: int = 3000,
        max_wait_ceiling_ms: int = 15_000,
        network: str = "testnet",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.cache = cache
        self.reader = reader
        self._local_lookup = local_lookup
        self.backoff_ms = tuple(backoff_ms)
        self.default_max_wait_ms = default_max_wait_ms
        self.max_wait_ceiling_ms = max_wait_ceiling_ms
        self.network = network
        self._sleep = sleep

    def wait_budget(self, max_wait_ms: int | None) -> int:
        requested = self.default_max_wait_ms if max_wait_ms is None else max_wait_ms
        return max(0, min(requested, self.max_wait_ceiling_ms))

    async def find(
        self,
        order_id: str,
        *,
        force: bool = False,
        max_wait_ms: int | None = None,
        digest: str | None = None,
    ) -> ResolvedOrder:
        """Resolve ``order_id`` or raise with diagnostics.

        Raises:
            OrderNotFoundOnLedgerError: Every strategy came back empty.
            LedgerRPCError: The snapshot could not be fetched and no cached
                snapshot exists.
        """
        budget = self.wait_budget(max_wait_ms)
        record = await self.cache.find(order_id, force=force)
        if record is not None:
            return ResolvedOrder(record, "cache")

        retries = 0
        waited = 0
        for delay in self.backoff_ms:
            remaining = budget - waited
            if remaining <= 0:
                break
            step = min(delay, remaining)
            await self._sleep(step / 1000)
            waited += step
            retries += 1
            record = await self.cache.find(order_id, force=True)
            if record is not None:
                logger.info("Order %s appeared after %d retries (%dms)", order_id, retries, waited)
                return ResolvedOrder(record, "cache", retries, waited)

        fallback_errors: list[str] = []
        direct_attempted = False
        if force:
            direct_attempted = True
            try:
                orders = await self.reader.fetch_orders()
            except BridgeError as exc:
                logger.warning("Direct ledger query for %s failed: %s", order_id, exc.message)
                fallback_errors.append(f"direct: {exc.message}")
            else:
                record = next((o for o in orders if o.order_id == order_id), None)
                if record is not None:
                    logger.info("Order %s found by direct ledger query", order_id)
                    return ResolvedOrder(record, "node", retries, waited)

        local = self._local_lookup(order_id)
        digest = digest or _local_digest(local)
        if digest:
            try:
                rebuilt = await self.reader.find_order_by_digest(
                    digest, fallback=_local_fallback(order_id, local)
                )
            except BridgeError as exc:
                logger.warning("Digest rebuild of %s from %s failed: %s", order_id, digest, exc.message)
                fallback_errors.append(f"digest: {exc.message}")
            else:
                if rebuilt is not None and rebuilt.order_id == order_id:
                    logger.info("Order %s rebuilt from transaction %s", order_id, digest)
                    return ResolvedOrder(rebuilt, "digest", retries, waited)
                if rebuilt is not None:
                    logger.warning(
                        "Transaction %s belongs to order %s, not %s", digest, rebuilt.order_id, order_id
                    )

        raise OrderNotFoundOnLedgerError(
            f"Order {order_id} was not found on the ledger",
            extra=self._diagnostic(
                order_id,
                local=local,
                retries=retries,
                waited_ms=waited,
                forced=force,
                direct_attempted=direct_attempted,
                digest=digest,
                fallback_errors=fallback_errors,
            ),
        )

    def _diagnostic(
        self,
        order_id: str,
        *,
        local: dict[str, Any] | None,
        retries: int,
        waited_ms: int,
        forced: bool,
        direct_attempted: bool,
        digest: str | None,
        fallback_errors: list[str],
    ) -> dict[str, Any]:
        stats = self.cache.stats()
        return {
            "orderId": order_id,
            "existsInLocal": local is not None,
            "localOrderSource": (local or {}).get("source"),
            "chainCacheStats": {
                "totalOrders": stats["orderCount"],
                "cacheAgeMs": stats["cacheAgeMs"],
                "lastFetch": stats["lastFetch"],
                "hits": stats["hits"],
                "misses": stats["misses"],
            },
            "retries": retries,
            "totalWaitMs": waited_ms,
            "forced": forced,
            "directQueryAttempted": direct_attempted,
            "digestAttempted": digest,
            "fallbackErrors": fallback_errors,
            "possibleReasons": [
                "The order's events have not been indexed yet (waited without success)",
                "The order was never created on the ledger",
                f"The order is older than the newest {self.reader.event_limit} store events scanned",
                f"Network or deployment misconfiguration (network: {self.network})",
            ],
            "troubleshooting": [
                "Retry in a few seconds",
                "Look up the creating transaction digest in a ledger explorer",
                "Check ledger.package_id and ledger.hub_id",
                "Retry with force=true, or pass the transaction digest",
                "Raise ledger.event_limit if the order is old",
            ],
        }
