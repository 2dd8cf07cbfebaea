"""Read-through cache of the full ledger order snapshot.

The snapshot is expensive (a paged event scan), so it is held for ``ttl_ms``
and shared:

* Concurrent misses share one fetch. The first caller starts it as its own
  task in ``_inflight``; every caller awaits it through ``asyncio.shield``,
  so a cancelled request leaves the fetch running for the rest.
* A failed fetch falls back to the previous snapshot, marked stale, when one
  exists. Without a previous snapshot the error propagates.

The cache is per process and is not persisted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from ledger_bridge.chain.types import ChainOrderRecord

logger = logging.getLogger(__name__)

Freshness = Literal["fresh", "stale", "expired", "empty"]

DEFAULT_TTL_MS = 30_000
DEFAULT_MAX_AGE_MS = 300_000

_SNAPSHOT_KEY = "orders"


def _now_ms() -> int:
    return int(time.time() * 1000)


def classify_freshness(
    age_ms: int | None,
    *,
    ttl_ms: int = DEFAULT_TTL_MS,
    max_age_ms: int = DEFAULT_MAX_AGE_MS,
) -> Freshness:
    """Label a snapshot age: fresh below ``ttl_ms``, stale below ``max_age_ms``."""
    if age_ms is None:
        return "empty"
    if age_ms < ttl_ms:
        return "fresh"
    if age_ms < max_age_ms:
        return "stale"
    return "expired"


@dataclass
class CacheEntry:
    orders: list[ChainOrderRecord]
    fetched_at: int
    by_id: dict[str, ChainOrderRecord] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.by_id:
            self.by_id = {order.order_id: order for order in self.orders}


@dataclass(frozen=True)
class CacheSnapshot:
    """What one ``get`` call observed."""

    orders: list[ChainOrderRecord]
    by_id: dict[str, ChainOrderRecord]
    fetched_at: int
    hit: bool = False
    stale: bool = False
    fallback: bool = False


def _retrieve_outcome(task: asyncio.Task[CacheEntry]) -> None:
    # A failed fetch whose callers were all cancelled is not reported at GC.
    if not task.cancelled():
        task.exception()


class LedgerQueryCache:
    def __init__(
        self,
        fetcher: Callable[[], Awaitable[list[ChainOrderRecord]]],
        *,
        ttl_ms: int = DEFAULT_TTL_MS,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._fetcher = fetcher
        self.ttl_ms = ttl_ms
        self.max_age_ms = max_age_ms
        self._clock = clock
        self._entry: CacheEntry | None = None
        self._inflight: dict[str, asyncio.Task[CacheEntry]] = {}
        self.hits = 0
        self.misses = 0
        self.last_fetch: int | None = None

    # -- Reads ----------------------------------------------------------------

    def _age_ms(self) -> int | None:
        if self._entry is None:
            return None
        return max(0, self._clock() - self._entry.fetched_at)

    def _snapshot(self, entry: CacheEntry, **flags: bool) -> CacheSnapshot:
        return CacheSnapshot(entry.orders, entry.by_id, entry.fetched_at, **flags)

    async def get(self, force: bool = False) -> CacheSnapshot:
        """Return the order snapshot, fetching if expired or ``force``d."""
        age = self._age_ms()
        if not force and self._entry is not None and age is not None and age < self.ttl_ms:
            self.hits += 1
            logger.debug("Ledger cache hit (%d orders, age %dms)", len(self._entry.orders), age)
            return self._snapshot(self._entry, hit=True)

        self.misses += 1
        previous = self._entry
        try:
            entry = await self._refresh(force=force)
        except Exception:
            if previous is None:
                logger.error("Ledger order fetch failed with no cached snapshot", exc_info=True)
                raise
            logger.warning(
                "Ledger order fetch failed; serving stale snapshot (age %sms)",
                self._clock() - previous.fetched_at,
                exc_info=True,
            )
            return self._snapshot(previous, stale=True, fallback=True)
        return self._snapshot(entry)

    async def find(self, order_id: str, force: bool = False) -> ChainOrderRecord | None:
        snapshot = await self.get(force=force)
        order = snapshot.by_id.get(order_id)
        if order is None:
            logger.info("Order %s not in ledger snapshot (%d orders)", order_id, len(snapshot.orders))
        return order

    async def _refresh(self, *, force: bool) -> CacheEntry:
        task = self._inflight.get(_SNAPSHOT_KEY)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._fetch(force))
            task.add_done_callback(_retrieve_outcome)
            self._inflight[_SNAPSHOT_KEY] = task
        else:
            logger.debug("Joining in-flight ledger order fetch")
        # Cancelling one caller must not cancel the fetch the others share.
        return await asyncio.shield(task)

    async def _fetch(self, force: bool) -> CacheEntry:
        started = self._clock()
        logger.info("Fetching ledger orders (force=%s)", force)
        try:
            orders = await self._fetcher()
            entry = CacheEntry(orders=list(orders), fetched_at=self._clock())
        finally:
            self._inflight.pop(_SNAPSHOT_KEY, None)
        self._entry = entry
        self.last_fetch = entry.fetched_at
        logger.info("Fetched %d ledger orders in %dms", len(entry.orders), entry.fetched_at - started)
        return entry

    # -- Administration -------------------------------------------------------

    def clear(self) -> None:
        """Drop the snapshot and reset counters."""
        logger.info("Clearing ledger cache (%d orders)", len(self._entry.orders) if self._entry else 0)
        self._entry = None
        self.hits = 0
        self.misses = 0
        self.last_fetch = None

    def freshness(self) -> Freshness:
        return classify_freshness(self._age_ms(), ttl_ms=self.ttl_ms, max_age_ms=self.max_age_ms)

    def stats(self) -> dict[str, Any]:
        total = self.hits + self.misses
        return {
            "orderCount": len(self._entry.orders) if self._entry else 0,
            "cacheAgeMs": self._age_ms(),
            "lastFetch": self.last_fetch,
            "hits": self.hits,
            "misses": self.misses,
            "hitRate": self.hits / total if total else 0.0,
        }

    def order_stats(self) -> dict[str, Any]:
        """Per-status counts plus the newest and oldest order of the snapshot."""
        orders = self._entry.orders if self._entry else []
        by_status: dict[str, int] = {}
        for order in orders:
            key = str(order.status)
            by_status[key] = by_status.get(key, 0) + 1

        def brief(order: ChainOrderRecord | None) -> dict[str, Any] | None:
            if order is None:
                return None
            return {"orderId": order.order_id, "status": order.status, "createdAt": order.created_at}

        return {
            "byStatus": by_status,
            "newest": brief(orders[0] if orders else None),
            "oldest": brief(orders[-1] if orders else None),
        }
