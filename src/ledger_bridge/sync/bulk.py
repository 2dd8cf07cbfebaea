"""Mirror every ledger order into the local store in one pass.

Meant for a scheduler or an operator. One run at a time: the run takes a
lock in the shared key/value store with ``consume_once`` and a TTL, so a run
that dies mid-way frees the lock once the TTL lapses. The lock is released
as soon as the run finishes.

A snapshot served from the stale fallback is never mirrored; the run fails
instead and the next one retries.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from ledger_bridge.audit import record_audit_event
from ledger_bridge.db import orders_repo
from ledger_bridge.errors import LedgerRPCError, SyncLockedError
from ledger_bridge.store import KeyValueStore
from ledger_bridge.sync.cache import LedgerQueryCache
from ledger_bridge.sync.mirror import mirror_chain_order

logger = logging.getLogger(__name__)

LOCK_KEY = "lock:chain-sync"


class BulkOrderSync:
    def __init__(
        self,
        cache: LedgerQueryCache,
        store: KeyValueStore,
        *,
        lock_ttl_ms: int = 300_000,
        local_lookup: Callable[[str], dict[str, Any] | None] = orders_repo.get_order,
    ) -> None:
        self.cache = cache
        self.store = store
        self.lock_ttl_ms = lock_ttl_ms
        self._local_lookup = local_lookup

    async def run(self, *, actor: str) -> dict[str, Any]:
        """Mirror the whole ledger snapshot and return counts.

        Raises:
            SyncLockedError: Another run holds the lock.
            LedgerRPCError: No fresh snapshot could be fetched.
            DatabaseError: A local write failed; earlier orders stay mirrored.
        """
        if not await self.store.consume_once(LOCK_KEY, self.lock_ttl_ms):
            raise SyncLockedError("A ledger sync is already running")
        try:
            return await self._run(actor)
        finally:
            await self.store.delete(LOCK_KEY)

    async def _run(self, actor: str) -> dict[str, Any]:
        started = time.monotonic()
        snapshot = await self.cache.get(force=True)
        if snapshot.fallback:
            raise LedgerRPCError("Ledger snapshot refresh failed; nothing was mirrored")

        created = 0
        updated = 0
        for record in snapshot.orders:
            existed = self._local_lookup(record.order_id) is not None
            mirror_chain_order(record)
            if existed:
                updated += 1
            else:
                created += 1

        result = {
            "total": len(snapshot.orders),
            "created": created,
            "updated": updated,
            "durationMs": int((time.monotonic() - started) * 1000),
        }
        logger.info("Bulk ledger sync by %s: %s", actor, result)
        record_audit_event("orders", "orders.bulk_synced", result, meta={"actor": actor})
        return result
