"""Replay protection for signed requests."""

from __future__ import annotations

import logging

from ledger_bridge.store.base import KeyValueStore

logger = logging.getLogger(__name__)

NONCE_NAMESPACE = "nonce:"


class NonceStore:
    """Consume-once ``(address, nonce)`` records with a TTL.

    A record is created on first consumption, never updated, and disappears
    only when its TTL lapses.
    """

    def __init__(self, store: KeyValueStore, *, ttl_ms: int) -> None:
        self._store = store
        self.ttl_ms = ttl_ms

    @staticmethod
    def key_for(address: str, nonce: str) -> str:
        return f"{address}:{nonce}"

    async def consume(self, address: str, nonce: str) -> bool:
        """Return True if this is the first use of ``nonce`` by ``address``."""
        key = self.key_for(address, nonce)
        first = await self._store.consume_once(NONCE_NAMESPACE + key, self.ttl_ms)
        if not first:
            logger.warning("Replayed nonce rejected for %s", address)
        return first
