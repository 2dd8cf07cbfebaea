"""Key/value stores: in-process map for single instances, Redis otherwise."""

from __future__ import annotations

import logging

from ledger_bridge.store.base import KeyValueStore
from ledger_bridge.store.memory import MemoryKeyValueStore
from ledger_bridge.store.nonce import NonceStore
from ledger_bridge.store.redis_store import RedisKeyValueStore

logger = logging.getLogger(__name__)


def build_store(redis_url: str, *, key_prefix: str = "") -> KeyValueStore:
    """Create the configured store. An empty URL selects the in-process map."""
    if redis_url:
        logger.info("Using Redis key/value store")
        return RedisKeyValueStore.from_url(redis_url, key_prefix=key_prefix)
    logger.warning(
        "No redis_url configured; nonce replay protection is per-process only"
    )
    return MemoryKeyValueStore()


__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "NonceStore",
    "RedisKeyValueStore",
    "build_store",
]
