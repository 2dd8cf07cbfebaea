"""In-process key/value store.

Only correct for a single server process. Two instances behind a load
balancer each hold their own map, so a nonce consumed on one instance can be
consumed again on the other. Configure ``store.redis_url`` for any
horizontally scaled deployment.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from ledger_bridge.store.base import KeyValueStore


def _now_ms() -> int:
    return int(time.time() * 1000)


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store with lazy expiry."""

    def __init__(self, *, clock: Callable[[], int] = _now_ms) -> None:
        self._clock = clock
        # key -> (value, expires_at_ms or None)
        self._entries: dict[str, tuple[str, int | None]] = {}

    def _prune(self, now: int) -> None:
        expired = [
            key
            for key, (_, expires_at) in self._entries.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            del self._entries[key]

    async def get(self, key: str) -> str | None:
        self._prune(self._clock())
        entry = self._entries.get(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, *, ttl_ms: int | None = None) -> None:
        now = self._clock()
        self._entries[key] = (value, now + ttl_ms if ttl_ms is not None else None)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def consume_once(self, key: str, ttl_ms: int) -> bool:
        # No await between the check and the write, so this is atomic within
        # one event loop.
        now = self._clock()
        self._prune(now)
        if key in self._entries:
            return False
        self._entries[key] = ("1", now + ttl_ms)
        return True

    def __len__(self) -> int:
        self._prune(self._clock())
        return len(self._entries)
