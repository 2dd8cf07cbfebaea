"""Key/value store interface shared by the nonce store and other consumers."""

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Minimal async key/value store with millisecond TTLs.

    ``consume_once`` is the replay-protection primitive: it records ``key``
    for ``ttl_ms`` and reports whether this call was the first to do so.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, *, ttl_ms: int | None = None) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def consume_once(self, key: str, ttl_ms: int) -> bool: ...

    async def close(self) -> None:
        """Release any connections held by the store."""
        return None
