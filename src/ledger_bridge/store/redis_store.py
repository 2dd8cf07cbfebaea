"""Redis-backed key/value store for multi-instance deployments."""

from __future__ import annotations

import logging

from redis.asyncio import Redis

from ledger_bridge.store.base import KeyValueStore

logger = logging.getLogger(__name__)


class RedisKeyValueStore(KeyValueStore):
    """Store over ``redis.asyncio``.

    ``consume_once`` uses ``SET key 1 NX PX ttl``, which is atomic on the
    server, so it holds across any number of bridge processes.
    """

    def __init__(self, client: Redis, *, key_prefix: str = "") -> None:
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, *, key_prefix: str = "") -> RedisKeyValueStore:
        client = Redis.from_url(url, decode_responses=True)
        return cls(client, key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> str | None:
        return await self._client.get(self._key(key))

    async def set(self, key: str, value: str, *, ttl_ms: int | None = None) -> None:
        if ttl_ms is None:
            await self._client.set(self._key(key), value)
        else:
            await self._client.set(self._key(key), value, px=max(1, ttl_ms))

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(self._key(key)))

    async def consume_once(self, key: str, ttl_ms: int) -> bool:
        acquired = await self._client.set(self._key(key), "1", nx=True, px=max(1, ttl_ms))
        return bool(acquired)

    async def close(self) -> None:
        await self._client.aclose()
