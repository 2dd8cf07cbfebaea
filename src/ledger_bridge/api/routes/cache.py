"""Ledger cache inspection and administration.

``GET /cache`` reports counters and freshness; ``DELETE /cache`` drops the
snapshot; ``POST /cache`` forces a refresh and summarises the new snapshot.
"""

import time
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends

from ledger_bridge.api.auth import AdminIdentity, require_permission
from ledger_bridge.api.models import CacheClearResponse, CacheRefreshResponse, CacheStatusResponse
from ledger_bridge.api.permissions import Permission
from ledger_bridge.audit import record_audit_event
from ledger_bridge.services import BridgeServices
from ledger_bridge.sync.cache import LedgerQueryCache


def _iso(ms: int | None) -> str | None:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=UTC).isoformat()


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def cache_stats(cache: LedgerQueryCache) -> dict[str, Any]:
    stats = cache.stats()
    age = stats["cacheAgeMs"]
    return {
        **stats,
        "cacheAgeSec": round(age / 1000) if age is not None else None,
        "lastFetchDate": _iso(stats["lastFetch"]),
    }


def router(services: BridgeServices) -> APIRouter:
    """Build the cache router."""
    api = APIRouter()
    cache = services.cache

    @api.get("/cache", response_model=CacheStatusResponse)
    async def get_cache_status(
        _admin: AdminIdentity = Depends(require_permission(Permission.VIEW_CACHE)),
    ):
        return {
            "cache": cache_stats(cache),
            "config": {
                "cacheTtlMs": cache.ttl_ms,
                "maxCacheAgeMs": cache.max_age_ms,
                "eventLimit": services.reader.event_limit,
            },
            "status": cache.freshness(),
        }

    @api.delete("/cache", response_model=CacheClearResponse)
    async def clear_cache(
        admin: AdminIdentity = Depends(require_permission(Permission.MANAGE_CACHE)),
    ):
        before = cache_stats(cache)
        cache.clear()
        after = cache_stats(cache)
        record_audit_event(
            "cache", "cache.cleared", {"ordersDropped": before["orderCount"]}, meta={"role": admin.label}
        )
        return {"message": "Cache cleared", "before": before, "after": after, "timestamp": _now_iso()}

    @api.post("/cache", response_model=CacheRefreshResponse)
    async def refresh_cache(
        admin: AdminIdentity = Depends(require_permission(Permission.MANAGE_CACHE)),
    ):
        started = time.monotonic()
        snapshot = await cache.get(force=True)
        duration = int((time.monotonic() - started) * 1000)
        record_audit_event(
            "cache",
            "cache.refreshed",
            {"orderCount": len(snapshot.orders), "durationMs": duration, "stale": snapshot.stale},
            meta={"role": admin.label},
        )
        return {
            "message": "Cache refreshed" if not snapshot.stale else "Refresh failed; serving previous snapshot",
            "refreshDuration": duration,
            "orderCount": len(snapshot.orders),
            "cacheStats": cache_stats(cache),
            "orderStats": cache.order_stats(),
            "timestamp": _now_iso(),
        }

    return api
