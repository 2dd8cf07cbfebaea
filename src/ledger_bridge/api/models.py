"""
Pydantic models for API requests and responses.

Request bodies that are covered by a signature (chain-sync, sponsorship) are
read as raw bytes first so the body hash is computed over exactly what was
sent; these models then validate the decoded JSON.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ============================================================================
# REQUEST MODELS
# ============================================================================


class ChainSyncRequest(BaseModel):
    """
    Body of ``POST /orders/{order_id}/chain-sync``.

    Attributes:
        userAddress: Address the signature was made with. Required unless an
            admin token authenticates the request.
        digest: Optional transaction digest for the last-resort rebuild.
    """

    userAddress: str | None = None
    digest: str | None = None


class ReconcileActionRequest(BaseModel):
    action: Literal["sync_missing", "fix_status", "sync_all"]


class OrderPatchRequest(BaseModel):
    """Admin edit of a local order. Omitted fields are left unchanged."""

    stage: str | None = None
    payment_status: str | None = None
    note: str | None = None
    companion_address: str | None = None


class SponsorRequest(BaseModel):
    """
    Body of ``POST /chain/sponsor``.

    ``prepare`` needs ``sender`` and ``kindBytes``; ``execute`` needs
    ``txBytes`` and ``userSignature``.
    """

    step: Literal["prepare", "execute"]
    sender: str | None = None
    kindBytes: str | None = None
    txBytes: str | None = None
    userSignature: str | None = None


# ============================================================================
# RESPONSE MODELS
# ============================================================================


class CacheStats(BaseModel):
    orderCount: int
    cacheAgeMs: int | None = None
    cacheAgeSec: int | None = None
    lastFetch: int | None = None
    lastFetchDate: str | None = None
    hits: int
    misses: int
    hitRate: float


class CacheConfig(BaseModel):
    cacheTtlMs: int
    maxCacheAgeMs: int
    eventLimit: int


class CacheStatusResponse(BaseModel):
    cache: CacheStats
    config: CacheConfig
    status: Literal["fresh", "stale", "expired", "empty"]


class CacheClearResponse(BaseModel):
    message: str
    before: CacheStats
    after: CacheStats
    timestamp: str


class CacheRefreshResponse(BaseModel):
    message: str
    refreshDuration: int = Field(description="Milliseconds spent refreshing")
    orderCount: int
    cacheStats: CacheStats
    orderStats: dict[str, Any]
    timestamp: str


class ChainSyncResponse(BaseModel):
    success: bool
    order: dict[str, Any]
    syncedFrom: Literal["cache", "node", "digest"]
    chainStatus: int
    retries: int = 0
    waitedMs: int = 0


class BulkSyncResponse(BaseModel):
    total: int
    created: int
    updated: int
    durationMs: int


class ReconcileActionResponse(BaseModel):
    action: str
    applied: bool
    queuedForReview: int
    orderIds: list[str]


class SponsorPrepareResponse(BaseModel):
    bytes: str
    sponsor: str
    sender: str
    gasBudget: int


class SponsorExecuteResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    digest: str | None = None


class OrderResponse(BaseModel):
    order: dict[str, Any]
