"""Health and root endpoints.

``/`` reports API identity and version; ``/health`` is an unauthenticated
liveness check that also reports ledger cache freshness.

The version string is read from ``ledger_bridge.__version__``, resolved via
``importlib.metadata`` from ``pyproject.toml``.
"""

from fastapi import APIRouter

from ledger_bridge import __version__
from ledger_bridge.services import BridgeServices


def router(services: BridgeServices) -> APIRouter:
    """Build the health router."""
    api = APIRouter()

    @api.get("/")
    async def root():
        """Root endpoint showing API identity and current version."""
        return {"message": "Ledger Bridge API", "version": __version__}

    @api.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": __version__,
            "cache": services.cache.freshness(),
        }

    return api
