"""
Route registration entry point for the FastAPI application.

Each module builds one router from the shared :class:`BridgeServices`.
"""

from fastapi import FastAPI

from ledger_bridge.api.routes import cache, health, orders, reconcile, sponsor
from ledger_bridge.services import BridgeServices


def register_routes(app: FastAPI, services: BridgeServices) -> None:
    """Register all API routes with the FastAPI app."""
    app.include_router(health.router(services))
    app.include_router(cache.router(services))
    app.include_router(orders.router(services))
    app.include_router(reconcile.router(services))
    app.include_router(sponsor.router(services))
