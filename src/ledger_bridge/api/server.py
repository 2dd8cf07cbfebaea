"""
FastAPI server for the ledger bridge.

This module builds the FastAPI application that exposes the bridge's
HTTP surface. It sets up:
- CORS middleware restricted to the configured origins
- Exception handlers that render every BridgeError as
  ``{"error": code, "message": ..., **extra}``
- The shared services (cache, resolver, authenticator, sponsor)
- All API routes

The module-level ``app`` is built from the runtime configuration; tests call
:func:`create_app` with their own services.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ledger_bridge import __version__
from ledger_bridge.api.routes import register_routes
from ledger_bridge.config import BridgeConfig, config
from ledger_bridge.db.errors import DatabaseError
from ledger_bridge.errors import BridgeError
from ledger_bridge.services import BridgeServices, build_services

logger = logging.getLogger(__name__)


async def _bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def _database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    logger.error("%s %s database failure: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "database_error", "message": "Local order store is unavailable"},
    )


def create_app(services: BridgeServices | None = None, cfg: BridgeConfig | None = None) -> FastAPI:
    """Build the application. Services default to ones built from ``cfg``."""
    cfg = cfg or config
    services = services or build_services(cfg)

    docs = cfg.docs_should_be_enabled

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await services.close()

    app = FastAPI(
        title="Ledger Bridge",
        version=__version__,
        docs_url="/docs" if docs else None,
        redoc_url="/redoc" if docs else None,
        openapi_url="/openapi.json" if docs else None,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.security.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BridgeError, _bridge_error_handler)
    app.add_exception_handler(DatabaseError, _database_error_handler)

    register_routes(app, services)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.server.host, port=config.server.port)
