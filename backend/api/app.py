"""
FastAPI application factory for the match sync API.

Creates the app with:
- REST routes (matches)
- Middleware stack
- Health and status endpoints
- Lifespan management: starts the MatchDataService (poll loops) on startup
  and stops it on shutdown
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import Depends, FastAPI

from shared.config import get_settings
from shared.utils.http_client import MatchAPIClient
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from api.dependencies import get_match_service, init_dependencies
from api.middleware import setup_middleware
from api.orchestrator import MatchDataService
from api.routes.matches import router as matches_router

logger = get_logger(__name__)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for tests that inject their own service."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    setup_logging("api")
    start_metrics_server()

    service = MatchDataService(MatchAPIClient(settings), settings)
    init_dependencies(service)
    await service.start()
    logger.info("api_service_started", host=settings.api_host, port=settings.api_port)

    yield

    await service.stop()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing."""
    app = FastAPI(
        title="matchsync API",
        description="Normalized live match data over an unreliable upstream",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    setup_middleware(app)
    app.include_router(matches_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/v1/status", tags=["system"])
    async def system_status(service: MatchDataService = Depends(get_match_service)) -> dict[str, Any]:
        """Per-source polling state and regression-guard statistics."""
        return service.status()

    return app


# For running with uvicorn directly
app = create_app()
