"""
Application factory for the dividend HTTP API.

Usage:
    uvicorn --factory patronage_api.app:create_app

Tests build the app against their own session factory and clock:

    app = create_app(config, session_factory=factory, clock=clock)
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from sqlalchemy.orm import Session

from patronage_api.errors import register_error_handlers
from patronage_api.routes import router
from patronage_config import get_active_config
from patronage_config.schema import EngineConfig
from patronage_kernel import __version__
from patronage_kernel.db.engine import get_session_factory, init_engine_from_url
from patronage_kernel.db.immutability import register_immutability_listeners
from patronage_kernel.domain.clock import Clock, SystemClock
from patronage_kernel.logging_config import LogContext, get_logger
from patronage_services.distribution_service import DistributionService
from patronage_services.wiring import build_distribution_service

logger = get_logger("api.app")

CORRELATION_HEADER = "X-Correlation-ID"


def create_app(
    config: EngineConfig | None = None,
    session_factory: Callable[[], Session] | None = None,
    distribution_service: DistributionService | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    config = config or get_active_config()
    clock = clock or SystemClock()

    if session_factory is None:
        db = config.database
        init_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            sqlite_busy_timeout_ms=db.sqlite_busy_timeout_ms,
        )
        session_factory = get_session_factory()
    register_immutability_listeners()

    service = distribution_service or build_distribution_service(config, session_factory, clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("api_started", extra={"config_checksum": config.checksum})
        yield
        service.close()
        logger.info("api_stopped")

    app = FastAPI(title="Patronage Dividend Engine", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.session_factory = session_factory
    app.state.distribution_service = service
    app.state.clock = clock

    @app.middleware("http")
    async def bind_correlation_id(request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
        with LogContext.bind(correlation_id=correlation_id):
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    register_error_handlers(app)
    app.include_router(router)
    return app
