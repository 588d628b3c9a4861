"""FastAPI application entry point for Pricewatch."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pricewatch.api.routes import router
from pricewatch.config.settings import PricewatchConfig
from pricewatch.refresh.bootstrap import build_coordinator
from pricewatch.refresh.coordinator import RefreshCoordinator
from pricewatch.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(
    config: PricewatchConfig | None = None,
    coordinator: RefreshCoordinator | None = None,
) -> FastAPI:
    """Factory function for creating the FastAPI application.

    A coordinator passed in is used as is; otherwise one is built from
    ``config`` when the application starts.
    """
    config = config or PricewatchConfig()
    logging.getLogger("pricewatch").setLevel(config.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.coordinator is None:
            app.state.coordinator = await build_coordinator(config)
        yield
        active: RefreshCoordinator = app.state.coordinator
        await active.drain()
        try:
            await active.acquirer.aclose()
        except Exception as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.BROWSER_CLEANUP_FAILED,
                message=str(exc),
                suppressed=True,
            )

    app = FastAPI(
        title="Pricewatch",
        description="Provider pricing snapshot refresh pipeline",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator
    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": "pricewatch", "version": VERSION}

    return app


app = create_app()
