"""
Branch Splicer - FastAPI Application

Creates the intake app, resolves the routing table once, and opens the
ledger backend for the life of the process.

Run with: uvicorn splicer.main:app
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from . import __version__
from .config.routing import RoutingTable, get_routing_table
from .config.settings import configure_logging, get_settings
from .core.errors import setup_error_handlers
from .routers.intake import router as intake_router
from .stores.session import MemoryBackend, PostgresBackend, build_backend

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the ledger backend on startup unless one was injected; close it on shutdown."""
    owns_backend = app.state.backend is None
    if owns_backend:
        app.state.backend = build_backend(get_settings())

    logger.info(
        f"Branch Splicer {__version__} ready",
        extra={"count": len(app.state.routing.destinations)},
    )
    try:
        yield
    finally:
        if owns_backend:
            app.state.backend.close()
            app.state.backend = None


def create_app(
    backend: MemoryBackend | PostgresBackend | None = None,
    routing: RoutingTable | None = None,
) -> FastAPI:
    """
    Application factory.

    Args:
        backend: Ledger backend; built from settings at startup when omitted
        routing: Routing table; the process-wide table when omitted
    """
    configure_logging()

    app = FastAPI(
        title="Branch Splicer",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.backend = backend
    app.state.routing = routing or get_routing_table()

    setup_error_handlers(app)
    app.include_router(intake_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app


app = create_app()


# =============================================================================
# CLI Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "splicer.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=not settings.is_production,
        log_level=settings.LOG_LEVEL.lower(),
    )
