"""
FastAPI application with assembled routers.

Initializes the app, wires middleware and routers, and manages shared
components (tables, queue, embedded worker) through the lifespan.

Dependencies: fastapi, testgen.api.routers, uvicorn
System role: API entry point with router assembly and server launch
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from testgen.api.deps import get_service_cache
from testgen.boundary.db import create_all_tables
from testgen.configs import get_settings
from testgen.observability.logger import configure_logging
from testgen.observability.middleware import CorrelationMiddleware, RequestLoggingMiddleware

from .routers import health_router, queue_router, runs_router, worker_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Startup: configure logging, ensure tables, connect the queue and start
    the embedded worker. Shutdown: stop the worker, wait for run drivers and
    release connections.
    """
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info(
        f"{__name__}:lifespan - Starting ({settings.environment}, queue={settings.queue_type}, "
        f"llm={settings.llm_provider})"
    )

    await create_all_tables()
    cache = get_service_cache()
    await cache.start()
    logger.info(f"{__name__}:lifespan - Startup complete")

    yield

    await cache.close()
    cache.clear()
    logger.info(f"{__name__}:lifespan - Shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    """
    Create and configure FastAPI application with routers.

    Args:
        use_lifespan: Attach the startup/shutdown lifespan (tests disable it)

    Returns:
        FastAPI: Configured application instance with all routers registered
    """
    app = FastAPI(
        title="TestGen API",
        description="Asynchronous test generation pipeline",
        version="0.1.0",
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add observability middleware
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationMiddleware)

    # Register all routers with /api/v1 prefix for versioning
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(runs_router, prefix="/api/v1")
    app.include_router(queue_router, prefix="/api/v1")
    app.include_router(worker_router, prefix="/api/v1")

    return app


app = create_app()


if __name__ == "__main__":
    load_dotenv()
    uvicorn.run(
        "testgen.api.main:app",
        host="0.0.0.0",
        port=8000,
    )
