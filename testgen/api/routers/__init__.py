"""API routers."""

from .health import router as health_router
from .queue import router as queue_router
from .runs import router as runs_router
from .worker import router as worker_router

__all__ = [
    "health_router",
    "queue_router",
    "runs_router",
    "worker_router",
]
