"""API-specific dependencies."""

from .dependencies import (
    ServiceCache,
    get_queue,
    get_run_service,
    get_service_cache,
    get_settings_dependency,
    get_tool_client,
    get_worker,
)

__all__ = [
    "ServiceCache",
    "get_queue",
    "get_run_service",
    "get_service_cache",
    "get_settings_dependency",
    "get_tool_client",
    "get_worker",
]
