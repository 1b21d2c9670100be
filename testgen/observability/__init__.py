"""
Observability module.

Provides logging configuration, correlation ID tracking across jobs and
requests, and HTTP middleware.
"""

from testgen.observability.correlation import (
    clear_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from testgen.observability.logger import configure_logging

__all__ = [
    "configure_logging",
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
]
