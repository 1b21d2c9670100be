"""
Logging utilities for safe structured logging.

Provides helpers for logging arbitrary payloads (LLM output, tool results)
without string concatenation errors or unbounded log lines.

Dependencies: logging (stdlib)
System role: Logging helper functions
"""

import logging
from typing import Any

# LogRecord attributes that must not be overwritten through `extra`
_RESERVED_KEYS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


def safe_log_value(value: Any, max_length: int = 500) -> str:
    """
    Render a value for a log field without dumping whole payloads.

    Collections are summarized by size, exceptions by type and message, and
    queue messages or ORM rows by their id.

    Args:
        value: Value to render
        max_length: Longest string kept before truncation

    Returns:
        str: Bounded string representation
    """
    try:
        if value is None:
            return "None"
        if isinstance(value, bytes):
            text = value.decode("utf-8", errors="replace")
        elif isinstance(value, str):
            text = value
        elif isinstance(value, BaseException):
            text = f"{type(value).__name__}: {value}"
        elif isinstance(value, (list, tuple, set)):
            text = f"{type(value).__name__}({len(value)} items)"
        elif isinstance(value, dict):
            text = f"dict({len(value)} keys)"
        elif hasattr(value, "id"):
            text = f"{type(value).__name__}({value.id})"
        else:
            text = str(value)
    except Exception as e:
        return f"<unloggable {type(e).__name__}>"

    if len(text) > max_length:
        return f"{text[:max_length]}... (truncated, {len(text)} total)"
    return text


def _safe_extra(context: dict[str, Any]) -> dict[str, str]:
    extra = {}
    for key, val in context.items():
        name = f"ctx_{key}" if key in _RESERVED_KEYS else key
        extra[name] = safe_log_value(val)
    return extra


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **context,
) -> None:
    """
    Log a message with structured context, safely converting all values.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        message: Log message
        **context: Context dict with arbitrary key-value pairs
    """
    logger.log(level, message, extra=_safe_extra(context))


def log_exception_with_context(
    logger: logging.Logger,
    message: str,
    exc: Exception,
    **context,
) -> None:
    """
    Log an exception with full context.

    Args:
        logger: Logger instance
        message: Log message
        exc: Exception instance
        **context: Additional context dict
    """
    safe_context = _safe_extra(context)
    safe_context.update({
        "error_type": type(exc).__name__,
        "error_msg": str(exc),
    })
    logger.error(message, exc_info=exc, extra=safe_context)
