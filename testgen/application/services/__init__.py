"""Service orchestrators."""

from .run_service import RunService, RunTaskRegistry

__all__ = ["RunService", "RunTaskRegistry"]
