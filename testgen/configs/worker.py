"""
Worker configuration settings.

Concurrency, retry, and confidence policy for the orchestrator worker.

Dependencies: pydantic, pydantic_settings
System role: Orchestrator worker configuration
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkerSettings(BaseSettings):
    """Orchestrator worker configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="WORKER_",
        case_sensitive=False,
        extra="ignore",
    )

    concurrency: int = Field(default=5, ge=1, le=20, description="Maximum in-flight jobs")
    max_retries: int = Field(default=3, ge=0, le=10, description="Retries before permanent failure")
    confidence_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Minimum confidence to finish a job without review",
    )
    poll_timeout_seconds: float = Field(default=5.0, description="Dequeue long-poll timeout")
    idle_sleep_seconds: float = Field(
        default=1.0,
        description="Pause while the worker is at its concurrency limit",
    )
    error_sleep_seconds: float = Field(
        default=5.0,
        description="Pause after an unexpected error in the poll loop",
    )
    retry_delay_base_seconds: float = Field(
        default=2.0,
        description="Base of the exponential requeue delay",
    )
    shutdown_grace_seconds: float = Field(
        default=30.0,
        description="How long stop() waits for active jobs",
    )
    notify_channel: str = Field(default="slack", description="Channel for review notifications")
    visibility_heartbeat_seconds: float | None = Field(
        default=None,
        description="How often running jobs extend their message visibility (default: half the timeout)",
    )
    embedded: bool = Field(
        default=True,
        description="Run the worker inside the API process (required for the local queue)",
    )
