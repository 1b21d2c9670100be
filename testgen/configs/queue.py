"""
Queue configuration settings.

Manages queue backend selection and per-backend connection parameters.
Includes delivery guarantees (visibility timeout, retry limits).

Dependencies: pydantic, pydantic_settings
System role: Job queue configuration for the orchestrator worker
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QueueSettings(BaseSettings):
    """Queue backend configuration (local, SQS, Redis)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="QUEUE_",
        case_sensitive=False,
        extra="ignore",
    )

    type: str = Field(
        default="local",
        description="Queue backend: 'local' for dev, 'sqs' for production, 'redis' for broker",
    )
    name: str = Field(default="testgen-jobs", description="Logical queue name")

    # Delivery policy
    visibility_timeout_seconds: int = Field(
        default=30,
        description="Seconds an unacked message stays invisible before redelivery",
    )
    max_retries: int = Field(default=3, description="Default max retries per message")
    receive_wait_seconds: int = Field(
        default=20,
        description="Long-poll wait for SQS receive calls",
    )

    # SQS
    sqs_region: str = Field(default="us-east-1", description="AWS region for SQS")
    sqs_queue_url_high: str | None = Field(default=None, description="SQS queue URL for high priority")
    sqs_queue_url_normal: str | None = Field(default=None, description="SQS queue URL for normal priority")
    sqs_queue_url_low: str | None = Field(default=None, description="SQS queue URL for low priority")

    # Redis
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    redis_key_prefix: str = Field(default="queue:", description="Prefix for all Redis keys")

    @property
    def sqs_queue_urls(self) -> dict[str, str]:
        """
        Map priority buckets to configured SQS queue URLs.

        Buckets without a dedicated URL fall back to the normal queue.

        Returns:
            dict[str, str]: Priority name to queue URL
        """
        normal = self.sqs_queue_url_normal
        urls = {
            "high": self.sqs_queue_url_high or normal,
            "normal": normal,
            "low": self.sqs_queue_url_low or normal,
        }
        return {priority: url for priority, url in urls.items() if url}
