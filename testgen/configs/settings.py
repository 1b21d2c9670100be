"""
Unified application settings.

Aggregates all configuration modules into a single Settings class.
Provides dependency injection factory for FastAPI and the worker.

Dependencies: All config modules
System role: Central configuration aggregator for the application
"""

from functools import lru_cache

from testgen.configs.base import BaseSettings
from testgen.configs.database import DatabaseSettings
from testgen.configs.llm import LLMSettings
from testgen.configs.queue import QueueSettings
from testgen.configs.source_host import SourceHostSettings
from testgen.configs.tools import ToolSettings
from testgen.configs.worker import WorkerSettings


class Settings(BaseSettings):
    """Unified application settings aggregating all config modules."""

    # Aggregated settings
    database: DatabaseSettings = DatabaseSettings()
    queue: QueueSettings = QueueSettings()
    llm: LLMSettings = LLMSettings()
    worker: WorkerSettings = WorkerSettings()
    tools: ToolSettings = ToolSettings()
    source_host: SourceHostSettings = SourceHostSettings()

    @property
    def queue_type(self) -> str:
        """Queue backend after environment auto-configuration (production forces SQS)."""
        if self.is_production:
            return "sqs"
        return self.queue.type.lower()

    @property
    def llm_provider(self) -> str:
        """LLM provider after environment auto-configuration (production forces Bedrock)."""
        if self.is_production:
            return "bedrock"
        return self.llm.provider.lower()


@lru_cache
def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns Settings instance, cached for dependency injection.
    Environment variables loaded once at startup.

    Returns:
        Settings: Application settings instance

    Usage:
        from testgen.configs import get_settings
        settings = get_settings()
    """
    return Settings()
