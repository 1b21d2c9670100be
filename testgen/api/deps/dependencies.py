"""
Dependency injection container.

Holds the process-wide components (queue, generation client, tool client,
run driver, embedded worker) and exposes FastAPI dependency factories.

Dependencies: testgen.configs, testgen.application, testgen.boundary, testgen.core
System role: DI container for service injection
"""

import logging
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from testgen.application.services import RunService, RunTaskRegistry
from testgen.boundary.db import get_async_db, get_async_session_factory
from testgen.configs import Settings, get_settings
from testgen.core.generation import ResilientGenerationClient
from testgen.core.queue import QueueBackend, create_queue
from testgen.core.runs import RunLifecycleDriver
from testgen.core.tools import ToolClient, ToolHelpers
from testgen.workers import OrchestratorWorker

logger = logging.getLogger(__name__)


class ServiceCache:
    """Container for cached service instances, built lazily on first use."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings
        self._queue: QueueBackend | None = None
        self._generation: ResilientGenerationClient | None = None
        self._tool_client: ToolClient | None = None
        self._run_driver: RunLifecycleDriver | None = None
        self._worker: OrchestratorWorker | None = None
        self.run_tasks = RunTaskRegistry()

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def queue(self) -> QueueBackend:
        """Get cached queue backend (resolved once from settings)."""
        if self._queue is None:
            self._queue = create_queue(self.settings)
        return self._queue

    @property
    def generation(self) -> ResilientGenerationClient:
        if self._generation is None:
            self._generation = ResilientGenerationClient.from_settings(
                self.settings.llm,
                self.settings.llm_provider,
            )
        return self._generation

    @property
    def tool_client(self) -> ToolClient:
        if self._tool_client is None:
            self._tool_client = ToolClient.from_settings(self.settings.tools)
        return self._tool_client

    @property
    def run_driver(self) -> RunLifecycleDriver:
        if self._run_driver is None:
            self._run_driver = RunLifecycleDriver(
                session_factory=get_async_session_factory(),
                generation=self.generation,
                source_host=self.settings.source_host,
                tools=ToolHelpers(self.tool_client),
            )
        return self._run_driver

    @property
    def worker(self) -> OrchestratorWorker | None:
        """Embedded worker, or None when the worker runs as its own process."""
        if not self.settings.worker.embedded:
            return None
        if self._worker is None:
            self._worker = OrchestratorWorker.from_settings(
                self.settings,
                queue=self.queue,
                generation=self.generation,
                tools=ToolHelpers(self.tool_client),
            )
        return self._worker

    async def start(self) -> None:
        """Connect the queue and start the embedded worker."""
        await self.queue.connect()
        worker = self.worker
        if worker is not None:
            await worker.start()

    async def close(self) -> None:
        """Stop the worker, wait for run drivers, release connections."""
        if self._worker is not None and self._worker.is_running:
            await self._worker.stop()
        await self.run_tasks.wait_all(timeout=self.settings.worker.shutdown_grace_seconds)
        if self._queue is not None and self._queue.is_connected:
            await self._queue.disconnect()
        if self._tool_client is not None:
            await self._tool_client.close()

    def clear(self) -> None:
        """Clear all cached instances."""
        self._queue = None
        self._generation = None
        self._tool_client = None
        self._run_driver = None
        self._worker = None
        self.run_tasks = RunTaskRegistry()


# Global service cache
_service_cache = ServiceCache()


def get_service_cache() -> ServiceCache:
    """Get service cache singleton."""
    return _service_cache


@lru_cache
def get_settings_dependency() -> Settings:
    """Get settings singleton."""
    return get_settings()


def get_run_service(db: AsyncSession = Depends(get_async_db)) -> RunService:
    """
    Get run service instance.

    Args:
        db: Async database session (injected via Depends)

    Returns:
        RunService: Run service bound to the request session
    """
    cache = get_service_cache()
    return RunService(db=db, driver=cache.run_driver, tasks=cache.run_tasks)


def get_queue() -> QueueBackend:
    """Get the process-wide queue backend."""
    return get_service_cache().queue


def get_worker() -> OrchestratorWorker | None:
    """Get the embedded worker, if any."""
    return get_service_cache().worker


def get_tool_client() -> ToolClient:
    return get_service_cache().tool_client
