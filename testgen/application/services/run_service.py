"""
Run service orchestrator.

Request-scoped use cases for runs. Creating or executing a run spawns a
detached driver task that outlives the request; the task registry keeps a
reference to every such task until it finishes.

Dependencies: testgen.boundary.db.CRUD, testgen.core.runs
System role: Run use case orchestration
"""

import asyncio
import logging
from typing import Any, Coroutine, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from testgen.boundary.db.CRUD import run_crud, run_log_crud
from testgen.boundary.db.models import RunDecision, RunLogModel, RunModel, RunState
from testgen.core.exceptions import InvalidStateTransitionError, RunNotFoundError
from testgen.core.runs import RunLifecycleDriver

logger = logging.getLogger(__name__)


class RunTaskRegistry:
    """Holds detached driver tasks so they are not garbage collected mid-run."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_all(self, timeout: float | None = None) -> None:
        """Wait for running drivers (shutdown and tests)."""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"{__name__}:wait_all - {len(pending)} run driver(s) still running")


class RunService:
    """Run service orchestrator."""

    def __init__(
        self,
        db: AsyncSession,
        driver: RunLifecycleDriver,
        tasks: RunTaskRegistry,
    ) -> None:
        """
        Initialize run service.

        Args:
            db: Async SQLAlchemy session for this request
            driver: Shared lifecycle driver
            tasks: Shared registry of detached driver tasks
        """
        self.db = db
        self.driver = driver
        self.tasks = tasks

    async def create_run(
        self,
        project_id: str,
        repository: str,
        branch: str = "main",
        user_id: str | None = None,
        access_token: str | None = None,
        instruction: str | None = None,
    ) -> RunModel:
        """
        Persist a queued run and start driving it in the background.

        Returns:
            RunModel: The run as created (state queued)
        """
        run = await run_crud.create_run(
            self.db,
            project_id=project_id,
            repository=repository,
            branch=branch,
            user_id=user_id,
            access_token=access_token,
            instruction=instruction,
        )
        await run_log_crud.append(
            self.db,
            run.id,
            f"Run queued for {repository}@{branch}",
            metadata={"to": RunState.QUEUED.value},
        )
        await self.db.commit()

        self.tasks.spawn(self.driver.drive(run.id), name=f"run-drive-{run.id}")
        logger.info(f"{__name__}:create_run - Run {run.id} queued for {repository}@{branch}")
        return run

    async def get_run(self, run_id: UUID) -> RunModel:
        """
        Get run by ID.

        Raises:
            RunNotFoundError: If the run does not exist
        """
        run = await run_crud.get_by_id(self.db, run_id)
        if run is None:
            raise RunNotFoundError(str(run_id))
        return run

    async def list_runs(
        self,
        project_id: str | None = None,
        user_id: str | None = None,
        state: RunState | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[RunModel]:
        return await run_crud.list_runs(
            self.db,
            project_id=project_id,
            user_id=user_id,
            state=state,
            limit=limit,
            offset=offset,
        )

    async def get_logs(self, run_id: UUID, limit: int | None = None) -> Sequence[RunLogModel]:
        await self.get_run(run_id)
        return await run_log_crud.list_by_run(self.db, run_id, limit=limit)

    async def approve(self, run_id: UUID, proposal_ids: list[str]) -> RunModel:
        """
        Approve a subset of proposals (proposals -> approved).

        Raises:
            RunNotFoundError: Unknown run
            InvalidStateTransitionError: Run is not awaiting approval
            ValueError: Empty or unknown proposal ids
        """
        return await self.driver.approve(run_id, proposal_ids)

    async def execute(self, run_id: UUID) -> RunModel:
        """
        Start script generation and pull request creation for an approved run.

        The state guard is checked here so callers get an immediate
        rejection; the driver re-checks it atomically when it claims the run.

        Raises:
            RunNotFoundError: Unknown run
            InvalidStateTransitionError: Run has not been approved
        """
        run = await self.get_run(run_id)
        if run.state != RunState.APPROVED:
            raise InvalidStateTransitionError(run.state.value, RunState.GENERATING_TEST_SCRIPTS.value)

        self.tasks.spawn(self.driver.execute(run_id), name=f"run-execute-{run_id}")
        logger.info(f"{__name__}:execute - Run {run_id} execution started")
        return run

    async def record_decision(
        self,
        run_id: UUID,
        decision: RunDecision,
        data: dict[str, Any] | None = None,
    ) -> RunModel:
        """
        Record the user's decision on a completed run.

        Raises:
            RunNotFoundError: Unknown run
            InvalidStateTransitionError: Run has not completed
        """
        return await self.driver.record_decision(run_id, decision, data)

    async def stats(self, project_id: str | None = None) -> dict[str, Any]:
        return await run_crud.stats_summary(self.db, project_id=project_id)
