"""
Run CRUD operations.

Provides persistence for RunModel with state-guarded mutations. Every
write after creation is a conditional single-row update on the expected
prior state; a None return means another writer got there first or the
run is not in the expected state.

Dependencies: sqlalchemy, testgen.boundary.db.models.run_model
System role: Run lifecycle persistence operations
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from testgen.boundary.db.CRUD.base_crud import BaseCRUD
from testgen.boundary.db.models.run_model import (
    TERMINAL_RUN_STATES,
    RunModel,
    RunState,
)


class RunCRUD(BaseCRUD[RunModel]):
    """CRUD operations for RunModel."""

    def __init__(self) -> None:
        """Initialize RunCRUD with RunModel."""
        super().__init__(RunModel)

    async def create_run(
        self,
        session: AsyncSession,
        project_id: str,
        repository: str,
        branch: str = "main",
        user_id: str | None = None,
        access_token: str | None = None,
        instruction: str | None = None,
    ) -> RunModel:
        """
        Create a run in the QUEUED state.

        Args:
            session: Async database session
            project_id: Project reference
            repository: owner/name on the source host
            branch: Branch to fetch code from
            user_id: Requesting user
            access_token: Opaque source host credential
            instruction: Free-text generation instructions

        Returns:
            Created RunModel
        """
        return await self.create(
            session,
            project_id=project_id,
            repository=repository,
            branch=branch,
            user_id=user_id,
            access_token=access_token,
            instruction=instruction,
            state=RunState.QUEUED,
        )

    async def list_runs(
        self,
        session: AsyncSession,
        project_id: str | None = None,
        user_id: str | None = None,
        state: RunState | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[RunModel]:
        """
        List runs newest first with optional filters.

        Args:
            session: Async database session
            project_id: Only runs of this project
            user_id: Only runs requested by this user
            state: Only runs in this state
            limit: Page size
            offset: Rows to skip

        Returns:
            Sequence of RunModel
        """
        stmt = select(RunModel)
        if project_id is not None:
            stmt = stmt.where(RunModel.project_id == project_id)
        if user_id is not None:
            stmt = stmt.where(RunModel.user_id == user_id)
        if state is not None:
            stmt = stmt.where(RunModel.state == state)
        stmt = stmt.order_by(RunModel.created_at.desc()).offset(offset).limit(limit)
        result = await session.execute(stmt)
        return result.scalars().all()

    async def transition_state(
        self,
        session: AsyncSession,
        run_id: UUID,
        expected: RunState | Iterable[RunState],
        target: RunState,
        **fields: Any,
    ) -> RunModel | None:
        """
        Move a run to target only if it is currently in an expected state.

        Args:
            session: Async database session
            run_id: Run primary key
            expected: Required current state (or any of several)
            target: New state
            **fields: Other columns written in the same statement

        Returns:
            Updated RunModel, or None when the guard did not match
        """
        expected_states = [expected] if isinstance(expected, RunState) else list(expected)
        if target in TERMINAL_RUN_STATES and "finished_at" not in fields:
            fields["finished_at"] = datetime.now(timezone.utc)
        return await self.update_where(
            session,
            run_id,
            criteria=[RunModel.state.in_(expected_states)],
            state=target,
            **fields,
        )

    async def update_fields(
        self,
        session: AsyncSession,
        run_id: UUID,
        expected: RunState,
        **fields: Any,
    ) -> RunModel | None:
        """
        Write columns without changing state, guarded by the current state.

        Returns:
            Updated RunModel, or None when the run is not in expected
        """
        return await self.update_where(
            session,
            run_id,
            criteria=[RunModel.state == expected],
            **fields,
        )

    async def mark_failed(
        self,
        session: AsyncSession,
        run_id: UUID,
        error_message: str,
    ) -> RunModel | None:
        """
        Move any non-terminal run to FAILED.

        Returns:
            Updated RunModel, or None if the run was already terminal
        """
        return await self.update_where(
            session,
            run_id,
            criteria=[RunModel.state.not_in(list(TERMINAL_RUN_STATES))],
            state=RunState.FAILED,
            error_message=error_message[:2000],
            finished_at=datetime.now(timezone.utc),
        )

    async def stats_summary(
        self,
        session: AsyncSession,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Count runs per state.

        Returns:
            dict: {"total": int, "by_state": {state: count}, "average_confidence": float | None}
        """
        stmt = select(RunModel.state, func.count(RunModel.id)).group_by(RunModel.state)
        avg_stmt = select(func.avg(RunModel.confidence_score))
        if project_id is not None:
            stmt = stmt.where(RunModel.project_id == project_id)
            avg_stmt = avg_stmt.where(RunModel.project_id == project_id)

        rows = (await session.execute(stmt)).all()
        by_state = {state.value: 0 for state in RunState}
        for state, count in rows:
            by_state[RunState(state).value] = count

        average = (await session.execute(avg_stmt)).scalar_one_or_none()
        return {
            "total": sum(by_state.values()),
            "by_state": by_state,
            "average_confidence": round(float(average), 3) if average is not None else None,
        }


run_crud = RunCRUD()
