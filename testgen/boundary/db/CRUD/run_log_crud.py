"""
Run log CRUD operations.

Append-only: entries are inserted and listed, never updated or deleted
through this layer.

Dependencies: sqlalchemy, testgen.boundary.db.models.run_log_model
System role: Run audit trail persistence
"""

from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from testgen.boundary.db.CRUD.base_crud import BaseCRUD
from testgen.boundary.db.models.run_log_model import RunLogModel


class RunLogCRUD(BaseCRUD[RunLogModel]):
    """CRUD operations for RunLogModel."""

    def __init__(self) -> None:
        super().__init__(RunLogModel)

    async def append(
        self,
        session: AsyncSession,
        run_id: UUID,
        message: str,
        level: str = "info",
        metadata: dict[str, Any] | None = None,
    ) -> RunLogModel:
        """
        Append a log entry to a run.

        Args:
            session: Async database session
            run_id: Owning run
            message: Log message
            level: info, warning or error
            metadata: Structured details

        Returns:
            Created RunLogModel
        """
        return await self.create(
            session,
            run_id=run_id,
            message=message,
            level=level,
            log_metadata=metadata,
        )

    async def list_by_run(
        self,
        session: AsyncSession,
        run_id: UUID,
        limit: int | None = None,
    ) -> Sequence[RunLogModel]:
        """List a run's entries oldest first."""
        stmt = (
            select(RunLogModel)
            .where(RunLogModel.run_id == run_id)
            .order_by(RunLogModel.timestamp.asc(), RunLogModel.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return result.scalars().all()


run_log_crud = RunLogCRUD()
