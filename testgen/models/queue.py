"""
Queue domain models and schemas.

Request/response schemas for queue administration and worker status.

Dependencies: pydantic
System role: Queue and worker API contracts
"""

from typing import Any

from pydantic import BaseModel, Field

from testgen.core.queue import Priority


class EnqueueRequest(BaseModel):
    """Request schema for enqueuing a job."""

    payload: dict[str, Any] = Field(description="Job payload (type, project_id, repository, commit_id, ...)")
    priority: Priority = Field(default=Priority.NORMAL)
    delay_seconds: float = Field(default=0.0, ge=0.0, le=900.0, description="Visibility delay")
    metadata: dict[str, Any] = Field(default_factory=dict)


class EnqueueResponse(BaseModel):
    message_id: str
    queue: str
    priority: Priority


class QueueStatsResponse(BaseModel):
    """Queue statistics for one backend."""

    queue: str
    type: str
    healthy: bool
    stats: dict[str, int]


class WorkerStatusResponse(BaseModel):
    """Worker snapshot; embedded is False when the worker runs in its own process."""

    embedded: bool
    running: bool = False
    queue: str | None = None
    concurrency: int | None = None
    active_jobs: int = 0
    active_job_ids: list[str] = Field(default_factory=list)
    total_jobs: int = 0
    error_count: int = 0
    metrics: dict[str, Any] = Field(default_factory=dict)
