"""API request/response schemas."""

from testgen.models.queue import (
    EnqueueRequest,
    EnqueueResponse,
    QueueStatsResponse,
    WorkerStatusResponse,
)
from testgen.models.run import (
    ApproveRunRequest,
    CreateRunRequest,
    DecisionRequest,
    RunListResponse,
    RunLogResponse,
    RunResponse,
    RunStatsResponse,
)

__all__ = [
    "EnqueueRequest",
    "EnqueueResponse",
    "QueueStatsResponse",
    "WorkerStatusResponse",
    "CreateRunRequest",
    "ApproveRunRequest",
    "DecisionRequest",
    "RunResponse",
    "RunListResponse",
    "RunLogResponse",
    "RunStatsResponse",
]
