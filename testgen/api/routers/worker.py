"""
Worker API endpoints.

Routes: GET /worker/status

Dependencies: testgen.workers, testgen.models
System role: Worker status HTTP API
"""

from fastapi import APIRouter, Depends

from testgen.api.deps import get_worker
from testgen.models.queue import WorkerStatusResponse
from testgen.workers import OrchestratorWorker

router = APIRouter(prefix="/worker", tags=["worker"])


@router.get("/status", response_model=WorkerStatusResponse)
async def worker_status(worker: OrchestratorWorker | None = Depends(get_worker)) -> WorkerStatusResponse:
    """Embedded worker snapshot; a standalone worker reports through its logs."""
    if worker is None:
        return WorkerStatusResponse(embedded=False)
    return WorkerStatusResponse(embedded=True, **await worker.status())
