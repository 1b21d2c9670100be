"""
Queue API endpoints.

Routes:
- POST /queue/enqueue - Enqueue a job for the worker
- GET /queue/stats - Queue statistics
- POST /queue/purge - Drop every queued message

Dependencies: testgen.core.queue, testgen.models
System role: Queue administration HTTP API
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from testgen.api.deps import get_queue, get_settings_dependency
from testgen.configs import Settings
from testgen.core.exceptions import QueueError, TransientInfrastructureError
from testgen.core.queue import QueueBackend
from testgen.models.queue import EnqueueRequest, EnqueueResponse, QueueStatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["queue"])


@router.post("/enqueue", response_model=EnqueueResponse, status_code=202)
async def enqueue_job(
    request: EnqueueRequest,
    queue: QueueBackend = Depends(get_queue),
) -> EnqueueResponse:
    """
    Enqueue a job for the orchestrator worker.

    Raises:
        HTTPException(503): Queue unavailable
    """
    try:
        message_id = await queue.enqueue(
            request.payload,
            priority=request.priority,
            delay_seconds=request.delay_seconds,
            metadata=request.metadata,
        )
    except (QueueError, TransientInfrastructureError) as e:
        logger.error(f"{__name__}:enqueue_job - {e}")
        raise HTTPException(status_code=503, detail=e.message)
    return EnqueueResponse(message_id=message_id, queue=queue.name, priority=request.priority)


@router.get("/stats", response_model=QueueStatsResponse)
async def queue_stats(
    queue: QueueBackend = Depends(get_queue),
    settings: Settings = Depends(get_settings_dependency),
) -> QueueStatsResponse:
    """
    Queue statistics.

    Raises:
        HTTPException(503): Queue unavailable
    """
    try:
        stats = await queue.get_stats()
    except (QueueError, TransientInfrastructureError) as e:
        raise HTTPException(status_code=503, detail=e.message)
    return QueueStatsResponse(
        queue=queue.name,
        type=settings.queue_type,
        healthy=await queue.is_healthy(),
        stats=stats.to_dict(),
    )


@router.post("/purge")
async def purge_queue(queue: QueueBackend = Depends(get_queue)) -> dict:
    """
    Drop queued, delayed and failed messages.

    Raises:
        HTTPException(503): Queue unavailable
    """
    try:
        await queue.purge()
    except (QueueError, TransientInfrastructureError) as e:
        raise HTTPException(status_code=503, detail=e.message)
    logger.warning(f"{__name__}:purge_queue - Queue '{queue.name}' purged")
    return {"status": "purged", "queue": queue.name}
