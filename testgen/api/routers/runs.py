"""
Run API endpoints.

Routes:
- POST /runs - Create run and start driving it
- GET /runs - List runs with filters
- GET /runs/stats/summary - Run counts per state
- GET /runs/{id} - Run details
- GET /runs/{id}/logs - Run log entries
- POST /runs/{id}/approve - Approve a subset of proposals
- POST /runs/{id}/execute - Generate scripts and open a pull request
- POST /runs/{id}/decision - Record decision on a completed run

Dependencies: testgen.application.services.run_service, testgen.models
System role: Run lifecycle HTTP API
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from testgen.api.deps import get_run_service
from testgen.application.services import RunService
from testgen.boundary.db.models import RunState
from testgen.core.exceptions import InvalidStateTransitionError, RunNotFoundError
from testgen.models.run import (
    ApproveRunRequest,
    CreateRunRequest,
    DecisionRequest,
    RunListResponse,
    RunLogResponse,
    RunResponse,
    RunStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["runs"])


@router.post("", response_model=RunResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_run(
    request: CreateRunRequest,
    run_service: RunService = Depends(get_run_service),
) -> RunResponse:
    """
    Create a run and start fetching code and proposing test cases.

    The run is returned in the queued state; poll GET /runs/{id} until it
    reaches proposals (or failed).

    Args:
        request: CreateRunRequest with project, repository and branch
        run_service: Injected RunService

    Returns:
        RunResponse: Created run
    """
    run = await run_service.create_run(
        project_id=request.project_id,
        repository=request.repository,
        branch=request.branch,
        user_id=request.user_id,
        access_token=request.access_token,
        instruction=request.instruction,
    )
    return RunResponse.model_validate(run)


@router.get("", response_model=RunListResponse)
async def list_runs(
    project_id: str | None = None,
    user_id: str | None = None,
    state: RunState | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    run_service: RunService = Depends(get_run_service),
) -> RunListResponse:
    """List runs newest first."""
    runs = await run_service.list_runs(
        project_id=project_id,
        user_id=user_id,
        state=state,
        limit=limit,
        offset=offset,
    )
    return RunListResponse(
        runs=[RunResponse.model_validate(run) for run in runs],
        limit=limit,
        offset=offset,
        count=len(runs),
    )


@router.get("/stats/summary", response_model=RunStatsResponse)
async def run_stats(
    project_id: str | None = None,
    run_service: RunService = Depends(get_run_service),
) -> RunStatsResponse:
    """Run counts per state and average confidence."""
    return RunStatsResponse(**await run_service.stats(project_id=project_id))


@router.get("/{run_id}", response_model=RunResponse)
async def get_run(
    run_id: UUID,
    run_service: RunService = Depends(get_run_service),
) -> RunResponse:
    """
    Get run details.

    Raises:
        HTTPException(404): Run not found
    """
    try:
        run = await run_service.get_run(run_id)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return RunResponse.model_validate(run)


@router.get("/{run_id}/logs", response_model=list[RunLogResponse])
async def get_run_logs(
    run_id: UUID,
    limit: int | None = Query(default=None, ge=1, le=1000),
    run_service: RunService = Depends(get_run_service),
) -> list[RunLogResponse]:
    """
    Get a run's log entries oldest first.

    Raises:
        HTTPException(404): Run not found
    """
    try:
        logs = await run_service.get_logs(run_id, limit=limit)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return [RunLogResponse.model_validate(entry) for entry in logs]


@router.post("/{run_id}/approve", response_model=RunResponse)
async def approve_run(
    run_id: UUID,
    request: ApproveRunRequest,
    run_service: RunService = Depends(get_run_service),
) -> RunResponse:
    """
    Approve a subset of proposed test cases.

    Raises:
        HTTPException(400): Empty or unknown proposal ids
        HTTPException(404): Run not found
        HTTPException(409): Run is not awaiting approval
    """
    try:
        run = await run_service.approve(run_id, request.proposal_ids)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except InvalidStateTransitionError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return RunResponse.model_validate(run)


@router.post("/{run_id}/execute", response_model=RunResponse, status_code=status.HTTP_202_ACCEPTED)
async def execute_run(
    run_id: UUID,
    run_service: RunService = Depends(get_run_service),
) -> RunResponse:
    """
    Generate scripts for approved proposals and open a pull request.

    Raises:
        HTTPException(404): Run not found
        HTTPException(409): Run has not been approved
    """
    try:
        run = await run_service.execute(run_id)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except InvalidStateTransitionError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return RunResponse.model_validate(run)


@router.post("/{run_id}/decision", response_model=RunResponse)
async def record_decision(
    run_id: UUID,
    request: DecisionRequest,
    run_service: RunService = Depends(get_run_service),
) -> RunResponse:
    """
    Record commit / pr / none on a completed run.

    Raises:
        HTTPException(404): Run not found
        HTTPException(409): Run has not completed
    """
    try:
        run = await run_service.record_decision(run_id, request.decision, request.data)
    except RunNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except InvalidStateTransitionError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return RunResponse.model_validate(run)
