"""
Run domain models and schemas.

Request/response schemas for the run lifecycle API.

Dependencies: pydantic
System role: Run API contracts
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from testgen.boundary.db.models import RunDecision, RunState


class CreateRunRequest(BaseModel):
    """Request schema for starting a run."""

    project_id: str = Field(min_length=1, description="Project reference")
    repository: str = Field(
        pattern=r"^[\w.-]+/[\w.-]+$",
        description="Source host repository as owner/name",
    )
    branch: str = Field(default="main", min_length=1, description="Branch to generate tests for")
    user_id: str | None = Field(default=None, description="Requesting user")
    access_token: str | None = Field(default=None, description="Opaque source host credential")
    instruction: str | None = Field(default=None, max_length=4000, description="Extra generation instructions")


class ApproveRunRequest(BaseModel):
    """Request schema for approving proposals."""

    proposal_ids: list[str] = Field(min_length=1, description="Ids of proposals to turn into scripts")


class DecisionRequest(BaseModel):
    """Request schema for recording a decision on a completed run."""

    decision: RunDecision
    data: dict[str, Any] = Field(default_factory=dict, description="Decision details")


class RunResponse(BaseModel):
    """Response schema for a run. The access token is never returned."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    project_id: str
    user_id: str | None
    state: RunState
    repository: str
    branch: str
    commit_id: str | None
    instruction: str | None
    diff_summary: str | None
    test_plan: dict | None
    proposals: list | None
    approved_proposal_ids: list | None
    test_scripts: dict | None
    merge_request: dict | None
    test_results: dict | None
    coverage: dict | None
    confidence_score: float | None
    error_message: str | None
    decision: RunDecision | None
    decision_data: dict | None
    created_at: datetime
    updated_at: datetime
    finished_at: datetime | None


class RunListResponse(BaseModel):
    """Paginated list of runs."""

    runs: list[RunResponse]
    limit: int
    offset: int
    count: int


class RunLogResponse(BaseModel):
    """Response schema for one run log entry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    run_id: uuid.UUID
    timestamp: datetime
    level: str
    message: str
    metadata: dict | None = Field(default=None, validation_alias="log_metadata")


class RunStatsResponse(BaseModel):
    """Run counts per state."""

    total: int
    by_state: dict[str, int]
    average_confidence: float | None
