"""
Run ORM model.

One persisted end-to-end test-generation cycle for a project and branch.
The state column only moves forward along RUN_STATE_FLOW, or to FAILED
from any non-terminal state.

Dependencies: sqlalchemy, testgen.boundary.db.base
System role: Run lifecycle persistence
"""

import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, Enum, Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from testgen.boundary.db.base import Base, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from testgen.boundary.db.models.run_log_model import RunLogModel


class RunState(str, enum.Enum):
    """
    Run lifecycle states.

    QUEUED: Created, driver not started yet
    FETCHING_CODE: Listing and downloading source files from the host
    GENERATING_TEST_CASES: Model proposing test cases
    PROPOSALS: Waiting for a human to approve a subset (no timeout)
    APPROVED: Subset approved, waiting for execute
    GENERATING_TEST_SCRIPTS: Model writing code for approved cases
    CREATING_MR: Branch, commit and pull request on the host
    COMPLETED: Results and coverage persisted
    FAILED: Any step raised; error_message holds the reason
    """

    QUEUED = "queued"
    FETCHING_CODE = "fetching_code"
    GENERATING_TEST_CASES = "generating_test_cases"
    PROPOSALS = "proposals"
    APPROVED = "approved"
    GENERATING_TEST_SCRIPTS = "generating_test_scripts"
    CREATING_MR = "creating_mr"
    COMPLETED = "completed"
    FAILED = "failed"


RUN_STATE_FLOW: tuple[RunState, ...] = (
    RunState.QUEUED,
    RunState.FETCHING_CODE,
    RunState.GENERATING_TEST_CASES,
    RunState.PROPOSALS,
    RunState.APPROVED,
    RunState.GENERATING_TEST_SCRIPTS,
    RunState.CREATING_MR,
    RunState.COMPLETED,
)

TERMINAL_RUN_STATES = frozenset({RunState.COMPLETED, RunState.FAILED})


class RunDecision(str, enum.Enum):
    """What the user chose to do with a completed run's tests."""

    COMMIT = "commit"
    PR = "pr"
    NONE = "none"


class RunModel(Base, UUIDMixin, TimestampMixin):
    """
    Run ORM model.

    Attributes:
        project_id: Project reference (opaque to the pipeline)
        user_id: Requesting user reference
        state: Lifecycle state (see RunState)
        repository: Source host repository as owner/name
        branch: Branch the code is fetched from
        commit_id: Head commit observed while fetching
        access_token: Opaque bearer credential for the source host
        instruction: Free-text generation instructions
        diff_summary: Summary of fetched files
        proposals: Test cases proposed by the model
        approved_proposal_ids: Subset of proposal ids approved by a human
        test_scripts: Generated files keyed by path
        merge_request: Branch and pull request details
        test_results: Pass/fail outcome
        coverage: Coverage report
        confidence_score: Model confidence in [0, 1]
        error_message: Failure reason when state is FAILED
        decision: User decision after completion
        decision_data: Extra data attached to the decision
        finished_at: When the run reached COMPLETED or FAILED
    """

    __tablename__ = "runs"

    project_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    state: Mapped[RunState] = mapped_column(
        Enum(RunState, native_enum=False, length=32),
        nullable=False,
        default=RunState.QUEUED,
        index=True,
    )

    repository: Mapped[str] = mapped_column(String(255), nullable=False)
    branch: Mapped[str] = mapped_column(String(255), nullable=False, default="main")
    commit_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    instruction: Mapped[str | None] = mapped_column(Text, nullable=True)

    diff_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    test_plan: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    proposals: Mapped[list | None] = mapped_column(JSON, nullable=True)
    approved_proposal_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    test_scripts: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    merge_request: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    test_results: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    coverage: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    decision: Mapped[RunDecision | None] = mapped_column(
        Enum(RunDecision, native_enum=False, length=16),
        nullable=True,
    )
    decision_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    logs: Mapped[list["RunLogModel"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="RunLogModel.timestamp",
    )
