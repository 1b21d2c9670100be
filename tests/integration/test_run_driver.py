"""
Integration tests for the run lifecycle.

Drives real runs through RunService and RunLifecycleDriver on SQLite with
the mock generation provider and an in-memory GitHub, checking the state
sequence, the audit log written alongside each transition and the state
guards on approve, execute and decision.

System role: End-to-end verification of the run lifecycle
"""

from unittest.mock import AsyncMock

import pytest

from testgen.application.services.run_service import RunService, RunTaskRegistry
from testgen.boundary.db.CRUD import run_crud, run_log_crud
from testgen.boundary.db.models import RunDecision, RunState
from testgen.configs.source_host import SourceHostSettings
from testgen.core.exceptions import InvalidStateTransitionError
from testgen.core.generation import MockProvider, ResilientGenerationClient
from testgen.core.runs import RunLifecycleDriver


@pytest.fixture
def driver(test_session_factory, fake_github) -> RunLifecycleDriver:
    generation = ResilientGenerationClient(MockProvider(), sleep=AsyncMock())
    return RunLifecycleDriver(
        test_session_factory,
        generation,
        SourceHostSettings(),
        github_factory=lambda token: fake_github,
    )


@pytest.fixture
def tasks() -> RunTaskRegistry:
    return RunTaskRegistry()


class Harness:
    """Opens a fresh session per service call, like one request each."""

    def __init__(self, session_factory, driver, tasks) -> None:
        self.session_factory = session_factory
        self.driver = driver
        self.tasks = tasks

    async def call(self, method: str, *args, **kwargs):
        async with self.session_factory() as session:
            service = RunService(session, self.driver, self.tasks)
            return await getattr(service, method)(*args, **kwargs)

    async def load(self, run_id):
        async with self.session_factory() as session:
            run = await run_crud.get_by_id(session, run_id)
            logs = await run_log_crud.list_by_run(session, run_id)
        return run, logs


@pytest.fixture
def harness(test_session_factory, driver, tasks) -> Harness:
    return Harness(test_session_factory, driver, tasks)


async def _run_to_proposals(harness: Harness):
    run = await harness.call("create_run", project_id="proj-1", repository="acme/app", branch="main")
    await harness.tasks.wait_all(timeout=5)
    return run


class TestDriveToProposals:
    """Test suite for creation through proposals."""

    @pytest.mark.asyncio
    async def test_create_run_should_reach_proposals_with_logged_states(self, harness) -> None:
        """Test states are persisted in order, each with at least one log entry."""
        # Act
        created = await _run_to_proposals(harness)

        # Assert
        assert created.state == RunState.QUEUED
        run, logs = await harness.load(created.id)
        assert run.state == RunState.PROPOSALS
        reached = [entry.log_metadata["to"] for entry in logs if entry.log_metadata and "to" in entry.log_metadata]
        assert reached == ["queued", "fetching_code", "generating_test_cases", "proposals"]
        assert logs[0].message == "Run queued for acme/app@main"

    @pytest.mark.asyncio
    async def test_drive_should_persist_fetch_results_and_proposals(self, harness, fake_github) -> None:
        # Act
        created = await _run_to_proposals(harness)

        # Assert
        run, _ = await harness.load(created.id)
        assert run.commit_id == fake_github.head_sha
        assert run.test_plan["files"] == ["src/math.js", "src/strings.js"]
        assert run.test_plan["language"] == "javascript"
        assert run.test_plan["framework"] == "jest"
        assert [p["id"] for p in run.proposals] == ["test_001"]

    @pytest.mark.asyncio
    async def test_drive_on_claimed_run_should_return_none(self, harness) -> None:
        """Test a second driver cannot take a run already past queued."""
        # Arrange
        created = await _run_to_proposals(harness)

        # Act
        result = await harness.driver.drive(created.id)

        # Assert
        assert result is None
        run, _ = await harness.load(created.id)
        assert run.state == RunState.PROPOSALS

    @pytest.mark.asyncio
    async def test_fetch_without_eligible_files_should_fail_run(self, harness, fake_github) -> None:
        """Test a driver exception marks the run failed with an error log."""
        # Arrange
        fake_github.files = {"README.md": "# docs\n"}

        # Act
        created = await _run_to_proposals(harness)

        # Assert
        run, logs = await harness.load(created.id)
        assert run.state == RunState.FAILED
        assert "No files eligible" in run.error_message
        assert run.finished_at is not None
        assert logs[-1].level == "error"
        assert logs[-1].log_metadata["error_type"] == "PermanentLogicError"


class TestApproveAndExecute:
    """Test suite for approval, execution and decisions."""

    @pytest.mark.asyncio
    async def test_execute_before_approve_should_be_rejected(self, harness) -> None:
        # Arrange
        created = await _run_to_proposals(harness)

        # Act & Assert
        with pytest.raises(InvalidStateTransitionError):
            await harness.call("execute", created.id)
        assert harness.tasks.pending == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("proposal_ids", [[], ["does-not-exist"]])
    async def test_approve_with_bad_selection_should_raise(self, harness, proposal_ids) -> None:
        # Arrange
        created = await _run_to_proposals(harness)

        # Act & Assert
        with pytest.raises(ValueError):
            await harness.call("approve", created.id, proposal_ids)
        run, _ = await harness.load(created.id)
        assert run.state == RunState.PROPOSALS

    @pytest.mark.asyncio
    async def test_approve_twice_should_be_rejected(self, harness) -> None:
        # Arrange
        created = await _run_to_proposals(harness)
        await harness.call("approve", created.id, ["test_001"])

        # Act & Assert
        with pytest.raises(InvalidStateTransitionError):
            await harness.call("approve", created.id, ["test_001"])

    @pytest.mark.asyncio
    async def test_approved_run_should_complete_with_pull_request(self, harness, fake_github) -> None:
        """Test approve then execute commits the script and opens a PR."""
        # Arrange
        created = await _run_to_proposals(harness)
        approved = await harness.call("approve", created.id, ["test_001"])
        assert approved.state == RunState.APPROVED
        assert approved.approved_proposal_ids == ["test_001"]

        # Act
        await harness.call("execute", created.id)
        await harness.tasks.wait_all(timeout=5)

        # Assert
        run, logs = await harness.load(created.id)
        suffix = created.id.hex[:8]
        script_path = f"tests/generated/testgen_{suffix}.test.js"
        assert run.state == RunState.COMPLETED
        assert run.finished_at is not None
        assert list(run.test_scripts) == [script_path]
        assert script_path in fake_github.committed
        assert fake_github.created_branches == [(f"testgen/run-{suffix}", fake_github.head_sha)]
        assert run.merge_request["number"] == 17
        assert run.merge_request["base"] == "main"
        assert run.merge_request["commits"] == ["commit-1"]
        assert run.test_results == {"status": "not_run", "reason": "no tool server configured"}
        assert run.confidence_score == 0.9

        reached = [entry.log_metadata["to"] for entry in logs if entry.log_metadata and "to" in entry.log_metadata]
        assert reached[-4:] == ["approved", "generating_test_scripts", "creating_mr", "completed"]
        assert any(entry.message == "Opened pull request #17" for entry in logs)

    @pytest.mark.asyncio
    async def test_decision_should_require_completed_run(self, harness) -> None:
        # Arrange
        created = await _run_to_proposals(harness)

        # Act & Assert
        with pytest.raises(InvalidStateTransitionError):
            await harness.call("record_decision", created.id, RunDecision.PR)

    @pytest.mark.asyncio
    async def test_decision_on_completed_run_should_be_stored(self, harness) -> None:
        # Arrange
        created = await _run_to_proposals(harness)
        await harness.call("approve", created.id, ["test_001"])
        await harness.call("execute", created.id)
        await harness.tasks.wait_all(timeout=5)

        # Act
        run = await harness.call("record_decision", created.id, RunDecision.COMMIT, {"note": "ship it"})

        # Assert
        assert run.decision == RunDecision.COMMIT
        assert run.decision_data == {"note": "ship it"}
        _, logs = await harness.load(created.id)
        assert logs[-1].message == "Decision recorded: commit"
