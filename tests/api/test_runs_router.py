"""
Test suite for the runs router.

Exercises every run endpoint through TestClient with RunService mocked,
covering request validation, response shaping and the mapping of domain
errors to HTTP status codes.

System role: Verification of the run lifecycle HTTP API
"""

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from testgen.api.deps import get_run_service
from testgen.api.main import create_app
from testgen.boundary.db.models import RunDecision, RunState
from testgen.core.exceptions import InvalidStateTransitionError, RunNotFoundError


def _run(run_id: uuid.UUID, **overrides) -> SimpleNamespace:
    now = datetime.now(timezone.utc)
    values = {
        "id": run_id,
        "project_id": "proj-1",
        "user_id": None,
        "state": RunState.QUEUED,
        "repository": "acme/app",
        "branch": "main",
        "commit_id": None,
        "instruction": None,
        "diff_summary": None,
        "test_plan": None,
        "proposals": None,
        "approved_proposal_ids": None,
        "test_scripts": None,
        "merge_request": None,
        "test_results": None,
        "coverage": None,
        "confidence_score": None,
        "error_message": None,
        "decision": None,
        "decision_data": None,
        "created_at": now,
        "updated_at": now,
        "finished_at": None,
        "access_token": "secret-token",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def client(mock_run_service):
    app = create_app(use_lifespan=False)
    app.dependency_overrides[get_run_service] = lambda: mock_run_service
    return TestClient(app)


class TestCreateRun:
    """Test suite for POST /runs."""

    def test_create_run_should_return_202_without_token(self, client, mock_run_service, run_id) -> None:
        """Test the run is created queued and the credential never leaks."""
        # Arrange
        mock_run_service.create_run.return_value = _run(run_id)

        # Act
        response = client.post(
            "/api/v1/runs",
            json={"project_id": "proj-1", "repository": "acme/app", "access_token": "secret-token"},
        )

        # Assert
        assert response.status_code == 202
        data = response.json()
        assert data["id"] == str(run_id)
        assert data["state"] == "queued"
        assert "access_token" not in data
        mock_run_service.create_run.assert_called_once_with(
            project_id="proj-1",
            repository="acme/app",
            branch="main",
            user_id=None,
            access_token="secret-token",
            instruction=None,
        )

    @pytest.mark.parametrize("body", [
        {"project_id": "proj-1", "repository": "not-a-repo"},
        {"project_id": "", "repository": "acme/app"},
        {"repository": "acme/app"},
    ])
    def test_invalid_request_should_return_422(self, client, mock_run_service, body) -> None:
        # Act
        response = client.post("/api/v1/runs", json=body)

        # Assert
        assert response.status_code == 422
        mock_run_service.create_run.assert_not_called()


class TestReadRuns:
    """Test suite for GET endpoints."""

    def test_get_run_should_return_details(self, client, mock_run_service, run_id) -> None:
        # Arrange
        mock_run_service.get_run.return_value = _run(
            run_id,
            state=RunState.PROPOSALS,
            proposals=[{"id": "test_001", "title": "adds"}],
        )

        # Act
        response = client.get(f"/api/v1/runs/{run_id}")

        # Assert
        assert response.status_code == 200
        assert response.json()["proposals"][0]["id"] == "test_001"
        mock_run_service.get_run.assert_called_once_with(run_id)

    def test_get_run_not_found_should_return_404(self, client, mock_run_service, run_id) -> None:
        # Arrange
        mock_run_service.get_run.side_effect = RunNotFoundError(str(run_id))

        # Act
        response = client.get(f"/api/v1/runs/{run_id}")

        # Assert
        assert response.status_code == 404
        assert "not found" in response.json()["detail"].lower()

    def test_list_runs_should_pass_filters(self, client, mock_run_service, run_id) -> None:
        # Arrange
        mock_run_service.list_runs.return_value = [_run(run_id)]

        # Act
        response = client.get("/api/v1/runs", params={"project_id": "proj-1", "state": "queued", "limit": 10})

        # Assert
        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["limit"] == 10
        mock_run_service.list_runs.assert_called_once_with(
            project_id="proj-1",
            user_id=None,
            state=RunState.QUEUED,
            limit=10,
            offset=0,
        )

    def test_stats_should_not_be_routed_as_run_id(self, client, mock_run_service) -> None:
        """Test /runs/stats/summary is matched before /runs/{id}."""
        # Arrange
        mock_run_service.stats.return_value = {
            "total": 1,
            "by_state": {state.value: 0 for state in RunState} | {"queued": 1},
            "average_confidence": None,
        }

        # Act
        response = client.get("/api/v1/runs/stats/summary")

        # Assert
        assert response.status_code == 200
        assert response.json()["by_state"]["queued"] == 1

    def test_get_logs_should_map_metadata(self, client, mock_run_service, run_id) -> None:
        # Arrange
        entry = SimpleNamespace(
            id=uuid.uuid4(),
            run_id=run_id,
            timestamp=datetime.now(timezone.utc),
            level="info",
            message="Fetching source code",
            log_metadata={"from": "queued", "to": "fetching_code"},
        )
        mock_run_service.get_logs.return_value = [entry]

        # Act
        response = client.get(f"/api/v1/runs/{run_id}/logs")

        # Assert
        assert response.status_code == 200
        assert response.json()[0]["metadata"] == {"from": "queued", "to": "fetching_code"}

    def test_get_logs_unknown_run_should_return_404(self, client, mock_run_service, run_id) -> None:
        # Arrange
        mock_run_service.get_logs.side_effect = RunNotFoundError(str(run_id))

        # Act
        response = client.get(f"/api/v1/runs/{run_id}/logs")

        # Assert
        assert response.status_code == 404


class TestRunActions:
    """Test suite for approve, execute and decision."""

    def test_approve_should_return_approved_run(self, client, mock_run_service, run_id) -> None:
        # Arrange
        mock_run_service.approve.return_value = _run(
            run_id, state=RunState.APPROVED, approved_proposal_ids=["test_001"]
        )

        # Act
        response = client.post(f"/api/v1/runs/{run_id}/approve", json={"proposal_ids": ["test_001"]})

        # Assert
        assert response.status_code == 200
        assert response.json()["state"] == "approved"
        mock_run_service.approve.assert_called_once_with(run_id, ["test_001"])

    @pytest.mark.parametrize("error, status_code", [
        (RunNotFoundError("x"), 404),
        (InvalidStateTransitionError("queued", "approved"), 409),
        (ValueError("Unknown proposal ids: nope"), 400),
    ])
    def test_approve_errors_should_map_to_status(self, client, mock_run_service, run_id, error, status_code) -> None:
        # Arrange
        mock_run_service.approve.side_effect = error

        # Act
        response = client.post(f"/api/v1/runs/{run_id}/approve", json={"proposal_ids": ["nope"]})

        # Assert
        assert response.status_code == status_code

    def test_approve_empty_selection_should_return_422(self, client, mock_run_service, run_id) -> None:
        # Act
        response = client.post(f"/api/v1/runs/{run_id}/approve", json={"proposal_ids": []})

        # Assert
        assert response.status_code == 422

    def test_execute_should_return_202(self, client, mock_run_service, run_id) -> None:
        # Arrange
        mock_run_service.execute.return_value = _run(run_id, state=RunState.APPROVED)

        # Act
        response = client.post(f"/api/v1/runs/{run_id}/execute")

        # Assert
        assert response.status_code == 202
        mock_run_service.execute.assert_called_once_with(run_id)

    def test_execute_before_approval_should_return_409(self, client, mock_run_service, run_id) -> None:
        # Arrange
        mock_run_service.execute.side_effect = InvalidStateTransitionError("proposals", "generating_test_scripts")

        # Act
        response = client.post(f"/api/v1/runs/{run_id}/execute")

        # Assert
        assert response.status_code == 409
        assert "proposals" in response.json()["detail"]

    def test_decision_should_be_recorded(self, client, mock_run_service, run_id) -> None:
        # Arrange
        mock_run_service.record_decision.return_value = _run(
            run_id, state=RunState.COMPLETED, decision=RunDecision.PR, decision_data={}
        )

        # Act
        response = client.post(f"/api/v1/runs/{run_id}/decision", json={"decision": "pr"})

        # Assert
        assert response.status_code == 200
        assert response.json()["decision"] == "pr"
        mock_run_service.record_decision.assert_called_once_with(run_id, RunDecision.PR, {})

    def test_decision_on_running_run_should_return_409(self, client, mock_run_service, run_id) -> None:
        # Arrange
        mock_run_service.record_decision.side_effect = InvalidStateTransitionError("proposals", "decision:pr")

        # Act
        response = client.post(f"/api/v1/runs/{run_id}/decision", json={"decision": "pr"})

        # Assert
        assert response.status_code == 409
