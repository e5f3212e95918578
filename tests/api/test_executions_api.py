"""API tests for execution endpoints."""
import pytest
from uuid import UUID, uuid4
from fastapi.testclient import TestClient
from batchforge.core.enums import ExecutionStatus, FailureKind, ItemStatus
from batchforge.repositories.execution_repository import ExecutionRepository
from batchforge.worker.models import ItemOutcome
from tests.factories.execution_factory import create_execution


@pytest.mark.api
class TestExecutionsAPI:
    """Test execution API endpoints."""

    def test_submit_execution(self, client: TestClient, redis_client, encrypted_credential):
        """Test a submitted batch is accepted and queued."""
        batch = {
            "items": [{"prompt": "A lighthouse at dusk"}, {"prompt": "A red bicycle"}],
            "params": {"model": "gemini-2.5-flash-image", "aspect_ratio": "16:9"},
            "encrypted_credential": encrypted_credential,
        }

        response = client.post("/api/v1/executions", json=batch)

        assert response.status_code == 202
        json_response = response.json()

        # Check standard response format
        assert json_response["code"] == "EXEC_0001"
        assert json_response["httpStatus"] == "ACCEPTED"
        assert "description" in json_response

        data = json_response["data"]
        assert data["status"] == "pending"
        assert "execution_id" in data
        assert data["estimated_cost"] == {
            "total_cost": 0.08,
            "cost_per_image": 0.039,
            "image_count": 2,
            "currency": "USD",
        }

        # Handed to the workers through the queue
        redis_client.zadd.assert_called_once()
        key, mapping = redis_client.zadd.call_args.args
        assert key == "batchforge:queue:executions"
        assert list(mapping) == [data["execution_id"]]

    def test_submit_empty_batch_is_accepted(self, client: TestClient):
        """Test an empty batch is recorded; the worker fails it later."""
        response = client.post("/api/v1/executions", json={"items": []})

        assert response.status_code == 202
        assert response.json()["data"]["status"] == "pending"

    def test_submit_invalid_body(self, client: TestClient):
        """Test a malformed body is rejected by validation."""
        response = client.post("/api/v1/executions", json={"items": [{"text": "no prompt"}]})

        assert response.status_code == 422

    def test_submit_prompts_text(self, client: TestClient, db_session):
        """Test blank-line separated prompts become ordered items."""
        response = client.post(
            "/api/v1/executions",
            json={
                "prompts_text": "A lighthouse at dusk\r\n\r\nA red bicycle\n\n\n\nA bowl of ramen\n",
                "params": {"model": "gemini-3-pro-image-preview"},
            },
        )

        assert response.status_code == 202
        data = response.json()["data"]
        assert data["estimated_cost"]["image_count"] == 3
        assert data["estimated_cost"]["cost_per_image"] == 0.134
        assert data["estimated_cost"]["total_cost"] == 0.4

        execution = ExecutionRepository(db_session).get(UUID(data["execution_id"]))
        assert execution.total_items == 3
        assert [item["prompt"] for item in execution.input["items"]] == [
            "A lighthouse at dusk",
            "A red bicycle",
            "A bowl of ramen",
        ]
        assert "prompts_text" not in execution.input

    def test_submit_over_batch_limit(self, client: TestClient, redis_client):
        """Test a batch above the item limit is rejected before anything is queued."""
        items = [{"prompt": f"Prompt number {i}"} for i in range(101)]

        response = client.post("/api/v1/executions", json={"items": items})

        assert response.status_code == 422
        assert "Maximum 100 items allowed, got 101" in response.text
        redis_client.zadd.assert_not_called()

    def test_submit_items_and_prompts_text(self, client: TestClient):
        """Test sending both item forms is rejected."""
        response = client.post(
            "/api/v1/executions",
            json={"items": [{"prompt": "A red bicycle"}], "prompts_text": "A bowl of ramen"},
        )

        assert response.status_code == 422

    def test_get_execution(self, client: TestClient, db_session, encrypted_credential):
        """Test the full record is returned with item results."""
        execution = create_execution(
            db_session, encrypted_credential=encrypted_credential, status=ExecutionStatus.PROCESSING
        )
        repo = ExecutionRepository(db_session)
        repo.record_item(
            execution.id,
            ItemOutcome(index=0, status=ItemStatus.COMPLETED, attempts=1,
                        artifact_ref="http://testserver/artifacts/0.png", media_type="image/png"),
        )
        repo.record_item(
            execution.id,
            ItemOutcome(index=1, status=ItemStatus.FAILED, attempts=1,
                        error_message="Invalid request", failure_kind=FailureKind.CLIENT_ERROR),
        )

        response = client.get(f"/api/v1/executions/{execution.id}")

        assert response.status_code == 200
        json_response = response.json()
        assert json_response["code"] == "EXEC_0002"

        data = json_response["data"]
        assert data["id"] == str(execution.id)
        assert data["status"] == "processing"
        assert data["progress"] == 67
        assert data["total_items"] == 3
        assert data["succeeded"] == 1
        assert data["failed"] == 1
        assert [r["index"] for r in data["results"]] == [0, 1]
        assert data["results"][0]["artifact_ref"] == "http://testserver/artifacts/0.png"
        assert data["results"][1]["failure_kind"] == "client_error"
        assert data["started_at"] is not None
        assert data["finished_at"] is None
        # The credential never leaves the service
        assert "encrypted_credential" not in data
        assert "encrypted_credential" not in data["input"]

    def test_get_execution_not_found(self, client: TestClient):
        """Test retrieving a non-existent execution returns 404."""
        response = client.get(f"/api/v1/executions/{uuid4()}")

        assert response.status_code == 404
        error_detail = response.json()["detail"]
        assert error_detail["code"] == "EXEC_4001"
        assert error_detail["httpStatus"] == "NOT_FOUND"
        assert "not found" in error_detail["description"].lower()

    def test_get_execution_invalid_id(self, client: TestClient):
        """Test a malformed id is rejected."""
        response = client.get("/api/v1/executions/not-a-uuid")

        assert response.status_code == 422

    def test_cancel_execution(self, client: TestClient, db_session):
        """Test cancellation sets the flag and leaves the status to the worker."""
        execution = create_execution(db_session, status=ExecutionStatus.PROCESSING)

        response = client.post(f"/api/v1/executions/{execution.id}/cancel")

        assert response.status_code == 200
        json_response = response.json()
        assert json_response["code"] == "EXEC_0003"

        data = json_response["data"]
        assert data["execution_id"] == str(execution.id)
        assert data["status"] == "processing"
        assert data["cancel_requested"] is True

    def test_cancel_finished_execution(self, client: TestClient, db_session):
        """Test cancelling a terminal execution returns 400."""
        execution = create_execution(db_session, status=ExecutionStatus.PROCESSING)
        ExecutionRepository(db_session).finish(execution.id, ExecutionStatus.COMPLETED)

        response = client.post(f"/api/v1/executions/{execution.id}/cancel")

        assert response.status_code == 400
        error_detail = response.json()["detail"]
        assert error_detail["code"] == "EXEC_4003"
        assert error_detail["httpStatus"] == "BAD_REQUEST"
        assert "cannot be cancelled" in error_detail["description"]

    def test_cancel_execution_not_found(self, client: TestClient):
        """Test cancelling a non-existent execution returns 404."""
        response = client.post(f"/api/v1/executions/{uuid4()}/cancel")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "EXEC_4001"
