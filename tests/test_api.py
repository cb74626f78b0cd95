"""Tests for the REST API."""

import pytest
from fastapi.testclient import TestClient

from workflow_canvas.config import get_testing_config
from workflow_canvas.core.serialization import export_workflow
from workflow_canvas.factory import create_app

from conftest import make_step, make_workflow

API = "/api/v1"


@pytest.fixture
def client():
    """Client for an app backed by an in-memory database; the lifespan runs."""
    with TestClient(create_app(get_testing_config())) as client:
        yield client


@pytest.fixture
def read_only_client():
    config = get_testing_config().model_copy(update={"read_only": True})
    with TestClient(create_app(config)) as client:
        yield client


@pytest.fixture
def linear_id(client, linear_workflow):
    """Id of the linear workflow after importing it."""
    response = client.post(f"{API}/workflows/import", json={"document": export_workflow(linear_workflow)})
    assert response.status_code == 201
    return response.json()["workflow"]["id"]


def run(client, workflow_id, **body):
    return client.post(f"{API}/workflows/{workflow_id}/execute", json={"wait": True, **body})


class TestHealth:
    """Test cases for health endpoints."""

    def test_root_and_health(self, client):
        """Test the basic health checks."""
        assert client.get("/").json()["message"] == "Workflow Canvas is running"

        health = client.get("/health").json()
        assert health["status"] == "healthy"
        assert health["service"] == "workflow-canvas"

    def test_readiness(self, client):
        """Test that the readiness check reaches the database."""
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "healthy"

    def test_request_headers(self, client):
        """Test request id and timing headers added by the middleware."""
        response = client.get("/health")
        assert response.headers["X-Request-ID"]
        assert response.headers["X-Response-Time"].endswith("s")


class TestWorkflowEndpoints:
    """Test cases for workflow CRUD."""

    def test_create_and_get(self, client):
        """Test creating an empty workflow."""
        response = client.post(f"{API}/workflows", json={"name": "Fresh", "description": "Empty"})
        assert response.status_code == 201

        workflow = response.json()["workflow"]
        assert workflow["steps"] == []
        assert "createdAt" in workflow

        fetched = client.get(f"{API}/workflows/{workflow['id']}").json()
        assert fetched["name"] == "Fresh"

    def test_list_includes_latest_status(self, client, linear_id):
        """Test listing summaries with run status."""
        items = client.get(f"{API}/workflows").json()
        assert items[0]["id"] == linear_id
        assert items[0]["stepCount"] == 3
        assert items[0]["status"] == "not_run"

        run(client, linear_id)
        assert client.get(f"{API}/workflows").json()[0]["status"] == "completed"

    def test_import_reports_warnings(self, client):
        """Test that imports keep working workflows with warnings."""
        workflow = make_workflow("no-trigger", [make_step("a"), make_step("b")])
        response = client.post(f"{API}/workflows/import", json={"document": export_workflow(workflow)})

        assert response.status_code == 201
        warnings = response.json()["validationWarnings"]
        assert "Workflow has no trigger step" in warnings
        assert "Step 'A' is not connected to any other step" in warnings

    def test_import_invalid_document(self, client):
        """Test that malformed documents are rejected with their problems."""
        response = client.post(f"{API}/workflows/import", json={"document": {"id": "x", "steps": []}})

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "ValidationError"
        assert "Missing required field: name" in detail["details"]["validation_errors"]

    def test_import_copy(self, client, linear_workflow, linear_id):
        """Test importing the same document as a copy."""
        response = client.post(
            f"{API}/workflows/import", json={"document": export_workflow(linear_workflow), "copy": True}
        )
        assert response.json()["workflow"]["id"] != linear_id

    def test_validate_document(self, client):
        """Test validation without storing."""
        result = client.post(f"{API}/workflows/validate", json={"id": "x", "name": "X"}).json()
        assert result["is_valid"] is False
        assert client.get(f"{API}/workflows").json() == []

    def test_replace_workflow(self, client, linear_workflow, linear_id):
        """Test replacing a stored definition."""
        document = export_workflow(linear_workflow)
        document["name"] = "Replaced"
        document["id"] = "ignored"

        response = client.put(f"{API}/workflows/{linear_id}", json=document)
        assert response.status_code == 200
        assert response.json()["workflow"]["id"] == linear_id
        assert client.get(f"{API}/workflows/{linear_id}").json()["name"] == "Replaced"

    def test_duplicate_and_delete(self, client, linear_id):
        """Test duplicating then deleting workflows."""
        copy = client.post(f"{API}/workflows/{linear_id}/duplicate").json()["workflow"]
        assert copy["name"] == "Linear Workflow (Copy)"

        assert client.delete(f"{API}/workflows/{copy['id']}").status_code == 200
        assert client.delete(f"{API}/workflows/{copy['id']}").status_code == 404
        assert [w["id"] for w in client.get(f"{API}/workflows").json()] == [linear_id]

    def test_export(self, client, linear_id):
        """Test the export download."""
        response = client.get(f"{API}/workflows/{linear_id}/export")

        assert response.headers["Content-Disposition"] == 'attachment; filename="linear-workflow.json"'
        assert response.json()["connections"][0]["source"] == "start"

    def test_unknown_workflow(self, client):
        """Test that unknown workflows are 404s."""
        response = client.get(f"{API}/workflows/missing")
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "GraphReferenceError"
        assert client.get(f"{API}/workflows/missing/validate").status_code == 404


class TestGraphEditingEndpoints:
    """Test cases for step and connection edits."""

    def test_add_step_from_template(self, client, linear_id):
        """Test adding a templated step at the next grid slot."""
        response = client.post(
            f"{API}/workflows/{linear_id}/steps",
            json={"templateKey": "action.send_email", "overrides": {"to": "ops@example.com"}}
        )
        assert response.status_code == 201

        step = response.json()
        assert step["name"] == "Send Email"
        assert step["position"] == {"x": 150.0, "y": 300.0}
        assert step["config"]["to"] == "ops@example.com"
        assert len(client.get(f"{API}/workflows/{linear_id}").json()["steps"]) == 4

    def test_add_step_with_invalid_overrides(self, client, linear_id):
        """Test that config outside the template schema is rejected."""
        response = client.post(
            f"{API}/workflows/{linear_id}/steps",
            json={"templateKey": "trigger.webhook", "overrides": {"path": "nope"}}
        )
        assert response.status_code == 400

    def test_update_step(self, client, linear_id):
        """Test renaming, moving and reconfiguring a step."""
        response = client.patch(
            f"{API}/workflows/{linear_id}/steps/fetch",
            json={"name": "Fetch Orders", "position": {"x": 10, "y": 20}, "config": {"retries": 2}}
        )
        step = response.json()

        assert step["name"] == "Fetch Orders"
        assert step["position"] == {"x": 10.0, "y": 20.0}
        assert step["config"] == {"retries": 2}

    def test_update_unknown_step(self, client, linear_id):
        """Test editing a step that does not exist."""
        response = client.patch(f"{API}/workflows/{linear_id}/steps/missing", json={"name": "X"})
        assert response.status_code == 404

    def test_remove_step_returns_removed_connections(self, client, linear_id):
        """Test cascade removal of connections."""
        removed = client.delete(f"{API}/workflows/{linear_id}/steps/fetch").json()

        assert {c["id"] for c in removed} == {"start-fetch", "fetch-notify"}
        assert client.get(f"{API}/workflows/{linear_id}").json()["connections"] == []

    def test_connections(self, client, linear_id):
        """Test adding, rejecting and removing connections."""
        response = client.post(f"{API}/workflows/{linear_id}/connections", json={"source": "start", "target": "notify"})
        assert response.status_code == 201
        connection_id = response.json()["id"]

        duplicate = client.post(f"{API}/workflows/{linear_id}/connections", json={"source": "start", "target": "notify"})
        assert duplicate.status_code == 400
        loop = client.post(f"{API}/workflows/{linear_id}/connections", json={"source": "start", "target": "start"})
        assert loop.status_code == 400

        assert client.delete(f"{API}/workflows/{linear_id}/connections/{connection_id}").status_code == 200
        assert client.delete(f"{API}/workflows/{linear_id}/connections/{connection_id}").status_code == 404

    def test_relabel_connection(self, client, linear_id):
        """Test editing a connection label."""
        connection_id = client.get(f"{API}/workflows/{linear_id}").json()["connections"][0]["id"]

        response = client.patch(f"{API}/workflows/{linear_id}/connections/{connection_id}", json={"label": "approved"})
        assert response.status_code == 200
        assert response.json()["label"] == "approved"

        stored = client.get(f"{API}/workflows/{linear_id}").json()["connections"]
        assert {c["id"]: c["label"] for c in stored}[connection_id] == "approved"

        missing = client.patch(f"{API}/workflows/{linear_id}/connections/nope", json={"label": "x"})
        assert missing.status_code == 404


class TestExecutionEndpoints:
    """Test cases for running and monitoring workflows."""

    def test_run_and_wait(self, client, linear_id):
        """Test a run that the request waits for."""
        response = run(client, linear_id, input={"order": 7})

        assert response.status_code == 200
        execution = response.json()
        assert execution["status"] == "completed"
        assert [step["id"] for step in execution["steps"]] == ["start", "fetch", "notify"]
        assert execution["steps"][2]["output"] == {"order": 7}
        assert execution["duration"] is not None

        fetched = client.get(f"{API}/executions/{execution['id']}").json()
        assert fetched["workflowId"] == linear_id

    def test_background_run(self, client, linear_id):
        """Test that a background run is accepted while running."""
        response = client.post(f"{API}/workflows/{linear_id}/execute")

        assert response.status_code == 202
        assert response.json()["workflowId"] == linear_id

    def test_cyclic_workflow_rejected(self, client):
        """Test that workflows which cannot be ordered are refused."""
        workflow = make_workflow("cyclic", [make_step("a"), make_step("b")], [("a", "b"), ("b", "a")])
        client.post(f"{API}/workflows/import", json={"document": export_workflow(workflow)})

        assert run(client, "cyclic").status_code == 400
        assert run(client, "missing").status_code == 404

    def test_filter_executions_and_stats(self, client, linear_id):
        """Test the monitoring queries."""
        first = run(client, linear_id).json()
        run(client, linear_id)

        assert len(client.get(f"{API}/workflows/{linear_id}/executions").json()) == 2
        assert len(client.get(f"{API}/executions", params={"search": "linear wORKflow"}).json()) == 2
        assert client.get(f"{API}/executions", params={"search": first["id"]}).json()[0]["id"] == first["id"]
        assert client.get(f"{API}/executions", params={"status": "failed"}).json() == []

        stats = client.get(f"{API}/executions/stats", params={"workflowId": linear_id}).json()
        assert stats["total"] == 2
        assert stats["completed"] == 2
        assert stats["successRate"] == 100.0

    def test_date_filter_needs_both_bounds(self, client):
        """Test that a half-open date range is rejected."""
        response = client.get(f"{API}/executions", params={"start": "2024-05-01T00:00:00Z"})
        assert response.status_code == 400

        response = client.get(
            f"{API}/executions",
            params={"start": "2024-05-02T00:00:00Z", "end": "2024-05-01T00:00:00Z"}
        )
        assert response.status_code == 400

    def test_unknown_execution(self, client):
        """Test lookups and cancellation of unknown executions."""
        assert client.get(f"{API}/executions/missing").status_code == 404
        assert client.post(f"{API}/executions/missing/cancel").status_code == 404

    def test_cancel_finished_execution_conflicts(self, client, linear_id):
        """Test that finished executions cannot be cancelled."""
        execution = run(client, linear_id).json()
        response = client.post(f"{API}/executions/{execution['id']}/cancel", json={"reason": "too late"})
        assert response.status_code == 409


class TestTemplateEndpoints:
    """Test cases for the template library."""

    def test_step_templates_grouped_by_type(self, client):
        """Test the step palette."""
        palette = client.get(f"{API}/templates/steps").json()

        assert set(palette) == {"trigger", "action", "condition", "transformation", "knowledge_node"}
        webhook = next(t for t in palette["trigger"] if t["key"] == "trigger.webhook")
        assert webhook["defaultConfig"]["path"] == "/webhook"

    def test_workflow_templates(self, client):
        """Test searching and categories."""
        assert len(client.get(f"{API}/templates/workflows").json()) == 3
        assert len(client.get(f"{API}/templates/workflows", params={"category": "Data"}).json()) == 1
        assert client.get(f"{API}/templates/workflows/categories").json() == ["Data", "Notifications"]

    def test_instantiate_template(self, client):
        """Test creating a stored workflow from a template."""
        response = client.post(f"{API}/templates/workflows/webhook-to-email/instantiate")
        assert response.status_code == 201

        workflow = response.json()["workflow"]
        assert workflow["name"] == "Webhook to Email"
        assert client.get(f"{API}/workflows/{workflow['id']}").status_code == 200
        assert client.post(f"{API}/templates/workflows/nope/instantiate").status_code == 404


class TestReadOnlyMode:
    """Test cases for a read-only service."""

    def test_modifications_rejected(self, read_only_client):
        """Test that writes are forbidden while reads work."""
        response = read_only_client.post(f"{API}/workflows", json={"name": "Nope"})

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "ReadOnlyMode"
        assert read_only_client.get(f"{API}/workflows").status_code == 200
        assert read_only_client.get(f"{API}/templates/workflows").status_code == 200

        relabel = read_only_client.patch(f"{API}/workflows/any/connections/any", json={"label": "x"})
        assert relabel.status_code == 403
