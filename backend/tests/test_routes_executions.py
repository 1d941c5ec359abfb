"""Tests for the execution API (app/routes/executions.py) and app.main.

Covers:
- POST /api/v2/workflows/{id}/execute (inline and temporal dispatch)
- POST /api/v2/executions/{id}/resume
- GET /api/v2/executions/{id}, GET /api/v2/executions
- POST /api/v2/executions/{id}/cancel, /retry
- Engine error mapping to {error} responses
- GET /api/v2/workflows, /api/v2/node-types, /health
"""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from app.repositories.workflow import WorkflowRepository

PPC_INPUT = {"input": {"query": {"utm_source": "ppc"}}}
LEAD = {"email": "visitor@example.com", "name": "Vi"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _start_ppc(client: AsyncClient) -> dict:
    resp = await client.post("/api/v2/workflows/ppc-landing/execute", json=PPC_INPUT)
    assert resp.status_code == 200, resp.text
    return resp.json()


async def _store_workflow(session_factory, workflow_id: str, nodes: list, edges: list) -> None:
    async with session_factory() as session:
        await WorkflowRepository(session).create(
            workflow_id=workflow_id,
            name=workflow_id,
            graph_definition={"nodes": nodes, "edges": edges},
        )
        await session.commit()


# ---------------------------------------------------------------------------
# Execute / resume
# ---------------------------------------------------------------------------


class TestExecuteAndResume:

    @pytest.mark.asyncio
    async def test_execute_waits_on_banner(self, client: AsyncClient):
        body = await _start_ppc(client)
        assert body["status"] == "waiting"
        assert body["executionId"]
        assert body["nextStep"]["nodeId"] == "3"
        assert body["nextStep"]["type"] == "banner-form"
        assert body["nextStep"]["config"]["cta"] == "Claim my code"
        assert body["message"] == "Waiting for remote node 3"

    @pytest.mark.asyncio
    async def test_full_handoff_over_http(self, client: AsyncClient):
        body = await _start_ppc(client)
        execution_id = body["executionId"]

        resp = await client.post(
            f"/api/v2/executions/{execution_id}/resume",
            json={"nodeId": "3", "data": LEAD},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "waiting"
        assert body["nextStep"]["nodeId"] == "6"
        assert body["nextStep"]["config"]["message"].startswith("Your code is: WELCOME10-")

        resp = await client.post(
            f"/api/v2/executions/{execution_id}/resume",
            json={"nodeId": "6", "data": {"displayed": True}},
        )
        body = resp.json()
        assert body["status"] == "completed"
        assert body["results"]["7"]["recipient"] == "visitor@example.com"

        resp = await client.get(f"/api/v2/executions/{execution_id}")
        assert resp.status_code == 200
        status = resp.json()
        assert status["status"] == "completed"
        assert status["progress"] == 100
        assert status["counts"]["completed"] == 7
        assert status["currentState"]["bypassedNodes"] == ["8"]

    @pytest.mark.asyncio
    async def test_execute_without_body(self, client: AsyncClient):
        resp = await client.post("/api/v2/workflows/ppc-landing/execute")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "completed"
        assert set(body["results"]) == {"1", "2", "8"}

    @pytest.mark.asyncio
    async def test_resume_with_error(self, client: AsyncClient):
        body = await _start_ppc(client)
        resp = await client.post(
            f"/api/v2/executions/{body['executionId']}/resume",
            json={"nodeId": "3", "error": "banner dismissed"},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "failed"
        assert resp.json()["error"] == "Node 3 failed: banner dismissed"

    @pytest.mark.asyncio
    async def test_resume_requires_node_id(self, client: AsyncClient):
        body = await _start_ppc(client)
        resp = await client.post(f"/api/v2/executions/{body['executionId']}/resume", json={"data": {}})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrorMapping:

    @pytest.mark.asyncio
    async def test_unknown_execution(self, client: AsyncClient):
        resp = await client.get("/api/v2/executions/does-not-exist")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Execution not found: does-not-exist"}

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, client: AsyncClient):
        resp = await client.post("/api/v2/workflows/nope/execute", json={"input": {}})
        assert resp.status_code == 404
        assert resp.json() == {"error": "Workflow not found: nope"}

    @pytest.mark.asyncio
    async def test_duplicate_resume_conflict(self, client: AsyncClient):
        body = await _start_ppc(client)
        url = f"/api/v2/executions/{body['executionId']}/resume"
        first = await client.post(url, json={"nodeId": "3", "data": LEAD})
        assert first.status_code == 200

        second = await client.post(url, json={"nodeId": "3", "data": LEAD})
        assert second.status_code == 409
        assert "not awaiting a result" in second.json()["error"]

    @pytest.mark.asyncio
    async def test_unknown_node_is_bad_request(self, client: AsyncClient):
        body = await _start_ppc(client)
        resp = await client.post(
            f"/api/v2/executions/{body['executionId']}/resume",
            json={"nodeId": "42", "data": {}},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Unknown node id: 42"}

    @pytest.mark.asyncio
    async def test_invalid_workflow_unprocessable(self, client: AsyncClient, seeded_db):
        await _store_workflow(
            seeded_db,
            "cyclic",
            [
                {"id": "s", "type": "start"},
                {"id": "a", "type": "console-log"},
                {"id": "b", "type": "console-log"},
            ],
            [
                {"id": "e1", "source": "s", "target": "a"},
                {"id": "e2", "source": "a", "target": "b"},
                {"id": "e3", "source": "b", "target": "a"},
            ],
        )
        resp = await client.post("/api/v2/workflows/cyclic/execute", json={"input": {}})
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"].startswith("Workflow cyclic is invalid")
        assert body["details"]["valid"] is False
        assert body["details"]["errors"][0]["code"] == "CIRCULAR_DEPENDENCY"

    @pytest.mark.asyncio
    async def test_malformed_graph_unprocessable(self, client: AsyncClient, seeded_db):
        await _store_workflow(
            seeded_db,
            "broken",
            [{"id": "a", "type": "start"}],
            [{"id": "e1", "source": "a", "target": "ghost"}],
        )
        resp = await client.post("/api/v2/workflows/broken/execute", json={"input": {}})
        assert resp.status_code == 422
        assert "malformed" in resp.json()["error"]


# ---------------------------------------------------------------------------
# Cancel / retry
# ---------------------------------------------------------------------------


class TestCancelAndRetry:

    @pytest.mark.asyncio
    async def test_cancel_waiting_execution(self, client: AsyncClient):
        body = await _start_ppc(client)
        url = f"/api/v2/executions/{body['executionId']}/cancel"

        resp = await client.post(url)
        assert resp.status_code == 200
        snapshot = resp.json()
        assert snapshot["status"] == "cancelled"
        assert snapshot["steps"][-1]["status"] == "skipped"

        again = await client.post(url)
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_retry_only_failed(self, client: AsyncClient):
        body = await _start_ppc(client)
        resp = await client.post(f"/api/v2/executions/{body['executionId']}/retry")
        assert resp.status_code == 409
        assert "only failed executions" in resp.json()["error"]

    @pytest.mark.asyncio
    async def test_retry_failed_execution(self, client: AsyncClient, seeded_db):
        await _store_workflow(
            seeded_db,
            "bad-email",
            [
                {"id": "s", "type": "start"},
                {
                    "id": "mail",
                    "type": "email",
                    "config": {"templateId": "t", "to": "not-an-address", "retry": {"maxAttempts": 1}},
                },
            ],
            [{"id": "e1", "source": "s", "target": "mail"}],
        )
        resp = await client.post("/api/v2/workflows/bad-email/execute", json={"input": {}})
        body = resp.json()
        assert body["status"] == "failed"
        assert body["error"].startswith("Node mail failed:")

        resp = await client.post(f"/api/v2/executions/{body['executionId']}/retry")
        assert resp.status_code == 200
        assert resp.json()["status"] == "failed"

        status = (await client.get(f"/api/v2/executions/{body['executionId']}")).json()
        attempts = [s["attemptNumber"] for s in status["steps"] if s["nodeId"] == "mail"]
        assert attempts == [1, 2]


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListExecutions:

    @pytest.mark.asyncio
    async def test_list_and_filter(self, client: AsyncClient):
        await _start_ppc(client)
        await client.post("/api/v2/workflows/ppc-landing/execute", json={"input": {}})

        resp = await client.get("/api/v2/executions")
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 2
        assert body["page"] == 1

        resp = await client.get("/api/v2/executions", params={"status": "waiting", "workflow_id": "ppc-landing"})
        body = resp.json()
        assert body["total"] == 1
        assert body["items"][0]["status"] == "waiting"

    @pytest.mark.asyncio
    async def test_page_size_bounds(self, client: AsyncClient):
        resp = await client.get("/api/v2/executions", params={"page_size": 500})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Temporal dispatch
# ---------------------------------------------------------------------------


class TestTemporalDispatch:

    @pytest.mark.asyncio
    async def test_execute_queues_advance(self, client: AsyncClient, mock_temporal_client, monkeypatch):
        monkeypatch.setattr("app.routes.executions.DISPATCH_MODE", "temporal")
        resp = await client.post("/api/v2/workflows/ppc-landing/execute", json=PPC_INPUT)
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "pending"
        assert body["message"] == "Execution queued"

        mock_temporal_client.start_workflow.assert_awaited_once()
        args, kwargs = mock_temporal_client.start_workflow.call_args
        assert args[0] == "ExecutionAdvanceWorkflow"
        assert args[1] == {"execution_id": body["executionId"]}
        assert kwargs["id"] == f"advance-{body['executionId']}"

    @pytest.mark.asyncio
    async def test_queue_failure_is_unavailable(self, client: AsyncClient, mock_temporal_client, monkeypatch):
        monkeypatch.setattr("app.routes.executions.DISPATCH_MODE", "temporal")
        mock_temporal_client.start_workflow.side_effect = RuntimeError("temporal down")
        resp = await client.post("/api/v2/workflows/ppc-landing/execute", json=PPC_INPUT)
        assert resp.status_code == 503
        assert "temporal down" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# Catalogue endpoints
# ---------------------------------------------------------------------------


class TestCatalogue:

    @pytest.mark.asyncio
    async def test_list_workflows(self, client: AsyncClient):
        resp = await client.get("/api/v2/workflows")
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] >= 1
        assert "ppc-landing" in [w["id"] for w in body["items"]]

    @pytest.mark.asyncio
    async def test_get_workflow(self, client: AsyncClient):
        resp = await client.get("/api/v2/workflows/ppc-landing")
        assert resp.status_code == 200
        body = resp.json()
        assert body["name"] == "PPC Landing Page"
        assert len(body["graph_definition"]["nodes"]) == 8

    @pytest.mark.asyncio
    async def test_get_missing_workflow(self, client: AsyncClient):
        resp = await client.get("/api/v2/workflows/missing")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Workflow not found: missing"}

    @pytest.mark.asyncio
    async def test_node_types(self, client: AsyncClient):
        resp = await client.get("/api/v2/node-types")
        assert resp.status_code == 200
        types = {item["type"]: item for item in resp.json()["items"]}
        assert types["banner-form"]["environment"] == "remote"
        assert types["email"]["retry"]["maxAttempts"] == 3

        resp = await client.get("/api/v2/node-types", params={"category": "ui"})
        assert {item["type"] for item in resp.json()["items"]} == {"banner-form", "window-alert"}

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "dispatchMode": "inline"}
