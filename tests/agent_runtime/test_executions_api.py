"""Integration tests for the execution API and its audit records."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from coherex.agent_runtime.db.tables import Agent
from coherex.agent_runtime.errors import ProvisioningError
from coherex.agent_runtime.sandbox.base import CommandResult

pytestmark = pytest.mark.integration


@pytest.fixture(autouse=True)
async def agents_in_db(db_session: AsyncSession) -> None:
    db_session.add_all([
        Agent(agent_id="eph", name="One-shot", status="active", execution_mode="ephemeral"),
        Agent(agent_id="draft", name="Draft", execution_mode="ephemeral"),
        Agent(agent_id="paused", name="Paused", status="paused", execution_mode="ephemeral"),
        Agent(agent_id="pers", name="Keeper", status="active", execution_mode="persistent"),
    ])
    await db_session.commit()


async def _execute(client: AsyncClient, agent_id: str, **body):
    return await client.post(f"/api/agents/{agent_id}/execute", json=body)


# -- Ephemeral -----------------------------------------------------------------


async def test_ephemeral_execution(client: AsyncClient, sandbox) -> None:
    resp = await _execute(client, "eph", input="hello")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    report = body["data"]
    assert report["mode"] == "ephemeral"
    assert report["session_id"] is None
    assert report["outcome"] == {"kind": "real", "output": "echo: hello"}
    assert report["completed_at"] is not None
    assert sandbox.created == ["sbx-1"]
    assert sandbox.destroyed == ["sbx-1"]

    record = (await client.get(f"/api/agents/eph/executions/{report['execution_id']}")).json()["data"]
    assert record["status"] == "completed"
    assert record["outcome"] == "real"
    assert record["input"] == "hello"
    assert record["output"] == "echo: hello"
    assert record["sandbox_ref"] == "sbx-1"
    assert record["started_at"] is not None


async def test_draft_agent_can_execute(client: AsyncClient) -> None:
    resp = await _execute(client, "draft", input="hi")

    assert resp.status_code == 200
    assert resp.json()["success"] is True


async def test_structured_input(client: AsyncClient, sandbox) -> None:
    resp = await _execute(client, "eph", input={"rows": [1, 2]})

    assert resp.status_code == 200
    assert sandbox.requests[-1]["prompt"] == '{"rows": [1, 2]}'
    record_id = resp.json()["data"]["execution_id"]
    record = (await client.get(f"/api/agents/eph/executions/{record_id}")).json()["data"]
    assert record["input"] == {"rows": [1, 2]}


async def test_ephemeral_failure_is_degraded(client: AsyncClient, sandbox) -> None:
    sandbox.responder = lambda request: CommandResult(stdout='{"success": false, "error": "rate limited"}\n')

    resp = await _execute(client, "eph", input="hello")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "rate limited"
    assert sandbox.live == {}

    record = (await client.get(f"/api/agents/eph/executions/{body['data']['execution_id']}")).json()["data"]
    assert record["status"] == "failed"
    assert record["error"] == "rate limited"
    assert record["completed_at"] is not None


async def test_ephemeral_simulation(client: AsyncClient, sandbox) -> None:
    sandbox.create_error = ProvisioningError("E2B is not configured")

    resp = await _execute(client, "eph", input="hello")

    assert resp.status_code == 200
    report = resp.json()["data"]
    assert report["outcome"]["kind"] == "simulated"
    assert report["outcome"]["reason"] == "E2B is not configured"
    assert "You said: \"hello\"" in report["outcome"]["output"]

    record = (await client.get(f"/api/agents/eph/executions/{report['execution_id']}")).json()["data"]
    assert record["status"] == "completed"
    assert record["outcome"] == "simulated"
    assert record["sandbox_ref"] is None


async def test_ephemeral_provisioning_error_without_simulation(client: AsyncClient, sandbox, settings) -> None:
    settings.simulation_fallback = False
    sandbox.create_error = ProvisioningError("quota exceeded")

    resp = await _execute(client, "eph", input="hello")

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Failed to provision sandbox", "details": "quota exceeded"}
    records = (await client.get("/api/agents/eph/executions")).json()["data"]
    assert [(r["status"], r["error"]) for r in records] == [("failed", "quota exceeded")]


# -- Validation ----------------------------------------------------------------


async def test_paused_agent(client: AsyncClient, sandbox) -> None:
    resp = await _execute(client, "paused", input="hello")

    assert resp.status_code == 400
    assert "paused" in resp.json()["error"]
    assert sandbox.created == []
    assert (await client.get("/api/agents/paused/executions")).json()["data"] == []


async def test_unknown_agent(client: AsyncClient) -> None:
    resp = await _execute(client, "missing", input="hello")

    assert resp.status_code == 404


async def test_missing_input(client: AsyncClient) -> None:
    resp = await client.post("/api/agents/eph/execute", json={})

    assert resp.status_code == 422


# -- Persistent routing --------------------------------------------------------


async def test_persistent_agent_uses_session(client: AsyncClient, sandbox) -> None:
    first = (await _execute(client, "pers", input="one")).json()["data"]
    second = (await _execute(client, "pers", input="two")).json()["data"]

    assert first["mode"] == "persistent"
    assert first["session_id"] is not None
    assert second["session_id"] == first["session_id"]
    assert sandbox.created == ["sbx-1"]
    assert sandbox.requests[0]["prompt"] == "one"
    assert "User: one" in sandbox.requests[1]["prompt"]


async def test_ephemeral_agent_with_unknown_session(client: AsyncClient) -> None:
    resp = await _execute(client, "eph", input="hello", session_id="missing")

    assert resp.status_code == 404


# -- Listing -------------------------------------------------------------------


async def test_list_executions(client: AsyncClient) -> None:
    ids = set()
    for text in ("a", "b", "c"):
        ids.add((await _execute(client, "eph", input=text)).json()["data"]["execution_id"])

    records = (await client.get("/api/agents/eph/executions")).json()["data"]
    assert {r["execution_id"] for r in records} == ids

    limited = (await client.get("/api/agents/eph/executions", params={"limit": 2})).json()["data"]
    assert len(limited) == 2


async def test_list_executions_limit_bounds(client: AsyncClient) -> None:
    resp = await client.get("/api/agents/eph/executions", params={"limit": 0})

    assert resp.status_code == 422


async def test_list_executions_unknown_agent(client: AsyncClient) -> None:
    resp = await client.get("/api/agents/missing/executions")

    assert resp.status_code == 404


async def test_get_execution_of_other_agent(client: AsyncClient) -> None:
    execution_id = (await _execute(client, "eph", input="hi")).json()["data"]["execution_id"]

    resp = await client.get(f"/api/agents/draft/executions/{execution_id}")

    assert resp.status_code == 404
    assert resp.json()["error"] == f"Execution '{execution_id}' not found"
