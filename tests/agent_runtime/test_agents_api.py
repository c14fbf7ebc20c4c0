"""Integration tests for the agent CRUD API."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.integration


async def _create(client: AsyncClient, **body) -> dict:
    resp = await client.post("/api/agents/create", json={"name": "Helper", **body})
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


async def test_create_agent_defaults(client: AsyncClient) -> None:
    resp = await client.post("/api/agents/create", json={"agent_id": "a-1", "name": "Helper"})

    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Agent created"
    agent = body["data"]
    assert agent["agent_id"] == "a-1"
    assert agent["status"] == "draft"
    assert agent["execution_mode"] == "ephemeral"
    assert agent["agent_type"] == "chatbot"
    assert agent["session_config"] == {"idle_timeout_minutes": 30, "max_context_messages": 50}


async def test_create_agent_generates_id(client: AsyncClient) -> None:
    agent = await _create(client)

    assert agent["agent_id"]


async def test_create_agent_duplicate(client: AsyncClient) -> None:
    await _create(client, agent_id="a-1")

    resp = await client.post("/api/agents/create", json={"agent_id": "a-1", "name": "Again"})

    assert resp.status_code == 409
    assert resp.json()["success"] is False
    assert "already exists" in resp.json()["error"]


async def test_create_agent_validation(client: AsyncClient) -> None:
    resp = await client.post("/api/agents/create", json={"name": "Hot", "temperature": 5})

    assert resp.status_code == 422


async def test_list_agents(client: AsyncClient) -> None:
    await _create(client, agent_id="a-1")
    await _create(client, agent_id="a-2")

    resp = await client.get("/api/agents/list")

    assert resp.status_code == 200
    assert {a["agent_id"] for a in resp.json()["data"]} == {"a-1", "a-2"}


async def test_get_agent(client: AsyncClient) -> None:
    await _create(client, agent_id="a-1", system_prompt="Be brief.")

    resp = await client.get("/api/agents/a-1/get")

    assert resp.status_code == 200
    assert resp.json()["data"]["system_prompt"] == "Be brief."


async def test_get_agent_not_found(client: AsyncClient) -> None:
    resp = await client.get("/api/agents/missing/get")

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Agent 'missing' not found", "details": None}


async def test_update_agent_partial(client: AsyncClient) -> None:
    await _create(client, agent_id="a-1", model="gpt-4")

    resp = await client.post(
        "/api/agents/a-1/update",
        json={"status": "active", "session_config": {"idle_timeout_minutes": 5, "max_context_messages": 4}},
    )

    assert resp.status_code == 200
    agent = resp.json()["data"]
    assert agent["status"] == "active"
    assert agent["model"] == "gpt-4"
    assert agent["session_config"] == {"idle_timeout_minutes": 5, "max_context_messages": 4}


async def test_update_agent_not_found(client: AsyncClient) -> None:
    resp = await client.post("/api/agents/missing/update", json={"name": "x"})

    assert resp.status_code == 404


async def test_delete_agent(client: AsyncClient) -> None:
    await _create(client, agent_id="a-1")

    resp = await client.post("/api/agents/a-1/delete")

    assert resp.status_code == 200
    assert resp.json()["message"] == "Agent deleted"
    assert (await client.get("/api/agents/a-1/get")).status_code == 404


async def test_delete_agent_stops_sessions(client: AsyncClient, sandbox) -> None:
    await _create(client, agent_id="a-1", status="active", execution_mode="persistent")
    created = await client.post("/api/agents/a-1/sessions")
    assert created.status_code == 200, created.text
    sandbox_ref = created.json()["data"]["sandbox_ref"]

    resp = await client.post("/api/agents/a-1/delete")

    assert resp.status_code == 200
    assert resp.json()["message"] == "Agent deleted (1 session(s) stopped)"
    assert sandbox.destroyed == [sandbox_ref]
    assert sandbox.live == {}


async def test_delete_agent_not_found(client: AsyncClient) -> None:
    resp = await client.post("/api/agents/missing/delete")

    assert resp.status_code == 404
