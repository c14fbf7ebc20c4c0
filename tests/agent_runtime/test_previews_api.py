"""Integration tests for preview links and preview feedback."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coherex.agent_runtime.app import app
from coherex.agent_runtime.db.tables import PreviewLink
from coherex.agent_runtime.managers.previews import hash_password
from coherex.agent_runtime.settings import CoherexSettings, get_settings

pytestmark = pytest.mark.integration


@pytest.fixture
async def version(client: AsyncClient) -> dict:
    resp = await client.post("/api/agents/create", json={"agent_id": "a-1", "name": "Helper", "model": "gpt-4o"})
    assert resp.status_code == 201, resp.text
    resp = await client.post("/api/agents/a-1/versions")
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


async def _create_link(client: AsyncClient, version: dict, **body) -> dict:
    resp = await client.post(f"/api/agents/a-1/versions/{version['version_id']}/previews", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


async def test_create_link_defaults(client: AsyncClient, version: dict) -> None:
    before = datetime.now(UTC)

    link = await _create_link(client, version)

    assert len(link["token"]) == 64
    assert link["url"] == f"http://test/preview/{link['token']}"
    assert link["requires_password"] is False
    assert link["max_conversations"] == 100
    assert link["conversation_count"] == 0
    assert link["include_feedback"] is True
    assert link["is_active"] is True
    assert link["is_expired"] is False
    expires_at = datetime.fromisoformat(link["expires_at"])
    assert before + timedelta(hours=71) < expires_at <= datetime.now(UTC) + timedelta(hours=72)


async def test_create_link_stores_password_hash(
    client: AsyncClient,
    db_session: AsyncSession,
    version: dict,
) -> None:
    link = await _create_link(client, version, password="s3cret")

    assert link["requires_password"] is True
    assert "password" not in link
    row = (await db_session.execute(select(PreviewLink).where(PreviewLink.link_id == link["link_id"]))).scalar_one()
    assert row.password_hash == hash_password("s3cret")
    assert row.password_hash != "s3cret"


async def test_create_link_uses_public_base_url(
    client: AsyncClient,
    version: dict,
    settings: CoherexSettings,
) -> None:
    public = settings.model_copy(update={"public_base_url": "https://agents.example.com/"})
    app.dependency_overrides[get_settings] = lambda: public

    link = await _create_link(client, version)

    assert link["url"] == f"https://agents.example.com/preview/{link['token']}"


async def test_create_link_unknown_version(client: AsyncClient, version: dict) -> None:
    resp = await client.post("/api/agents/a-1/versions/missing/previews", json={})

    assert resp.status_code == 404


async def test_create_link_validation(client: AsyncClient, version: dict) -> None:
    resp = await client.post(
        f"/api/agents/a-1/versions/{version['version_id']}/previews",
        json={"expiration_hours": 0},
    )

    assert resp.status_code == 422


async def test_list_links_hides_revoked(client: AsyncClient, version: dict) -> None:
    first = await _create_link(client, version)
    second = await _create_link(client, version)
    resp = await client.delete(f"/api/agents/a-1/versions/{version['version_id']}/previews/{first['link_id']}")
    assert resp.status_code == 200

    resp = await client.get(f"/api/agents/a-1/versions/{version['version_id']}/previews")

    assert resp.status_code == 200
    assert [link["link_id"] for link in resp.json()["data"]] == [second["link_id"]]


async def test_revoke_is_idempotent(client: AsyncClient, version: dict) -> None:
    link = await _create_link(client, version)
    path = f"/api/agents/a-1/versions/{version['version_id']}/previews/{link['link_id']}"

    first = (await client.delete(path)).json()["data"]
    second = (await client.delete(path)).json()["data"]

    assert first["is_active"] is False
    assert first["revoked_at"] is not None
    assert second["revoked_at"] == first["revoked_at"]


async def test_open_preview(client: AsyncClient, db_session: AsyncSession, version: dict) -> None:
    link = await _create_link(client, version, max_conversations=5)

    resp = await client.get(f"/api/preview/{link['token']}")

    assert resp.status_code == 200, resp.text
    info = resp.json()["data"]
    assert info["agent_id"] == "a-1"
    assert info["agent_name"] == "Helper"
    assert info["version_id"] == version["version_id"]
    assert info["version_number"] == 1
    assert info["config"]["model"] == "gpt-4o"
    assert info["requires_password"] is False
    assert info["conversations_remaining"] == 5

    row = (await db_session.execute(select(PreviewLink).where(PreviewLink.link_id == link["link_id"]))).scalar_one()
    assert row.last_accessed_at is not None


async def test_open_preview_unknown_token(client: AsyncClient) -> None:
    resp = await client.get("/api/preview/not-a-token")

    assert resp.status_code == 404
    assert resp.json()["error"] == "Invalid preview link"


async def test_open_preview_expired(client: AsyncClient, db_session: AsyncSession, version: dict) -> None:
    link = await _create_link(client, version)
    await db_session.execute(
        update(PreviewLink)
        .where(PreviewLink.link_id == link["link_id"])
        .values(expires_at=datetime.now(UTC) - timedelta(minutes=1))
    )
    await db_session.commit()

    resp = await client.get(f"/api/preview/{link['token']}")

    assert resp.status_code == 410
    assert resp.json()["error"] == "Preview link has expired"

    listed = (await client.get(f"/api/agents/a-1/versions/{version['version_id']}/previews")).json()["data"]
    assert listed[0]["is_expired"] is True
    assert listed[0]["is_active"] is False


async def test_open_preview_revoked(client: AsyncClient, version: dict) -> None:
    link = await _create_link(client, version)
    await client.delete(f"/api/agents/a-1/versions/{version['version_id']}/previews/{link['link_id']}")

    resp = await client.get(f"/api/preview/{link['token']}")

    assert resp.status_code == 410
    assert resp.json()["error"] == "Preview link has been revoked"


async def test_open_preview_limit_reached(client: AsyncClient, db_session: AsyncSession, version: dict) -> None:
    link = await _create_link(client, version, max_conversations=2)
    await db_session.execute(
        update(PreviewLink).where(PreviewLink.link_id == link["link_id"]).values(conversation_count=2)
    )
    await db_session.commit()

    resp = await client.get(f"/api/preview/{link['token']}")

    assert resp.status_code == 429
    assert "conversation limit" in resp.json()["error"]


async def test_verify_password(client: AsyncClient, version: dict) -> None:
    link = await _create_link(client, version, password="s3cret")

    ok = await client.post(f"/api/preview/{link['token']}/verify", json={"password": "s3cret"})
    wrong = await client.post(f"/api/preview/{link['token']}/verify", json={"password": "guess"})

    assert ok.status_code == 200
    assert ok.json()["message"] == "Password verified"
    assert wrong.status_code == 401
    assert wrong.json()["error"] == "Incorrect password"


async def test_verify_without_password_rejected(client: AsyncClient, version: dict) -> None:
    link = await _create_link(client, version)

    resp = await client.post(f"/api/preview/{link['token']}/verify", json={"password": "anything"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "This preview does not require a password"


async def test_verify_revoked_link(client: AsyncClient, version: dict) -> None:
    link = await _create_link(client, version, password="s3cret")
    await client.delete(f"/api/agents/a-1/versions/{version['version_id']}/previews/{link['link_id']}")

    resp = await client.post(f"/api/preview/{link['token']}/verify", json={"password": "s3cret"})

    assert resp.status_code == 410


async def test_submit_feedback(client: AsyncClient, version: dict) -> None:
    link = await _create_link(client, version)

    resp = await client.post(
        f"/api/preview/{link['token']}/feedback",
        json={"name": "Ana", "rating": 4, "feedback_text": "Helpful", "context": {"turn": 3}},
        headers={"user-agent": "pytest-client", "x-forwarded-for": "203.0.113.7, 10.0.0.1"},
    )

    assert resp.status_code == 201, resp.text
    feedback = resp.json()["data"]
    assert feedback["link_id"] == link["link_id"]
    assert feedback["rating"] == 4
    assert feedback["context"] == {"turn": 3}
    assert feedback["ip_address"] == "203.0.113.7"
    assert feedback["user_agent"] == "pytest-client"


async def test_submit_feedback_requires_content(client: AsyncClient, version: dict) -> None:
    link = await _create_link(client, version)

    resp = await client.post(f"/api/preview/{link['token']}/feedback", json={"name": "Ana"})

    assert resp.status_code == 422


async def test_submit_feedback_rating_range(client: AsyncClient, version: dict) -> None:
    link = await _create_link(client, version)

    resp = await client.post(f"/api/preview/{link['token']}/feedback", json={"rating": 6})

    assert resp.status_code == 422


async def test_submit_feedback_disabled(client: AsyncClient, version: dict) -> None:
    link = await _create_link(client, version, include_feedback=False)

    resp = await client.post(f"/api/preview/{link['token']}/feedback", json={"rating": 5})

    assert resp.status_code == 403
    assert resp.json()["error"] == "Feedback is not enabled for this preview"


async def test_feedback_summary(client: AsyncClient, version: dict) -> None:
    link = await _create_link(client, version)
    for body in ({"rating": 5}, {"rating": 3}, {"rating": 5}, {"feedback_text": "No score"}):
        resp = await client.post(f"/api/preview/{link['token']}/feedback", json=body)
        assert resp.status_code == 201, resp.text

    resp = await client.get(f"/api/preview/{link['token']}/feedback")

    assert resp.status_code == 200
    summary = resp.json()["data"]
    assert summary["total"] == 4
    assert summary["average_rating"] == pytest.approx(13 / 3)
    assert summary["rating_distribution"] == {"1": 0, "2": 0, "3": 1, "4": 0, "5": 2}


async def test_feedback_summary_without_ratings(client: AsyncClient, version: dict) -> None:
    link = await _create_link(client, version)

    resp = await client.get(f"/api/preview/{link['token']}/feedback")

    summary = resp.json()["data"]
    assert summary["total"] == 0
    assert summary["average_rating"] is None
    assert summary["feedback"] == []
