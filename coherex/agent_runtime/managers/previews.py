"""Preview links -- shareable, expiring access to one agent version.

A link is addressed by an unguessable token.  It stops working when it
expires, when it is revoked, or once ``max_conversations`` is reached.  A
link may carry a password, stored as a hex SHA-256 digest.  Visitors can
leave feedback on links created with ``include_feedback``.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import select

from coherex.agent_runtime.db.tables import Agent, AgentVersion, PreviewFeedback, PreviewLink
from coherex.agent_runtime.errors import (
    FeedbackDisabledError,
    InvalidStateError,
    PreviewLimitReachedError,
    PreviewLinkGoneError,
    PreviewLinkNotFoundError,
    PreviewPasswordError,
)
from coherex.agent_runtime.managers.versions import get_version
from coherex.agent_runtime.models.agent import VersionConfig
from coherex.agent_runtime.models.api import FeedbackResponse, FeedbackSummary, PreviewInfo, PreviewLinkResponse

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from coherex.agent_runtime.models.api import FeedbackCreate, PreviewLinkCreate


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def preview_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/preview/{token}"


def link_response(link: PreviewLink, base_url: str, now: datetime | None = None) -> PreviewLinkResponse:
    now = now or datetime.now(UTC)
    is_expired = link.expires_at <= now
    return PreviewLinkResponse(
        link_id=link.link_id,
        version_id=link.version_id,
        token=link.token,
        url=preview_url(base_url, link.token),
        expires_at=link.expires_at,
        requires_password=link.password_hash is not None,
        max_conversations=link.max_conversations,
        conversation_count=link.conversation_count,
        include_feedback=link.include_feedback,
        created_at=link.created_at,
        revoked_at=link.revoked_at,
        last_accessed_at=link.last_accessed_at,
        is_expired=is_expired,
        is_active=link.revoked_at is None and not is_expired,
    )


# -- Owner side ----------------------------------------------------------------


async def create_preview_link(
    db: AsyncSession,
    agent_id: str,
    version_id: str,
    body: PreviewLinkCreate,
) -> PreviewLink:
    await get_version(db, agent_id, version_id)
    link = PreviewLink(
        link_id=uuid.uuid4().hex,
        version_id=version_id,
        token=secrets.token_hex(32),
        expires_at=datetime.now(UTC) + timedelta(hours=body.expiration_hours),
        password_hash=hash_password(body.password) if body.password else None,
        max_conversations=body.max_conversations,
        conversation_count=0,
        include_feedback=body.include_feedback,
    )
    db.add(link)
    await db.commit()
    await db.refresh(link)
    logger.info(
        "Preview link {} created for version {} (expires {}, password={})",
        link.link_id,
        version_id,
        link.expires_at.isoformat(),
        link.password_hash is not None,
    )
    return link


async def list_preview_links(db: AsyncSession, agent_id: str, version_id: str) -> list[PreviewLink]:
    """Unrevoked links of a version, newest first.  Expired links are included."""
    await get_version(db, agent_id, version_id)
    result = await db.execute(
        select(PreviewLink)
        .where(PreviewLink.version_id == version_id, PreviewLink.revoked_at.is_(None))
        .order_by(PreviewLink.created_at.desc())
    )
    return list(result.scalars().all())


async def revoke_preview_link(db: AsyncSession, agent_id: str, version_id: str, link_id: str) -> PreviewLink:
    """Revoke a link.  Revoking twice keeps the first revocation time."""
    await get_version(db, agent_id, version_id)
    link = await db.get(PreviewLink, link_id)
    if link is None or link.version_id != version_id:
        raise PreviewLinkNotFoundError
    if link.revoked_at is None:
        link.revoked_at = datetime.now(UTC)
        await db.commit()
        await db.refresh(link)
        logger.info("Preview link {} revoked", link_id)
    return link


# -- Visitor side --------------------------------------------------------------


async def _find_link(db: AsyncSession, token: str) -> PreviewLink:
    result = await db.execute(select(PreviewLink).where(PreviewLink.token == token))
    link = result.scalar_one_or_none()
    if link is None:
        raise PreviewLinkNotFoundError
    return link


def _require_usable(link: PreviewLink, now: datetime) -> None:
    if link.revoked_at is not None:
        msg = "Preview link has been revoked"
        raise PreviewLinkGoneError(msg)
    if link.expires_at <= now:
        msg = "Preview link has expired"
        raise PreviewLinkGoneError(msg)


async def open_preview(db: AsyncSession, token: str) -> PreviewInfo:
    """Resolve a token for a visitor and record the access."""
    now = datetime.now(UTC)
    link = await _find_link(db, token)
    _require_usable(link, now)
    if link.conversation_count >= link.max_conversations:
        msg = "Preview link has reached its conversation limit"
        raise PreviewLimitReachedError(msg)

    result = await db.execute(
        select(AgentVersion, Agent)
        .join(Agent, Agent.agent_id == AgentVersion.agent_id)
        .where(AgentVersion.version_id == link.version_id)
    )
    version, agent = result.one()

    link.last_accessed_at = now
    await db.commit()

    return PreviewInfo(
        link_id=link.link_id,
        agent_id=agent.agent_id,
        agent_name=agent.name,
        version_id=version.version_id,
        version_number=version.version_number,
        version_name=version.name,
        description=version.description,
        config=VersionConfig.model_validate(version.config),
        requires_password=link.password_hash is not None,
        include_feedback=link.include_feedback,
        conversations_remaining=link.max_conversations - link.conversation_count,
        expires_at=link.expires_at,
    )


async def verify_password(db: AsyncSession, token: str, password: str) -> None:
    """Raises ``PreviewPasswordError`` on a mismatch."""
    link = await _find_link(db, token)
    _require_usable(link, datetime.now(UTC))
    if link.password_hash is None:
        msg = "This preview does not require a password"
        raise InvalidStateError(msg)
    if not hmac.compare_digest(hash_password(password), link.password_hash):
        logger.info("Wrong password for preview link {}", link.link_id)
        msg = "Incorrect password"
        raise PreviewPasswordError(msg)


async def submit_feedback(
    db: AsyncSession,
    token: str,
    body: FeedbackCreate,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> PreviewFeedback:
    link = await _find_link(db, token)
    _require_usable(link, datetime.now(UTC))
    if not link.include_feedback:
        msg = "Feedback is not enabled for this preview"
        raise FeedbackDisabledError(msg)

    feedback = PreviewFeedback(
        feedback_id=uuid.uuid4().hex,
        link_id=link.link_id,
        ip_address=ip_address,
        user_agent=user_agent,
        **body.model_dump(),
    )
    db.add(feedback)
    await db.commit()
    await db.refresh(feedback)
    logger.info("Feedback {} received on preview link {} (rating={})", feedback.feedback_id, link.link_id, body.rating)
    return feedback


async def summarize_feedback(db: AsyncSession, token: str) -> FeedbackSummary:
    """All feedback of a link, newest first, with rating statistics."""
    link = await _find_link(db, token)
    result = await db.execute(
        select(PreviewFeedback)
        .where(PreviewFeedback.link_id == link.link_id)
        .order_by(PreviewFeedback.created_at.desc())
    )
    rows = list(result.scalars().all())
    ratings = [r.rating for r in rows if r.rating is not None]
    return FeedbackSummary(
        feedback=[FeedbackResponse.model_validate(r) for r in rows],
        total=len(rows),
        average_rating=sum(ratings) / len(ratings) if ratings else None,
        rating_distribution={score: ratings.count(score) for score in range(1, 6)},
    )
