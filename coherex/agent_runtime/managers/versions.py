"""Agent versions -- draft, publish and rollback.

Each agent has a numbered history of versions.  At most one version is a
``draft`` (editable) and at most one is in ``production``; publishing a
version archives the previous production version and writes the version's
configuration onto the agent row, which is what executions read.

Operations that allocate a version number or move the production marker
lock the agent row first, so concurrent publishes and drafts on one agent
are serialized.  Partial unique indexes back the one-draft and
one-production rules in the schema.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy import func, select, update

from coherex.agent_runtime.db.tables import Agent, AgentVersion
from coherex.agent_runtime.errors import AgentNotFoundError, InvalidStateError, VersionNotFoundError
from coherex.agent_runtime.models.agent import VersionConfig
from coherex.agent_runtime.models.enums import VersionStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from coherex.agent_runtime.models.api import VersionUpdate


async def _lock_agent(db: AsyncSession, agent_id: str) -> Agent:
    result = await db.execute(select(Agent).where(Agent.agent_id == agent_id).with_for_update())
    agent = result.scalar_one_or_none()
    if agent is None:
        raise AgentNotFoundError(agent_id)
    return agent


async def _next_version_number(db: AsyncSession, agent_id: str) -> int:
    result = await db.execute(
        select(func.coalesce(func.max(AgentVersion.version_number), 0)).where(AgentVersion.agent_id == agent_id)
    )
    return result.scalar_one() + 1


async def _find_draft(db: AsyncSession, agent_id: str) -> AgentVersion | None:
    result = await db.execute(
        select(AgentVersion).where(AgentVersion.agent_id == agent_id, AgentVersion.status == VersionStatus.DRAFT)
    )
    return result.scalar_one_or_none()


async def _add_draft(
    db: AsyncSession,
    agent_id: str,
    *,
    name: str,
    description: str | None,
    config: dict,
) -> AgentVersion:
    version = AgentVersion(
        version_id=uuid.uuid4().hex,
        agent_id=agent_id,
        version_number=await _next_version_number(db, agent_id),
        status=VersionStatus.DRAFT,
        name=name,
        description=description,
        config=config,
    )
    db.add(version)
    await db.commit()
    await db.refresh(version)
    return version


# -- Read ----------------------------------------------------------------------


async def list_versions(db: AsyncSession, agent_id: str) -> list[AgentVersion]:
    """All versions of an agent, highest number first."""
    result = await db.execute(
        select(AgentVersion)
        .where(AgentVersion.agent_id == agent_id)
        .order_by(AgentVersion.version_number.desc())
    )
    return list(result.scalars().all())


async def get_version(db: AsyncSession, agent_id: str, version_id: str) -> AgentVersion:
    """A version addressed under the wrong agent is reported as missing."""
    version = await db.get(AgentVersion, version_id)
    if version is None or version.agent_id != agent_id:
        raise VersionNotFoundError(version_id)
    return version


# -- Drafts --------------------------------------------------------------------


async def create_draft_version(db: AsyncSession, agent_id: str) -> AgentVersion:
    """Snapshot the agent's current configuration as a new draft.

    If the agent already has a draft, that draft is returned unchanged.
    """
    agent = await _lock_agent(db, agent_id)
    existing = await _find_draft(db, agent_id)
    if existing is not None:
        await db.commit()
        return existing

    config = VersionConfig.model_validate(agent).model_dump(mode="json")
    version = await _add_draft(db, agent_id, name=agent.name, description=agent.description, config=config)
    logger.info("Draft version {} created for agent {}", version.version_number, agent_id)
    return version


async def update_draft_version(
    db: AsyncSession,
    agent_id: str,
    version_id: str,
    body: VersionUpdate,
) -> AgentVersion:
    version = await get_version(db, agent_id, version_id)
    if version.status != VersionStatus.DRAFT:
        msg = f"Version {version.version_number} is {version.status}; only drafts can be updated"
        raise InvalidStateError(msg)

    changes = body.model_dump(exclude_unset=True, exclude={"config"}, mode="json")
    if changes.get("name", "") is None:
        del changes["name"]
    if body.config is not None:
        # Store the whole config, defaults included.
        changes["config"] = body.config.model_dump(mode="json")
    if not changes:
        return version
    for key, value in changes.items():
        setattr(version, key, value)
    await db.commit()
    await db.refresh(version)
    return version


async def delete_draft_version(db: AsyncSession, agent_id: str, version_id: str) -> None:
    version = await get_version(db, agent_id, version_id)
    if version.status != VersionStatus.DRAFT:
        msg = f"Version {version.version_number} is {version.status}; only drafts can be deleted"
        raise InvalidStateError(msg)
    number = version.version_number
    await db.delete(version)
    await db.commit()
    logger.info("Draft version {} of agent {} deleted", number, agent_id)


# -- Publish / rollback --------------------------------------------------------


async def publish_version(db: AsyncSession, agent_id: str, version_id: str) -> AgentVersion:
    """Make *version_id* the production version and apply it to the agent.

    The previous production version is archived in the same transaction.
    """
    agent = await _lock_agent(db, agent_id)
    version = await get_version(db, agent_id, version_id)
    if version.status == VersionStatus.PRODUCTION:
        msg = f"Version {version.version_number} is already in production"
        raise InvalidStateError(msg)

    now = datetime.now(UTC)
    # Archive first: the production index is checked per statement.
    await db.execute(
        update(AgentVersion)
        .where(AgentVersion.agent_id == agent_id, AgentVersion.status == VersionStatus.PRODUCTION)
        .values(status=VersionStatus.ARCHIVED, updated_at=now)
    )
    await db.execute(
        update(AgentVersion)
        .where(AgentVersion.version_id == version_id)
        .values(status=VersionStatus.PRODUCTION, published_at=now, updated_at=now)
    )

    config = VersionConfig.model_validate(version.config)
    agent.name = version.name
    agent.description = version.description
    for key, value in config.model_dump(mode="json").items():
        setattr(agent, key, value)

    await db.commit()
    await db.refresh(version)
    await db.refresh(agent)
    logger.info("Version {} of agent {} published", version.version_number, agent_id)
    return version


async def rollback_to_version(db: AsyncSession, agent_id: str, version_id: str) -> AgentVersion:
    """Start a new draft from an earlier version's configuration.

    Nothing is published: the caller reviews the draft and publishes it.
    Raises ``InvalidStateError`` if the agent already has a draft.
    """
    await _lock_agent(db, agent_id)
    source = await get_version(db, agent_id, version_id)
    existing = await _find_draft(db, agent_id)
    if existing is not None:
        msg = f"Agent '{agent_id}' already has draft version {existing.version_number}; publish or delete it first"
        raise InvalidStateError(msg)

    draft = await _add_draft(
        db,
        agent_id,
        name=source.name,
        description=source.description,
        config=dict(source.config),
    )
    logger.info(
        "Draft version {} of agent {} created from version {}",
        draft.version_number,
        agent_id,
        source.version_number,
    )
    return draft
