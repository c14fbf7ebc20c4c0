"""Agent CRUD operations and the agent configuration provider.

The CRUD functions follow the request-scoped pattern: they take the
request's ``AsyncSession`` and commit themselves.  The execution pipeline
only reads agents, through an ``AgentConfigProvider``, which hands out
immutable ``AgentConfig`` snapshots.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from loguru import logger
from sqlalchemy import select

from coherex.agent_runtime.db.tables import Agent
from coherex.agent_runtime.errors import AgentNotFoundError, DuplicateAgentError
from coherex.agent_runtime.models.agent import AgentConfig
from coherex.agent_runtime.models.api import AgentCreate, AgentUpdate

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


def _to_row_kwargs(data: dict) -> dict:
    """``session_config`` is stored as a plain dict in its JSONB column."""
    if "session_config" in data and hasattr(data["session_config"], "model_dump"):
        data["session_config"] = data["session_config"].model_dump()
    return data


# -- CRUD ----------------------------------------------------------------------


async def create_agent(db: AsyncSession, body: AgentCreate) -> Agent:
    """Create a new agent.  Raises ``DuplicateAgentError`` if the ID exists."""
    agent_id = body.agent_id or str(uuid.uuid4())

    if await db.get(Agent, agent_id) is not None:
        msg = f"Agent '{agent_id}' already exists"
        raise DuplicateAgentError(msg)

    row_data = _to_row_kwargs(body.model_dump(exclude={"agent_id"}))
    agent = Agent(agent_id=agent_id, **row_data)
    db.add(agent)
    await db.commit()
    await db.refresh(agent)
    logger.info("Agent created: {} ({}, mode={})", agent_id, agent.name, agent.execution_mode)
    return agent


async def list_agents(db: AsyncSession) -> list[Agent]:
    """List all agents, newest first."""
    result = await db.execute(select(Agent).order_by(Agent.created_at.desc()))
    return list(result.scalars().all())


async def get_agent(db: AsyncSession, agent_id: str) -> Agent:
    """Get an agent by ID.  Raises ``AgentNotFoundError`` if missing."""
    agent = await db.get(Agent, agent_id)
    if agent is None:
        raise AgentNotFoundError(agent_id)
    return agent


async def update_agent(db: AsyncSession, agent_id: str, body: AgentUpdate) -> Agent:
    """Partially update an agent.  Raises ``AgentNotFoundError`` if missing."""
    agent = await get_agent(db, agent_id)

    changes = _to_row_kwargs(body.model_dump(exclude_unset=True))
    if not changes:
        return agent

    for key, value in changes.items():
        setattr(agent, key, value)

    await db.commit()
    await db.refresh(agent)
    return agent


async def delete_agent(db: AsyncSession, agent_id: str) -> None:
    """Delete an agent.  Raises ``AgentNotFoundError`` if missing.

    Live sandboxes must be released first; the router stops the agent's
    sessions before calling this.
    """
    agent = await get_agent(db, agent_id)
    await db.delete(agent)
    await db.commit()
    logger.info("Agent deleted: {}", agent_id)


# -- Configuration provider ----------------------------------------------------


@runtime_checkable
class AgentConfigProvider(Protocol):
    """Read-only source of agent configuration."""

    async def get_agent_config(self, agent_id: str) -> AgentConfig:
        """Raises ``AgentNotFoundError`` if the agent does not exist."""
        ...


class SqlAgentConfigProvider:
    """``AgentConfigProvider`` reading the ``agents`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def get_agent_config(self, agent_id: str) -> AgentConfig:
        async with self._factory() as db:
            return AgentConfig.model_validate(await get_agent(db, agent_id))
