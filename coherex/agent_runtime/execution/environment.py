"""Sandbox environment setup for agent execution.

A fresh sandbox knows nothing about the agent.  Before the first run it
needs:

- the model provider's API key, forwarded as an environment variable;
- the provider's Python SDK (``openai`` or ``anthropic``);
- the runner script that turns a request file into one model call.

Provider selection follows the model name: ``gpt-*`` and ``o<digit>*``
models go to OpenAI, ``claude-*`` models to Anthropic.  Any other model has
no provider; executions against it fail inside the sandbox with a clear
message instead of at setup time.
"""

from __future__ import annotations

import re
import shlex
from enum import StrEnum

from loguru import logger

from coherex.agent_runtime.errors import ExecutionError, ProvisioningError
from coherex.agent_runtime.execution.runner import RUNNER_PATH, RUNNER_SCRIPT
from coherex.agent_runtime.models.agent import AgentConfig
from coherex.agent_runtime.sandbox.base import SandboxExecutor, SandboxRef, destroy_quietly
from coherex.agent_runtime.settings import CoherexSettings

_OPENAI_MODEL = re.compile(r"^(gpt|o\d)", re.IGNORECASE)


class Provider(StrEnum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


PROVIDER_PACKAGES: dict[Provider, str] = {
    Provider.OPENAI: "openai",
    Provider.ANTHROPIC: "anthropic",
}

PROVIDER_ENV_VARS: dict[Provider, str] = {
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
}


def provider_for_model(model: str) -> Provider | None:
    if _OPENAI_MODEL.match(model):
        return Provider.OPENAI
    if model.lower().startswith("claude"):
        return Provider.ANTHROPIC
    return None


def sandbox_envs(agent: AgentConfig, settings: CoherexSettings) -> dict[str, str]:
    """Environment variables to inject into the agent's sandbox.

    Only the key of the agent's own provider is forwarded, and only when it
    is configured.
    """
    provider = provider_for_model(agent.model)
    if provider is None:
        return {}
    secret = settings.openai_api_key if provider == Provider.OPENAI else settings.anthropic_api_key
    if secret is None:
        return {}
    return {PROVIDER_ENV_VARS[provider]: secret.get_secret_value()}


def required_packages(agent: AgentConfig) -> list[str]:
    provider = provider_for_model(agent.model)
    return [PROVIDER_PACKAGES[provider]] if provider else []


def sandbox_metadata(agent: AgentConfig, *, session_id: str | None = None) -> dict[str, str]:
    meta = {"agent_id": agent.agent_id, "execution_mode": str(agent.execution_mode)}
    if session_id:
        meta["session_id"] = session_id
    return meta


async def prepare_sandbox(
    executor: SandboxExecutor,
    ref: SandboxRef,
    agent: AgentConfig,
    settings: CoherexSettings,
) -> list[str]:
    """Install provider packages and upload the runner into *ref*.

    Returns setup log lines.  Raises ``ProvisioningError`` if the sandbox
    could not be made ready.
    """
    logs: list[str] = []
    packages = required_packages(agent)
    if settings.install_packages and packages:
        cmd = "pip install -q " + " ".join(shlex.quote(p) for p in packages)
        try:
            result = await executor.run_command(ref, cmd, timeout_seconds=settings.command_timeout)
        except ExecutionError as exc:
            msg = f"Package install failed in sandbox {ref.sandbox_id}: {exc}"
            raise ProvisioningError(msg) from exc
        if not result.ok:
            msg = f"Package install failed in sandbox {ref.sandbox_id}: {result.stderr.strip() or result.error}"
            raise ProvisioningError(msg)
        logs.append(f"Installed packages: {', '.join(packages)}")

    try:
        await executor.upload_file(ref, RUNNER_PATH, RUNNER_SCRIPT)
    except ExecutionError as exc:
        msg = f"Runner upload failed in sandbox {ref.sandbox_id}: {exc}"
        raise ProvisioningError(msg) from exc
    logs.append(f"Sandbox {ref.sandbox_id} ready for agent {agent.agent_id}")
    logger.debug("Prepared sandbox {} for agent {}", ref.sandbox_id, agent.agent_id)
    return logs


async def provision_sandbox(
    executor: SandboxExecutor,
    agent: AgentConfig,
    settings: CoherexSettings,
    *,
    timeout_seconds: int,
    session_id: str | None = None,
) -> SandboxRef:
    """Create and prepare a long-lived sandbox for *agent*.

    If preparation fails the sandbox is destroyed before the error
    propagates, so no orphan is left running.
    """
    ref = await executor.create_sandbox(
        f"agent-{agent.agent_id}",
        timeout_seconds=timeout_seconds,
        envs=sandbox_envs(agent, settings),
        metadata=sandbox_metadata(agent, session_id=session_id),
    )
    try:
        await prepare_sandbox(executor, ref, agent, settings)
    except BaseException:
        await destroy_quietly(executor, ref)
        raise
    return ref
