"""Unit tests for sandbox environment preparation."""

from __future__ import annotations

import pytest
from pydantic import SecretStr

from coherex.agent_runtime.errors import ExecutionError, ProvisioningError
from coherex.agent_runtime.execution.environment import (
    Provider,
    prepare_sandbox,
    provider_for_model,
    provision_sandbox,
    required_packages,
    sandbox_envs,
    sandbox_metadata,
)
from coherex.agent_runtime.execution.runner import RUNNER_PATH, RUNNER_SCRIPT
from coherex.agent_runtime.sandbox.base import CommandResult


@pytest.mark.parametrize(
    ("model", "expected"),
    [
        ("gpt-4", Provider.OPENAI),
        ("gpt-4o-mini", Provider.OPENAI),
        ("o1-preview", Provider.OPENAI),
        ("claude-3-5-sonnet", Provider.ANTHROPIC),
        ("llama-3", None),
        ("openchat", None),
    ],
)
def test_provider_for_model(model: str, expected: Provider | None) -> None:
    assert provider_for_model(model) == expected


def test_sandbox_envs_forwards_matching_key(agent_factory, settings) -> None:
    settings.openai_api_key = SecretStr("sk-openai")
    settings.anthropic_api_key = SecretStr("sk-anthropic")

    assert sandbox_envs(agent_factory(model="gpt-4"), settings) == {"OPENAI_API_KEY": "sk-openai"}
    assert sandbox_envs(agent_factory(model="claude-3-haiku"), settings) == {"ANTHROPIC_API_KEY": "sk-anthropic"}


def test_sandbox_envs_without_key(agent_factory, settings) -> None:
    assert sandbox_envs(agent_factory(model="gpt-4"), settings) == {}
    assert sandbox_envs(agent_factory(model="llama-3"), settings) == {}


def test_required_packages(agent_factory) -> None:
    assert required_packages(agent_factory(model="gpt-4")) == ["openai"]
    assert required_packages(agent_factory(model="claude-3-haiku")) == ["anthropic"]
    assert required_packages(agent_factory(model="llama-3")) == []


def test_sandbox_metadata(agent) -> None:
    assert sandbox_metadata(agent) == {"agent_id": "agent-1", "execution_mode": "persistent"}
    assert sandbox_metadata(agent, session_id="s-1")["session_id"] == "s-1"


async def test_prepare_sandbox_uploads_runner(agent, sandbox, settings) -> None:
    ref = await sandbox.create_sandbox("t", timeout_seconds=60)

    logs = await prepare_sandbox(sandbox, ref, agent, settings)

    assert sandbox.live[ref.sandbox_id][RUNNER_PATH] == RUNNER_SCRIPT
    assert logs[0] == "Installed packages: openai"


async def test_prepare_sandbox_skips_install(agent, sandbox, settings) -> None:
    settings.install_packages = False
    ref = await sandbox.create_sandbox("t", timeout_seconds=60)

    logs = await prepare_sandbox(sandbox, ref, agent, settings)

    assert len(logs) == 1
    assert RUNNER_PATH in sandbox.live[ref.sandbox_id]


async def test_prepare_sandbox_install_failure(agent, sandbox, settings) -> None:
    ref = await sandbox.create_sandbox("t", timeout_seconds=60)
    original_run = sandbox.run_command

    async def failing_pip(ref, command, *, timeout_seconds=None):
        if command.startswith("pip install"):
            return CommandResult(stderr="No matching distribution", exit_code=1)
        return await original_run(ref, command, timeout_seconds=timeout_seconds)

    sandbox.run_command = failing_pip

    with pytest.raises(ProvisioningError, match="No matching distribution"):
        await prepare_sandbox(sandbox, ref, agent, settings)


async def test_provision_sandbox_destroys_on_failure(agent, sandbox, settings) -> None:
    sandbox.upload_error = ExecutionError("connection reset")

    with pytest.raises(ProvisioningError):
        await provision_sandbox(sandbox, agent, settings, timeout_seconds=60)

    assert sandbox.created == ["sbx-1"]
    assert sandbox.destroyed == ["sbx-1"]


async def test_provision_sandbox_success(agent, sandbox, settings) -> None:
    ref = await provision_sandbox(sandbox, agent, settings, timeout_seconds=60, session_id="s-1")

    assert ref.sandbox_id == "sbx-1"
    assert sandbox.destroyed == []
