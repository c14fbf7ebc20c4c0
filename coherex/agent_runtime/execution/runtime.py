"""Run one agent turn inside a prepared sandbox.

Bridges the agent configuration and the in-sandbox runner: builds the
request, uploads it, dispatches the runner command and interprets what comes
back.  Used by both the session manager (persistent sandboxes) and the
coordinator (single-use sandboxes).
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field

from loguru import logger

from coherex.agent_runtime.errors import ExecutionError
from coherex.agent_runtime.execution.environment import provider_for_model
from coherex.agent_runtime.execution.prompt import render_system_prompt
from coherex.agent_runtime.execution.runner import RUNNER_PATH, SANDBOX_HOME, parse_runner_output
from coherex.agent_runtime.models.agent import AgentConfig
from coherex.agent_runtime.sandbox.base import SandboxExecutor, SandboxRef


@dataclass
class AgentRunResult:
    output: str
    logs: list[str] = field(default_factory=list)
    duration_ms: int = 0


def build_request(agent: AgentConfig, prompt: str) -> dict:
    """Build the runner request for one model call."""
    provider = provider_for_model(agent.model)
    return {
        "provider": str(provider) if provider else None,
        "model": agent.model,
        "temperature": agent.temperature,
        "max_tokens": agent.max_tokens,
        "system": render_system_prompt(agent),
        "prompt": prompt,
    }


async def run_agent(
    executor: SandboxExecutor,
    ref: SandboxRef,
    agent: AgentConfig,
    prompt: str,
    *,
    timeout_seconds: int | None = None,
) -> AgentRunResult:
    """Execute *prompt* for *agent* in sandbox *ref*.

    Raises ``ExecutionError`` (carrying the collected logs) when the runner
    fails, exits non-zero or reports ``success: false``.
    """
    started = time.monotonic()
    request_path = f"{SANDBOX_HOME}/request-{uuid.uuid4().hex}.json"
    await executor.upload_file(ref, request_path, json.dumps(build_request(agent, prompt)))

    result = await executor.run_command(ref, f"python3 {RUNNER_PATH} {request_path}", timeout_seconds=timeout_seconds)
    duration_ms = int((time.monotonic() - started) * 1000)
    logs = [line for line in result.stderr.splitlines() if line.strip()]

    try:
        payload = parse_runner_output(result.stdout)
    except ExecutionError as exc:
        detail = result.error or (logs[-1] if logs else None)
        msg = f"{exc} (exit code {result.exit_code}{f': {detail}' if detail else ''})"
        raise ExecutionError(msg, logs=logs) from exc

    if not payload.get("success"):
        raise ExecutionError(payload.get("error") or "Agent run failed", logs=logs)

    output = payload.get("output")
    logger.debug("Agent {} ran in sandbox {} ({}ms)", agent.agent_id, ref.sandbox_id, duration_ms)
    return AgentRunResult(output="" if output is None else str(output), logs=logs, duration_ms=duration_ms)
