"""Simulated execution for when no sandbox can be provisioned.

The simulator never calls a model.  It produces a deterministic, clearly
labelled placeholder shaped like the agent type's real output, so a UI can
still render something during local development.  Results are always
wrapped in ``SimulatedOutcome``; callers decide whether simulation is
allowed at all.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from loguru import logger

from coherex.agent_runtime.execution.prompt import render_input
from coherex.agent_runtime.models.agent import AgentConfig
from coherex.agent_runtime.models.enums import AgentType
from coherex.agent_runtime.models.execution import SimulatedOutcome

SIMULATION_NOTE = "Simulated: no sandbox was available, no model was called."


def _simulated_output(agent: AgentConfig, value: Any) -> Any:
    text = render_input(value)
    match agent.agent_type:
        case AgentType.CHATBOT:
            return f'Hello! I\'m {agent.name}. You said: "{text}".\n\n{SIMULATION_NOTE}'
        case AgentType.DATA_PROCESSOR:
            return {
                "processed": True,
                "input_length": len(text),
                "summary": f"Processed data with {agent.name}",
                "note": SIMULATION_NOTE,
            }
        case AgentType.ANALYZER:
            return {
                "analysis": f'Analysis of input: "{text}"',
                "insights": [f"Would use model {agent.model} with a real sandbox"],
                "note": SIMULATION_NOTE,
            }
        case AgentType.AUTOMATION:
            return {
                "task": "Automation task",
                "status": "completed",
                "actions": [
                    {"action": "receive_input", "status": "done"},
                    {"action": "process_request", "status": "done"},
                    {"action": "generate_output", "status": "done"},
                ],
                "note": SIMULATION_NOTE,
            }
        case _:
            return {
                "message": f"Agent {agent.name} processed your input",
                "input": value,
                "agent_type": str(agent.agent_type),
                "note": SIMULATION_NOTE,
            }


def simulate_execution(agent: AgentConfig, value: Any, *, reason: str) -> tuple[SimulatedOutcome, list[str]]:
    """Produce a simulated outcome and its log lines for *agent*."""
    logger.warning("Simulating execution of agent {}: {}", agent.agent_id, reason)
    now = datetime.now(UTC).isoformat()
    logs = [
        f"[{now}] Sandbox unavailable, running in simulation mode: {reason}",
        f"[{now}] Agent '{agent.name}' simulated with model {agent.model}",
    ]
    return SimulatedOutcome(output=_simulated_output(agent, value), reason=reason), logs
