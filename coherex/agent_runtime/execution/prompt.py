"""Prompt rendering with Jinja2.

Two things are rendered here:

- the agent's **system prompt**, which may contain Jinja2 template syntax;
- the **effective prompt** sent to the model: the replayed conversation
  turns (oldest first) followed by the new input.

Template variables available to system prompts:

- ``agent_name`` : str -- the agent's display name
- ``agent_type`` : str -- e.g. ``chatbot``
- ``model_name`` : str -- model identifier
- ``date``       : str -- current date (YYYY-MM-DD)

Example template::

    You are {{ agent_name }}, answering as of {{ date }}.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import jinja2

from coherex.agent_runtime.models.agent import AgentConfig
from coherex.agent_runtime.models.session import ConversationTurn

_env = jinja2.Environment(autoescape=False, keep_trailing_newline=False, trim_blocks=True)  # noqa: S701

EFFECTIVE_PROMPT_TEMPLATE = _env.from_string(
    """{% if turns %}Previous conversation:
{% for turn in turns %}
{{ turn.role | capitalize }}: {{ turn.content }}
{% endfor %}

User: {{ input }}{% else %}{{ input }}{% endif %}"""
)


def render_system_prompt(agent: AgentConfig, *, extra_vars: dict[str, object] | None = None) -> str:
    """Render the agent's system prompt.

    Prompts without template syntax are returned unchanged.
    """
    raw = agent.effective_system_prompt
    if "{{" not in raw and "{%" not in raw:
        return raw

    template_vars: dict[str, object] = {
        "agent_name": agent.name,
        "agent_type": str(agent.agent_type),
        "model_name": agent.model,
        "date": datetime.now(tz=UTC).strftime("%Y-%m-%d"),
    }
    if extra_vars:
        template_vars.update(extra_vars)
    return _env.from_string(raw).render(**template_vars)


def render_input(value: Any) -> str:
    """Coerce a request input into prompt text.

    Strings pass through; anything else is serialised as JSON.
    """
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def render_effective_prompt(turns: Sequence[ConversationTurn], user_input: str) -> str:
    """Render the replayed *turns* followed by *user_input*.

    With no turns the input is returned as-is.
    """
    return EFFECTIVE_PROMPT_TEMPLATE.render(turns=list(turns), input=user_input)
