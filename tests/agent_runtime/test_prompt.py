"""Unit tests for system prompt and effective prompt rendering."""

from __future__ import annotations

from datetime import UTC, datetime

from coherex.agent_runtime.execution.prompt import render_effective_prompt, render_input, render_system_prompt
from coherex.agent_runtime.models.agent import AgentConfig
from coherex.agent_runtime.models.enums import AgentType, TurnRole
from coherex.agent_runtime.models.session import ConversationTurn


def _make_agent(**overrides) -> AgentConfig:
    defaults = {
        "agent_id": "agent-1",
        "name": "Helper",
        "system_prompt": "You are a helpful assistant.",
    }
    defaults.update(overrides)
    return AgentConfig(**defaults)


def _turns(*pairs: tuple[str, str]) -> list[ConversationTurn]:
    turns = []
    for user, assistant in pairs:
        turns.append(ConversationTurn(seq=len(turns) + 1, role=TurnRole.USER, content=user))
        turns.append(ConversationTurn(seq=len(turns) + 1, role=TurnRole.ASSISTANT, content=assistant))
    return turns


# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------


def test_plain_string_passthrough() -> None:
    result = render_system_prompt(_make_agent())
    assert result == "You are a helpful assistant."


def test_default_system_prompt_uses_name() -> None:
    result = render_system_prompt(_make_agent(system_prompt=None, name="Ada"))
    assert result == "You are Ada, a helpful AI assistant."


def test_template_with_agent_fields() -> None:
    agent = _make_agent(
        system_prompt="You are {{ agent_name }} ({{ agent_type }}) on {{ model_name }}.",
        agent_type=AgentType.ANALYZER,
        model="claude-3-5-sonnet",
    )
    assert render_system_prompt(agent) == "You are Helper (analyzer) on claude-3-5-sonnet."


def test_template_date() -> None:
    result = render_system_prompt(_make_agent(system_prompt="Today is {{ date }}."))
    assert result == f"Today is {datetime.now(tz=UTC).strftime('%Y-%m-%d')}."


def test_template_conditional() -> None:
    template = "You are an assistant.{% if agent_type == 'chatbot' %} Keep it short.{% endif %}"
    assert render_system_prompt(_make_agent(system_prompt=template)) == "You are an assistant. Keep it short."


def test_template_extra_vars() -> None:
    agent = _make_agent(system_prompt="Tenant: {{ tenant }}")
    assert render_system_prompt(agent, extra_vars={"tenant": "acme"}) == "Tenant: acme"


# ---------------------------------------------------------------------------
# Effective prompt
# ---------------------------------------------------------------------------


def test_effective_prompt_without_history() -> None:
    assert render_effective_prompt([], "hello") == "hello"


def test_effective_prompt_with_history() -> None:
    result = render_effective_prompt(_turns(("hi", "hello")), "how are you?")
    assert result == "Previous conversation:\nUser: hi\nAssistant: hello\n\nUser: how are you?"


def test_effective_prompt_keeps_turn_order() -> None:
    result = render_effective_prompt(_turns(("one", "1"), ("two", "2")), "three")
    assert result.index("User: one") < result.index("Assistant: 1") < result.index("User: two")


def test_render_input_string() -> None:
    assert render_input("plain text") == "plain text"


def test_render_input_structured() -> None:
    assert render_input({"query": "café", "limit": 3}) == '{"query": "café", "limit": 3}'
