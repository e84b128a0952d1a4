"""Shared fixtures for agentd tests."""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from agentd.core.agents import AgentStore
from agentd.core import scheduler as scheduler_module
from agentd.core.config import DEFAULT_CONFIG, deep_merge
from agentd.core.state import Database
from agentd.core.traces import RunStore
from agentd.models.agent import AgentDef
from agentd.models.provider import ProviderTurn, StopSignal, ToolCall
from agentd.models.tool import ToolResult
from agentd.providers.base import BaseProvider
from agentd.tools.registry import LocalToolDef, ToolRegistry


class ScriptedProvider(BaseProvider):
    """Provider that replays a fixed script of turns (or exceptions)."""

    name = "scripted"

    def __init__(self, script, runner_config=None, delay: float = 0.0, tracker=None):
        super().__init__("scripted-model", {}, runner_config or {})
        self.script = list(script)
        self.delay = delay
        self.tracker = tracker
        self.calls: list[list[dict]] = []
        self.tool_results: list[list] = []

    def format_tools(self, tools):
        return [t.name for t in tools]

    def initial_messages(self, system_prompt, context):
        return [{"role": "user", "content": context}]

    async def complete(self, system_prompt, messages, tools):
        self.calls.append(list(messages))
        if self.tracker is not None:
            self.tracker["active"] += 1
            self.tracker["max"] = max(self.tracker["max"], self.tracker["active"])
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        finally:
            if self.tracker is not None:
                self.tracker["active"] -= 1
        if isinstance(item, Exception):
            raise item
        return item

    def append_tool_results(self, messages, outcomes):
        self.tool_results.append(list(outcomes))
        messages.append({"role": "tool", "outcomes": [o.model_dump() for o in outcomes]})


def done_turn(text: str = "all done", stop: StopSignal = StopSignal.DONE) -> ProviderTurn:
    return ProviderTurn(
        stop=stop,
        stop_reason="end_turn" if stop is StopSignal.DONE else "max_tokens",
        text=text,
        input_tokens=10,
        output_tokens=5,
        message={"role": "assistant", "content": text},
    )


def tool_turn(*calls: tuple[str, dict]) -> ProviderTurn:
    return ProviderTurn(
        stop=StopSignal.TOOL_CALLS,
        stop_reason="tool_use",
        tool_calls=[ToolCall(id=f"call_{i}", name=n, arguments=a) for i, (n, a) in enumerate(calls)],
        input_tokens=10,
        output_tokens=5,
        message={"role": "assistant", "content": "calling tools"},
    )


@pytest.fixture
def test_config(tmp_path: Path) -> dict:
    return deep_merge(
        copy.deepcopy(DEFAULT_CONFIG),
        {
            "storage": {"db_path": str(tmp_path / "agentd.db")},
            "runner": {"retry_delay_seconds": 0, "rate_limit_delay_seconds": 0},
            "ollama": {"host": "http://ollama.test:11434"},
            "tools": {"builtin": False, "filesystem": {"enabled": False}},
        },
    )


@pytest.fixture
def db(test_config: dict):
    database = Database(test_config["storage"]["db_path"])
    yield database
    database.close()


@pytest.fixture
def run_store(db: Database) -> RunStore:
    return RunStore(db)


@pytest.fixture
def agent_store(db: Database) -> AgentStore:
    return AgentStore(db)


@pytest.fixture
def sample_agent(agent_store: AgentStore) -> AgentDef:
    return agent_store.save(
        AgentDef(
            name="reporter",
            model="claude-sonnet-4-20250514",
            prompt="You write short status reports.",
            tools=["echo"],
            triggers=["manual"],
        )
    )


async def _say(args: dict) -> ToolResult:
    return ToolResult.text(f"said: {args.get('text', '')}")


async def _boom(args: dict) -> ToolResult:
    raise RuntimeError("tool exploded")


ECHO_TOOLS = [
    LocalToolDef(
        name="say",
        description="Echo text back",
        input_schema={"type": "object", "properties": {"text": {"type": "string"}}},
        handler=_say,
    ),
    LocalToolDef(
        name="boom",
        description="Always fails",
        input_schema={"type": "object", "properties": {}},
        handler=_boom,
    ),
]


@pytest.fixture
def registry() -> ToolRegistry:
    reg = ToolRegistry()
    reg.register_local_server("echo", ECHO_TOOLS, source="test")
    return reg


@pytest.fixture
def fast_cron(monkeypatch) -> datetime:
    """Every cron expression fires 50ms from now, then not again for a minute."""
    fire_at = datetime.now().astimezone() + timedelta(milliseconds=50)

    def next_fire(expression: str, now=None) -> datetime:
        now = now or datetime.now().astimezone()
        return fire_at if now < fire_at else fire_at + timedelta(minutes=1)

    monkeypatch.setattr(scheduler_module, "next_fire_time", next_fire)
    return fire_at
