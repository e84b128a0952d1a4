"""Agent runner: one bounded tool-calling loop per run.

The loop is provider-agnostic. Every model call is recorded as an
``llm_call`` event, every tool invocation as a ``tool_call`` event, every
retry as a ``retry`` event. A run ends with exactly one terminal write.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import traceback
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Optional

from ..errors import ProviderError
from ..models.agent import AgentDef
from ..models.provider import StopSignal, ToolCall, ToolOutcome
from ..models.run import EventType, RunResult
from ..models.tool import RegisteredTool
from ..providers.base import BaseProvider, get_provider
from ..tools.registry import TOOL_SEPARATOR, ToolRegistry
from ..utils.sanitize import short_error
from .agents import AgentStore
from .traces import RunStore, cost_for_model

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT = "Go."
TRUNCATION_WARNING = "\n[warning: response truncated due to max_tokens]"
MAX_ITERATIONS = 20


def iteration_limit_warning(max_iterations: int) -> str:
    return (
        f"[warning: agent reached maximum iteration limit ({max_iterations}) "
        "without producing a final response]"
    )


ProviderFactory = Callable[[str, dict], BaseProvider]


def resolve_tools(tool_refs: list[str], available: list[RegisteredTool]) -> list[RegisteredTool]:
    """Expand an agent's tool references against the registry snapshot.

    ``server.tool`` selects one tool; a bare ``server`` selects all of that
    server's tools. Unknown references are skipped; duplicates are dropped.
    """
    resolved: list[RegisteredTool] = []
    seen: set[str] = set()
    for ref in tool_refs:
        if TOOL_SEPARATOR in ref:
            matches = [t for t in available if t.name == ref]
        else:
            matches = [t for t in available if t.server_name == ref]
        if not matches:
            logger.warning('Tool reference "%s" matches no registered tool', ref)
        for tool in matches:
            if tool.name not in seen:
                seen.add(tool.name)
                resolved.append(tool)
    return resolved


def _preview(content: object, limit: int) -> str:
    text = content if isinstance(content, str) else json.dumps(content, default=str)
    return text[:limit]


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class AgentRunner:
    def __init__(
        self,
        registry: ToolRegistry,
        runs: RunStore,
        agents: AgentStore,
        config: dict,
        provider_factory: ProviderFactory = get_provider,
    ):
        self.registry = registry
        self.runs = runs
        self.agents = agents
        self.config = config
        self.provider_factory = provider_factory
        runner_config = config.get("runner", {})
        self.max_iterations = runner_config.get("max_iterations", MAX_ITERATIONS)
        self.preview_chars = runner_config.get("result_preview_chars", 200)
        self._agent_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, agent_name: str) -> asyncio.Lock:
        lock = self._agent_locks.get(agent_name)
        if lock is None:
            lock = self._agent_locks[agent_name] = asyncio.Lock()
        return lock

    async def run_agent(
        self,
        agent_name: str,
        run_id: str,
        context: Optional[str] = None,
    ) -> RunResult:
        """Execute one run. Runs of the same agent are serialised.

        Any failure is recorded as an ``error`` event plus a failed run and
        then re-raised to the caller.
        """
        lock = self._lock_for(agent_name)
        if lock.locked():
            logger.info("Run %s waiting for in-flight run of agent %s", run_id[:8], agent_name)
        async with lock:
            return await self._execute(agent_name, run_id, context)

    async def _execute(self, agent_name: str, run_id: str, context: Optional[str]) -> RunResult:
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        tool_calls = 0

        try:
            agent = self.agents.require(agent_name)
            provider = self.provider_factory(agent.model, self.config)
            output, tool_calls, input_tokens, output_tokens = await self._loop(
                agent, provider, run_id, context or DEFAULT_CONTEXT
            )
        except Exception as e:
            duration_ms = _elapsed_ms(start)
            self.runs.log_event(
                run_id,
                EventType.ERROR,
                {
                    "message": str(e),
                    "error_type": type(e).__name__,
                    "stack": "".join(traceback.format_exception(type(e), e, e.__traceback__)),
                },
            )
            self.runs.fail_run(
                run_id,
                error=short_error(e),
                duration_ms=duration_ms,
                tool_calls=tool_calls or None,
            )
            logger.warning("Run %s of agent %s failed: %s", run_id[:8], agent_name, short_error(e))
            raise

        duration_ms = _elapsed_ms(start)
        cost_usd = cost_for_model(agent.model, input_tokens, output_tokens)
        self.runs.complete_run(
            run_id,
            output=output,
            total_input_tokens=input_tokens,
            total_output_tokens=output_tokens,
            cost_usd=cost_usd,
            tool_calls=tool_calls,
            duration_ms=duration_ms,
        )
        logger.info(
            "Run %s of agent %s completed: %d tool calls, $%.4f, %dms",
            run_id[:8],
            agent_name,
            tool_calls,
            cost_usd,
            duration_ms,
        )
        return RunResult(
            run_id=run_id,
            agent_name=agent_name,
            output=output,
            tool_calls=tool_calls,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            duration_ms=duration_ms,
            cost_usd=cost_usd,
        )

    async def _loop(
        self,
        agent: AgentDef,
        provider: BaseProvider,
        run_id: str,
        context: str,
    ) -> tuple[str, int, int, int]:
        tools = resolve_tools(agent.tools, self.registry.list_tools())
        provider_tools = provider.format_tools(tools)
        messages = provider.initial_messages(agent.prompt, context)

        def on_retry(attempt: int, error: ProviderError, delay: float) -> None:
            self.runs.log_event(
                run_id,
                EventType.RETRY,
                {
                    "attempt": attempt,
                    "max_retries": provider.max_retries,
                    "status_code": error.status_code,
                    "error": short_error(error),
                    "delay_ms": int(delay * 1000),
                },
            )

        output: Optional[str] = None
        tool_calls = input_tokens = output_tokens = 0

        for _ in range(self.max_iterations):
            llm_start = time.monotonic()
            turn = await provider.complete_with_retry(
                agent.prompt, messages, provider_tools, on_retry=on_retry
            )
            input_tokens += turn.input_tokens
            output_tokens += turn.output_tokens
            self.runs.log_event(
                run_id,
                EventType.LLM_CALL,
                {
                    "model": agent.model,
                    "input_tokens": turn.input_tokens,
                    "output_tokens": turn.output_tokens,
                    "stop_reason": turn.stop_reason,
                    "duration_ms": _elapsed_ms(llm_start),
                },
            )

            if turn.stop is not StopSignal.TOOL_CALLS:
                output = turn.text
                if turn.stop is StopSignal.TRUNCATED:
                    output += TRUNCATION_WARNING
                break

            provider.append_assistant(messages, turn)
            outcomes = []
            for call in turn.tool_calls:
                tool_calls += 1
                outcomes.append(await self._call_tool(run_id, call))
            provider.append_tool_results(messages, outcomes)

        if output is None:
            output = iteration_limit_warning(self.max_iterations)
        return output, tool_calls, input_tokens, output_tokens

    async def _call_tool(self, run_id: str, call: ToolCall) -> ToolOutcome:
        """Invoke one tool. Failures become error-flagged outcomes, never exceptions."""
        tool_start = time.monotonic()
        try:
            result = await self.registry.call_tool(call.name, call.arguments)
        except Exception as e:
            message = str(e) or type(e).__name__
            self.runs.log_event(
                run_id,
                EventType.TOOL_CALL,
                {
                    "tool": call.name,
                    "args": call.arguments,
                    "result_preview": message[: self.preview_chars],
                    "is_error": True,
                    "duration_ms": _elapsed_ms(tool_start),
                },
            )
            return ToolOutcome(call=call, is_error=True, error_message=message)

        self.runs.log_event(
            run_id,
            EventType.TOOL_CALL,
            {
                "tool": call.name,
                "args": call.arguments,
                "result_preview": _preview(result.content, self.preview_chars),
                "is_error": result.is_error,
                "duration_ms": _elapsed_ms(tool_start),
            },
        )
        return ToolOutcome(call=call, content=result.content, is_error=result.is_error)
