"""Ollama local inference provider (OpenAI-compatible chat completions).

Tool calls arrive as ``tool_calls`` on the assistant message with
JSON-encoded argument strings; results go back as ``tool`` role messages.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx

from ..errors import ProviderError
from ..models.provider import ProviderTurn, StopSignal, ToolCall, ToolOutcome
from ..models.tool import RegisteredTool
from .base import (
    BaseProvider,
    error_from_response,
    from_provider_name,
    to_provider_name,
    tool_outcome_text,
    tool_schema,
)

DEFAULT_HOST = "http://localhost:11434"


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Decode a function-call argument payload. Malformed input yields {}."""
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OllamaProvider(BaseProvider):
    name = "ollama"
    default_timeout = 600

    def __init__(
        self,
        model: str,
        provider_config: dict,
        runner_config: dict,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(model, provider_config, runner_config, transport=transport)
        self.host = (provider_config.get("host") or DEFAULT_HOST).rstrip("/")

    def format_tools(self, tools: list[RegisteredTool]) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {
                    "name": to_provider_name(t.name),
                    "description": t.description or "",
                    "parameters": tool_schema(t),
                },
            }
            for t in tools
        ]

    def initial_messages(self, system_prompt: str, context: str) -> list[dict]:
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": context},
        ]

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict],
        tools: list[dict],
    ) -> ProviderTurn:
        body: dict = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
        }
        if tools:
            body["tools"] = tools

        url = f"{self.host}/v1/chat/completions"
        try:
            async with self._client() as client:
                response = await client.post(url, json=body)
        except httpx.TimeoutException as e:
            raise ProviderError(f"Ollama request timed out after {self.timeout}s") from e
        except httpx.ConnectError as e:
            raise ProviderError(f"Cannot reach Ollama at {self.host}, is it running?") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Ollama request failed: {e}") from e

        if response.status_code >= 400:
            raise error_from_response("Ollama", response)
        return self.parse_response(response.json())

    def parse_response(self, data: dict) -> ProviderTurn:
        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("Ollama returned empty response (no choices)")
        choice = choices[0]
        message = choice.get("message") or {}
        finish_reason = choice.get("finish_reason")

        raw_calls = message.get("tool_calls") or []
        calls: list[ToolCall] = []
        echoed_calls: list[dict] = []
        for i, tc in enumerate(raw_calls):
            function = tc.get("function") or {}
            call_id = tc.get("id") or f"call_{i}"
            calls.append(
                ToolCall(
                    id=call_id,
                    name=from_provider_name(function.get("name", "")),
                    arguments=parse_tool_arguments(function.get("arguments")),
                )
            )
            echoed_calls.append({**tc, "id": call_id})

        usage = data.get("usage") or {}
        if calls:
            stop = StopSignal.TOOL_CALLS
        elif finish_reason == "length":
            stop = StopSignal.TRUNCATED
        else:
            stop = StopSignal.DONE

        assistant: dict = {"role": "assistant", "content": message.get("content")}
        if echoed_calls:
            assistant["tool_calls"] = echoed_calls

        return ProviderTurn(
            stop=stop,
            stop_reason=finish_reason,
            text=message.get("content") or "",
            tool_calls=calls,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            message=assistant,
        )

    def append_tool_results(self, messages: list[dict], outcomes: list[ToolOutcome]) -> None:
        for outcome in outcomes:
            if outcome.error_message is not None:
                content = json.dumps({"error": outcome.error_message})
            else:
                content = tool_outcome_text(outcome)
            messages.append({"role": "tool", "tool_call_id": outcome.call.id, "content": content})
