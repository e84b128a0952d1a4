"""Anthropic Messages API provider.

Tool calls arrive as ``tool_use`` content blocks; results go back as
``tool_result`` blocks in a user turn.
"""

from __future__ import annotations

from typing import Optional

import httpx

from ..errors import ProviderConfigError, ProviderError
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

API_VERSION = "2023-06-01"
DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"


class AnthropicProvider(BaseProvider):
    name = "anthropic"
    default_timeout = 120

    def __init__(
        self,
        model: str,
        provider_config: dict,
        runner_config: dict,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(model, provider_config, runner_config, transport=transport)
        self.api_key = api_key
        self.api_url = provider_config.get("api_url") or DEFAULT_API_URL

    def format_tools(self, tools: list[RegisteredTool]) -> list[dict]:
        return [
            {
                "name": to_provider_name(t.name),
                "description": t.description or "",
                "input_schema": tool_schema(t),
            }
            for t in tools
        ]

    def initial_messages(self, system_prompt: str, context: str) -> list[dict]:
        return [{"role": "user", "content": context}]

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict],
        tools: list[dict],
    ) -> ProviderTurn:
        if not self.api_key:
            env_var = self.config.get("api_key_env", "ANTHROPIC_API_KEY")
            raise ProviderConfigError(
                f"Anthropic API key not found. Set {env_var} or add anthropic.api_key "
                "to the agentd config"
            )

        body: dict = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            "messages": messages,
        }
        if tools:
            body["tools"] = tools

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }

        try:
            async with self._client() as client:
                response = await client.post(self.api_url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise ProviderError(f"Anthropic request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Anthropic request failed: {e}") from e

        if response.status_code >= 400:
            raise error_from_response("Anthropic", response)
        return self.parse_response(response.json())

    def parse_response(self, data: dict) -> ProviderTurn:
        blocks = data.get("content") or []
        texts = [b.get("text", "") for b in blocks if b.get("type") == "text"]
        calls = [
            ToolCall(
                id=b["id"],
                name=from_provider_name(b["name"]),
                arguments=b.get("input") or {},
            )
            for b in blocks
            if b.get("type") == "tool_use"
        ]

        stop_reason = data.get("stop_reason")
        if stop_reason == "tool_use" and calls:
            stop = StopSignal.TOOL_CALLS
        elif stop_reason == "max_tokens":
            stop = StopSignal.TRUNCATED
        else:
            stop = StopSignal.DONE

        usage = data.get("usage") or {}
        return ProviderTurn(
            stop=stop,
            stop_reason=stop_reason,
            text="\n".join(texts),
            tool_calls=calls,
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            message={"role": "assistant", "content": blocks},
        )

    def append_tool_results(self, messages: list[dict], outcomes: list[ToolOutcome]) -> None:
        results = []
        for outcome in outcomes:
            block = {
                "type": "tool_result",
                "tool_use_id": outcome.call.id,
                "content": tool_outcome_text(outcome),
            }
            if outcome.is_error:
                block["is_error"] = True
            results.append(block)
        messages.append({"role": "user", "content": results})
