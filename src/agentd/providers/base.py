"""Model provider abstraction with retry logic.

A provider speaks one wire format. The runner drives the same loop against
every provider through this interface: build the initial history, call
``complete_with_retry``, echo the assistant turn, append tool results.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Optional

import httpx

from ..errors import ProviderError, UnknownModelError
from ..models.provider import ProviderTurn, ToolOutcome
from ..models.tool import EMPTY_INPUT_SCHEMA, RegisteredTool

logger = logging.getLogger(__name__)

ANTHROPIC_PREFIX = "claude-"
OLLAMA_PREFIX = "ollama/"

RetryCallback = Callable[[int, ProviderError, float], None]


def to_provider_name(name: str) -> str:
    """Registry names are dot-namespaced; providers only accept [a-zA-Z0-9_-]."""
    return name.replace(".", "__")


def from_provider_name(name: str) -> str:
    return name.replace("__", ".")


def parse_model_provider(model: str) -> tuple[str, str]:
    """Route a model identifier to (provider name, provider-side model id)."""
    if model.startswith(ANTHROPIC_PREFIX):
        return "anthropic", model
    if model.startswith(OLLAMA_PREFIX):
        local_model = model[len(OLLAMA_PREFIX):]
        if not local_model:
            raise UnknownModelError(f'Invalid model "{model}": missing model name after "ollama/"')
        return "ollama", local_model
    raise UnknownModelError(
        f'Unknown model "{model}". Model must start with "claude-" or "ollama/"'
    )


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds > 0 else None


def error_from_response(provider: str, response: httpx.Response) -> ProviderError:
    try:
        body = response.text
    except Exception:
        body = ""
    body = body.strip().replace("\n", " ")
    if len(body) > 300:
        body = body[:300] + "..."
    message = f"{provider} returned HTTP {response.status_code}"
    if body:
        message += f": {body}"
    return ProviderError(
        message,
        status_code=response.status_code,
        retry_after=parse_retry_after(response.headers.get("retry-after")),
    )


def tool_outcome_text(outcome: ToolOutcome) -> str:
    if outcome.error_message is not None:
        return outcome.error_message
    return json.dumps(outcome.content, default=str)


class BaseProvider:
    """Base class with shared retry logic and config handling."""

    name: str = "base"
    default_timeout: float = 120

    def __init__(
        self,
        model: str,
        provider_config: dict,
        runner_config: dict,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model
        self.config = provider_config
        self.max_retries = runner_config.get("max_retries", 3)
        self.retry_delay = runner_config.get("retry_delay_seconds", 5)
        self.rate_limit_delay = runner_config.get("rate_limit_delay_seconds", 60)
        self.timeout = provider_config.get("timeout_seconds", self.default_timeout)
        self.max_tokens = provider_config.get("max_tokens", 4096)
        self.transport = transport

    def format_tools(self, tools: list[RegisteredTool]) -> list[dict]:
        raise NotImplementedError

    def initial_messages(self, system_prompt: str, context: str) -> list[dict]:
        raise NotImplementedError

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict],
        tools: list[dict],
    ) -> ProviderTurn:
        raise NotImplementedError

    def append_assistant(self, messages: list[dict], turn: ProviderTurn) -> None:
        if turn.message is not None:
            messages.append(turn.message)

    def append_tool_results(self, messages: list[dict], outcomes: list[ToolOutcome]) -> None:
        raise NotImplementedError

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def delay_for(self, error: ProviderError) -> float:
        if error.retry_after is not None:
            return error.retry_after
        return self.rate_limit_delay if error.rate_limited else self.retry_delay

    async def complete_with_retry(
        self,
        system_prompt: str,
        messages: list[dict],
        tools: list[dict],
        on_retry: Optional[RetryCallback] = None,
    ) -> ProviderTurn:
        """Wrap complete() with retries for rate limits and server-side errors.

        Anything else, and the last transient failure once the budget is
        spent, propagates unchanged.
        """
        attempt = 0
        while True:
            try:
                return await self.complete(system_prompt, messages, tools)
            except ProviderError as e:
                if not e.transient or attempt >= self.max_retries:
                    raise
                attempt += 1
                delay = self.delay_for(e)
                logger.info(
                    "%s call failed (%s), retry %d/%d in %.1fs",
                    self.name,
                    e.status_code,
                    attempt,
                    self.max_retries,
                    delay,
                )
                if on_retry is not None:
                    on_retry(attempt, e, delay)
                await asyncio.sleep(delay)


def get_provider(
    model: str,
    config: dict,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseProvider:
    """Factory: pick the provider for an agent's model identifier."""
    provider_name, provider_model = parse_model_provider(model)
    runner_config = config.get("runner", {})

    if provider_name == "anthropic":
        from ..core.config import load_api_key
        from .anthropic import AnthropicProvider

        return AnthropicProvider(
            provider_model,
            config.get("anthropic", {}),
            runner_config,
            api_key=load_api_key(config),
            transport=transport,
        )

    from .ollama import OllamaProvider

    return OllamaProvider(provider_model, config.get("ollama", {}), runner_config, transport=transport)


def tool_schema(tool: RegisteredTool) -> dict[str, Any]:
    return tool.input_schema or dict(EMPTY_INPUT_SCHEMA)
