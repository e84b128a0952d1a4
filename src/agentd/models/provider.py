"""AI provider data models."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class StopSignal(str, Enum):
    DONE = "done"
    TRUNCATED = "truncated"
    TOOL_CALLS = "tool_calls"


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: dict[str, Any] = {}


class ProviderTurn(BaseModel):
    """One model response, normalised across wire formats.

    ``tool_calls`` carry registry (dot-namespaced) names; ``message`` is the
    provider-shaped assistant message to echo back into the history.
    """

    stop: StopSignal
    stop_reason: Optional[str] = None
    text: str = ""
    tool_calls: list[ToolCall] = []
    input_tokens: int = 0
    output_tokens: int = 0
    message: Optional[dict[str, Any]] = None


class ToolOutcome(BaseModel):
    call: ToolCall
    content: Any = None
    is_error: bool = False
    error_message: Optional[str] = None
