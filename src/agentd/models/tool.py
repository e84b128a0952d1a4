"""Tool registry data models."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

EMPTY_INPUT_SCHEMA: dict = {"type": "object", "properties": {}}


class ToolServerConfig(BaseModel):
    command: str
    args: list[str] = []
    env: Optional[dict[str, str]] = None
    timeout_seconds: Optional[float] = None


class RegisteredTool(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    server_name: str
    original_name: str
    description: Optional[str] = None
    input_schema: Optional[dict[str, Any]] = None
    source: str = "manual"


class ToolResult(BaseModel):
    """Response envelope of one tool call: content blocks plus an error flag."""

    content: list[Any] = []
    is_error: bool = False

    @classmethod
    def text(cls, text: str, is_error: bool = False) -> "ToolResult":
        return cls(content=[{"type": "text", "text": text}], is_error=is_error)
