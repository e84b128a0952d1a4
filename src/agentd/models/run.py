"""Run and event data models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class EventType(str, Enum):
    LLM_CALL = "llm_call"
    TOOL_CALL = "tool_call"
    RETRY = "retry"
    ERROR = "error"


class Event(BaseModel):
    id: int
    run_id: str
    type: EventType
    timestamp: datetime
    data: Any = None


class Run(BaseModel):
    id: str
    agent_name: str
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    cost_usd: float = 0.0
    tool_calls: int = 0
    output: Optional[str] = None
    error: Optional[str] = None
    events: list[Event] = []


class RunResult(BaseModel):
    run_id: str
    agent_name: str
    output: str
    tool_calls: int
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    cost_usd: float
