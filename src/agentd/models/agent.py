"""Agent data models."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from croniter import croniter
from pydantic import BaseModel, field_validator

MANUAL_TRIGGER = "manual"
CRON_PREFIX = "cron:"


class AgentDef(BaseModel):
    name: str
    model: str
    prompt: str
    description: Optional[str] = None
    tools: list[str] = []
    triggers: list[str] = []
    next_run: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("name", "model", "prompt")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("triggers")
    @classmethod
    def _known_triggers(cls, value: list[str]) -> list[str]:
        for trigger in value:
            if trigger == MANUAL_TRIGGER:
                continue
            if not trigger.startswith(CRON_PREFIX):
                raise ValueError(
                    f'invalid trigger "{trigger}": expected "manual" or "cron:<expression>"'
                )
            expression = trigger[len(CRON_PREFIX):].strip()
            if not croniter.is_valid(expression):
                raise ValueError(f'invalid cron expression "{expression}"')
        return value

    @property
    def cron_expressions(self) -> list[str]:
        return parse_cron_triggers(self.triggers)


def parse_cron_triggers(triggers: list[str]) -> list[str]:
    """Return the cron expressions from a trigger list, dropping "manual"."""
    return [t[len(CRON_PREFIX):].strip() for t in triggers if t.startswith(CRON_PREFIX)]
