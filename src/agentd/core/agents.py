"""Agent definitions: loading from YAML and persistence.

The scheduler is the only writer of ``next_run``; everything else goes
through save/remove.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from ..errors import AgentDefinitionError, AgentNotFoundError, ConfigError
from ..models.agent import AgentDef
from .state import Database, utc_now

logger = logging.getLogger(__name__)


def load_agent_file(path: Path) -> AgentDef:
    """Parse and validate an agent definition YAML file."""
    try:
        raw = Path(path).read_text(encoding="utf-8-sig")
        parsed = yaml.safe_load(raw)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read agent definition {path}: {e}") from e

    if not isinstance(parsed, dict):
        raise AgentDefinitionError(f"Invalid YAML in {path}: expected a mapping")

    for field in ("name", "model", "prompt"):
        if not parsed.get(field):
            raise AgentDefinitionError(f"Agent YAML is missing required field: {field}")

    parsed.pop("next_run", None)
    try:
        return AgentDef(**parsed)
    except ValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise AgentDefinitionError(f"Invalid agent definition in {path}: {loc}: {first['msg']}") from e


def _row_to_agent(row: sqlite3.Row) -> AgentDef:
    data = dict(row)
    data["tools"] = json.loads(data["tools"] or "[]")
    data["triggers"] = json.loads(data["triggers"] or "[]")
    try:
        return AgentDef(**data)
    except ValidationError as e:
        raise AgentDefinitionError(f"Stored agent {data['name']} is invalid: {e.errors()[0]['msg']}") from e


class AgentStore:
    def __init__(self, db: Database):
        self.db = db

    def save(self, agent: AgentDef) -> AgentDef:
        """Insert or update an agent definition, preserving created_at and next_run."""
        now = utc_now()
        with self.db.write() as conn:
            conn.execute(
                """
                insert into agents (name, description, model, prompt, tools, triggers, created_at, updated_at)
                values (?, ?, ?, ?, ?, ?, ?, ?)
                on conflict(name) do update set
                    description = excluded.description,
                    model = excluded.model,
                    prompt = excluded.prompt,
                    tools = excluded.tools,
                    triggers = excluded.triggers,
                    updated_at = excluded.updated_at
                """,
                (
                    agent.name,
                    agent.description,
                    agent.model,
                    agent.prompt,
                    json.dumps(agent.tools),
                    json.dumps(agent.triggers),
                    now,
                    now,
                ),
            )
        return self.require(agent.name)

    def get(self, name: str) -> Optional[AgentDef]:
        row = self.db.query_one("select * from agents where name = ?", (name,))
        return _row_to_agent(row) if row else None

    def require(self, name: str) -> AgentDef:
        agent = self.get(name)
        if agent is None:
            raise AgentNotFoundError(name)
        return agent

    def list_agents(self) -> list[AgentDef]:
        """All agents that still validate. Broken rows are logged and skipped."""
        agents = []
        for row in self.db.query("select * from agents order by created_at, name"):
            try:
                agents.append(_row_to_agent(row))
            except AgentDefinitionError as e:
                logger.warning("%s", e)
        return agents

    def remove(self, name: str) -> bool:
        with self.db.write() as conn:
            cursor = conn.execute("delete from agents where name = ?", (name,))
            return cursor.rowcount > 0

    def set_next_run(self, name: str, next_run: Optional[datetime]) -> None:
        with self.db.write() as conn:
            conn.execute(
                "update agents set next_run = ? where name = ?",
                (next_run.isoformat() if next_run else None, name),
            )
