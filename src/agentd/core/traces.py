"""Run/Event store: durable record of every agent run and its event timeline."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from typing import Any, Optional

from ..errors import AmbiguousRunIdError, RunNotFoundError
from ..models.run import Event, EventType, Run, RunStatus
from .state import Database, utc_now

logger = logging.getLogger(__name__)

# USD per million tokens.
MODEL_PRICING: dict[str, dict[str, float]] = {
    "claude-opus-4-1-20250805": {"input": 15, "output": 75},
    "claude-opus-4-20250514": {"input": 15, "output": 75},
    "claude-sonnet-4-5-20250929": {"input": 3, "output": 15},
    "claude-sonnet-4-5-20250514": {"input": 3, "output": 15},
    "claude-sonnet-4-20250514": {"input": 3, "output": 15},
    "claude-3-7-sonnet-20250219": {"input": 3, "output": 15},
    "claude-haiku-4-5-20251001": {"input": 1, "output": 5},
    "claude-3-5-haiku-20241022": {"input": 0.8, "output": 4},
}


def cost_for_model(model: str, input_tokens: int, output_tokens: int) -> float:
    """Cost in USD. Unknown models (including every local model) cost zero."""
    pricing = MODEL_PRICING.get(model)
    if not pricing:
        return 0.0
    return (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_run(row: sqlite3.Row) -> Run:
    return Run(**dict(row))


def _row_to_event(row: sqlite3.Row) -> Event:
    data = row["data"]
    return Event(
        id=row["id"],
        run_id=row["run_id"],
        type=EventType(row["type"]),
        timestamp=row["timestamp"],
        data=json.loads(data) if data else None,
    )


class RunStore:
    def __init__(self, db: Database):
        self.db = db

    def create_run(self, agent_name: str) -> str:
        run_id = str(uuid.uuid4())
        with self.db.write() as conn:
            conn.execute(
                "insert into runs (id, agent_name, status, started_at) values (?, ?, ?, ?)",
                (run_id, agent_name, RunStatus.RUNNING.value, utc_now()),
            )
        return run_id

    def log_event(self, run_id: str, event_type: EventType, data: Any = None) -> None:
        with self.db.write() as conn:
            conn.execute(
                "insert into events (run_id, type, timestamp, data) values (?, ?, ?, ?)",
                (
                    run_id,
                    EventType(event_type).value,
                    utc_now(),
                    json.dumps(data, default=str) if data is not None else None,
                ),
            )

    def complete_run(
        self,
        run_id: str,
        *,
        output: str,
        total_input_tokens: int,
        total_output_tokens: int,
        cost_usd: float,
        tool_calls: int,
        duration_ms: int,
    ) -> bool:
        """Mark a run completed. Returns False if the run was already terminal."""
        with self.db.write() as conn:
            cursor = conn.execute(
                """
                update runs set
                    status = ?,
                    completed_at = ?,
                    duration_ms = ?,
                    total_input_tokens = ?,
                    total_output_tokens = ?,
                    cost_usd = ?,
                    tool_calls = ?,
                    output = ?
                where id = ? and status = ?
                """,
                (
                    RunStatus.COMPLETED.value,
                    utc_now(),
                    duration_ms,
                    total_input_tokens,
                    total_output_tokens,
                    cost_usd,
                    tool_calls,
                    output,
                    run_id,
                    RunStatus.RUNNING.value,
                ),
            )
            written = cursor.rowcount > 0
        if not written:
            logger.warning("Ignoring completion of run %s: already terminal or unknown", run_id)
        return written

    def fail_run(
        self,
        run_id: str,
        *,
        error: str,
        duration_ms: int,
        tool_calls: Optional[int] = None,
    ) -> bool:
        """Mark a run failed. Returns False if the run was already terminal."""
        with self.db.write() as conn:
            cursor = conn.execute(
                """
                update runs set
                    status = ?,
                    completed_at = ?,
                    duration_ms = ?,
                    tool_calls = coalesce(?, tool_calls),
                    error = ?
                where id = ? and status = ?
                """,
                (
                    RunStatus.ERROR.value,
                    utc_now(),
                    duration_ms,
                    tool_calls,
                    error,
                    run_id,
                    RunStatus.RUNNING.value,
                ),
            )
            written = cursor.rowcount > 0
        if not written:
            logger.warning("Ignoring failure of run %s: already terminal or unknown", run_id)
        return written

    def get_run(self, run_ref: str, with_events: bool = True) -> Run:
        """Look up a run by full id, falling back to a unique id prefix."""
        row = self.db.query_one("select * from runs where id = ?", (run_ref,))
        if row is None:
            matches = self.db.query(
                "select * from runs where id like ? escape '\\' limit 2",
                (_escape_like(run_ref) + "%",),
            )
            if not matches or not run_ref:
                raise RunNotFoundError(run_ref)
            if len(matches) > 1:
                total = self.db.query_one(
                    "select count(*) from runs where id like ? escape '\\'",
                    (_escape_like(run_ref) + "%",),
                )[0]
                raise AmbiguousRunIdError(run_ref, total)
            row = matches[0]

        run = _row_to_run(row)
        if with_events:
            run.events = self.list_events(run.id)
        return run

    def list_events(self, run_id: str) -> list[Event]:
        rows = self.db.query("select * from events where run_id = ? order by id asc", (run_id,))
        return [_row_to_event(r) for r in rows]

    def list_runs(self, agent_name: str, limit: int = 20) -> list[Run]:
        rows = self.db.query(
            "select * from runs where agent_name = ? order by started_at desc, rowid desc limit ?",
            (agent_name, limit),
        )
        return [_row_to_run(r) for r in rows]
