"""SQLite database handle and schema.

One connection per Database, shared across the event loop. Writes go through
``Database.write()``, which holds a lock for the duration of the statement
and commit so that writes to the same run are serialised.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Union

SCHEMA = """
create table if not exists agents (
    name        text primary key,
    description text,
    model       text not null,
    prompt      text not null,
    tools       text not null default '[]',
    triggers    text not null default '[]',
    next_run    text,
    created_at  text not null,
    updated_at  text not null
);

create table if not exists runs (
    id                  text primary key,
    agent_name          text not null,
    status              text not null,
    started_at          text not null,
    completed_at        text,
    duration_ms         integer,
    total_input_tokens  integer not null default 0,
    total_output_tokens integer not null default 0,
    cost_usd            real not null default 0,
    tool_calls          integer not null default 0,
    output              text,
    error               text
);

create index if not exists idx_runs_agent_started on runs(agent_name, started_at);

create table if not exists events (
    id        integer primary key autoincrement,
    run_id    text not null references runs(id) on delete cascade,
    type      text not null,
    timestamp text not null,
    data      text
);

create index if not exists idx_events_run_id on events(run_id);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    def __init__(self, path: Union[str, Path]):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("pragma journal_mode = WAL")
        self._conn.execute("pragma foreign_keys = ON")
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    @contextmanager
    def write(self) -> Iterator[sqlite3.Connection]:
        """Serialised write transaction; commits on success, rolls back on error."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise

    def query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: tuple = ()) -> Any:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
