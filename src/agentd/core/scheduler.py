"""Cron scheduling for agents.

One asyncio timer task per cron trigger. A fire creates a Run, hands it to
the runner in a detached task, then recomputes and persists ``next_run``
whatever the run's outcome.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Optional

from croniter import croniter

from ..models.agent import parse_cron_triggers
from .agents import AgentStore
from .traces import RunStore

logger = logging.getLogger(__name__)

RunAgent = Callable[[str, str, Optional[str]], Awaitable[object]]


def _now() -> datetime:
    return datetime.now().astimezone()


def next_fire_time(expression: str, now: Optional[datetime] = None) -> datetime:
    return croniter(expression, now or _now()).get_next(datetime)


def compute_next_run(triggers: list[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Earliest next fire instant across every cron trigger, or None without any."""
    expressions = parse_cron_triggers(triggers)
    if not expressions:
        return None
    base = now or _now()
    return min(next_fire_time(expr, base) for expr in expressions)


def scheduled_context(expression: str) -> str:
    return f"Scheduled run (cron: {expression})"


class Scheduler:
    def __init__(self, agents: AgentStore, runs: RunStore, run_agent: RunAgent):
        self.agents = agents
        self.runs = runs
        self.run_agent = run_agent
        self._timers: dict[str, list[asyncio.Task]] = {}
        self._fires: set[asyncio.Task] = set()

    def scheduled_agents(self) -> list[str]:
        return list(self._timers)

    def schedule_agent(self, name: str, triggers: list[str]) -> Optional[datetime]:
        """(Re)create the timers for ``name``. Returns the persisted next_run."""
        self.unschedule_agent(name)

        expressions = parse_cron_triggers(triggers)
        if not expressions:
            return None

        # raises on a bad expression before any timer exists
        next_run = compute_next_run(triggers)
        self._timers[name] = [
            asyncio.create_task(self._timer(name, expr), name=f"cron:{name}:{expr}")
            for expr in expressions
        ]
        self.agents.set_next_run(name, next_run)
        logger.info("Scheduled agent %s (%d cron triggers, next run %s)", name, len(expressions), next_run)
        return next_run

    def unschedule_agent(self, name: str) -> None:
        timers = self._timers.pop(name, [])
        for task in timers:
            task.cancel()
        self.agents.set_next_run(name, None)
        if timers:
            logger.info("Unscheduled agent %s", name)

    def init_scheduler(self) -> int:
        """Create timers for every persisted agent. Returns how many got any."""
        count = 0
        for agent in self.agents.list_agents():
            try:
                next_run = self.schedule_agent(agent.name, agent.triggers)
            except Exception as e:
                logger.error("Could not schedule agent %s: %s", agent.name, e)
                continue
            if next_run is not None:
                count += 1
        return count

    async def stop_scheduler(self) -> None:
        """Cancel every timer, then wait for runs they already started."""
        timers = [t for tasks in self._timers.values() for t in tasks]
        self._timers.clear()
        for task in timers:
            task.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        if self._fires:
            logger.info("Waiting for %d scheduled runs", len(self._fires))
            await asyncio.gather(*list(self._fires), return_exceptions=True)

    async def _timer(self, name: str, expression: str) -> None:
        while True:
            now = _now()
            delay = (next_fire_time(expression, now) - now).total_seconds()
            await asyncio.sleep(max(delay, 0))
            task = asyncio.create_task(self._fire(name, expression))
            self._fires.add(task)
            task.add_done_callback(self._fires.discard)
            # croniter resolution is one minute; step past the instant just fired
            await asyncio.sleep(1)

    async def _fire(self, name: str, expression: str) -> None:
        logger.info("Cron fire for agent %s (%s)", name, expression)
        try:
            run_id = self.runs.create_run(name)
            await self.run_agent(name, run_id, scheduled_context(expression))
        except Exception as e:
            logger.error("Scheduled run of agent %s failed: %s", name, e)
        finally:
            agent = self.agents.get(name)
            if agent is not None and name in self._timers:
                self.agents.set_next_run(name, compute_next_run(agent.triggers))
