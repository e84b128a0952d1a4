"""Daemon composition root and trigger boundary.

Wires config, logging, storage, the tool registry, the runner and the
scheduler together. ``trigger_run`` is fire-and-forget: it returns the run id
as soon as the Run row exists; callers poll ``get_run`` for progress.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

from ..models.agent import AgentDef
from ..models.run import Run
from ..models.tool import ToolServerConfig
from ..providers.base import parse_model_provider
from ..tools.builtin.filesystem import filesystem_server_config
from ..tools.builtin.git import GIT_TOOLS
from ..tools.builtin.shell import SHELL_TOOLS
from ..tools.registry import ToolRegistry
from .agents import AgentStore
from .config import get_effective_config
from .log import setup_logging
from .runner import AgentRunner
from .scheduler import Scheduler, compute_next_run
from .state import Database
from .traces import RunStore

logger = logging.getLogger(__name__)


class Daemon:
    def __init__(
        self,
        config: Optional[dict] = None,
        registry: Optional[ToolRegistry] = None,
        runner: Optional[AgentRunner] = None,
    ):
        self.config = config or get_effective_config()
        self.db = Database(self.config["storage"]["db_path"])
        self.runs = RunStore(self.db)
        self.agents = AgentStore(self.db)
        self.registry = registry or ToolRegistry(
            disconnect_timeout=self.config["tools"].get("disconnect_timeout_seconds", 5)
        )
        self.runner = runner or AgentRunner(self.registry, self.runs, self.agents, self.config)
        self.scheduler = Scheduler(self.agents, self.runs, self.runner.run_agent)
        self._tasks: set[asyncio.Task] = set()
        self._started = False

    async def start(self) -> None:
        """Register tools and arm the scheduler. Tool failures never stop startup."""
        if self._started:
            return
        await self.register_tools()
        count = self.scheduler.init_scheduler()
        self._started = True
        logger.info("agentd started: %d tools, %d scheduled agents", len(self.registry.list_tools()), count)

    async def register_tools(self) -> None:
        tools_config = self.config.get("tools", {})

        if tools_config.get("builtin", True):
            self.registry.register_local_server("shell", SHELL_TOOLS, source="built-in")
            self.registry.register_local_server("git", GIT_TOOLS, source="built-in")

        fs_config = tools_config.get("filesystem", {})
        if fs_config.get("enabled", True):
            await self._register_best_effort(
                "filesystem",
                filesystem_server_config(fs_config.get("directories")),
                source="built-in",
            )

        for name, server in (tools_config.get("servers") or {}).items():
            await self._register_best_effort(
                name, ToolServerConfig(**server), source="config", replace=True
            )

    async def _register_best_effort(
        self,
        name: str,
        server_config: ToolServerConfig,
        source: str,
        replace: bool = False,
    ) -> None:
        try:
            await self.registry.register_server(name, server_config, source=source, replace=replace)
        except Exception as e:
            logger.warning('Tool server "%s" unavailable: %s', name, e)

    def add_agent(self, agent: AgentDef) -> AgentDef:
        parse_model_provider(agent.model)
        saved = self.agents.save(agent)
        if self._started:
            self.scheduler.schedule_agent(saved.name, saved.triggers)
        else:
            self.agents.set_next_run(saved.name, compute_next_run(saved.triggers))
        return self.agents.require(saved.name)

    def remove_agent(self, name: str) -> bool:
        self.scheduler.unschedule_agent(name)
        return self.agents.remove(name)

    def trigger_run(self, agent_name: str, context: Optional[str] = None) -> str:
        """Create a Run and start it in the background. Returns the run id."""
        agent = self.agents.require(agent_name)
        parse_model_provider(agent.model)

        run_id = self.runs.create_run(agent.name)
        task = asyncio.create_task(
            self._run_detached(agent.name, run_id, context), name=f"run:{run_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return run_id

    async def _run_detached(self, agent_name: str, run_id: str, context: Optional[str]) -> None:
        try:
            await self.runner.run_agent(agent_name, run_id, context)
        except Exception as e:
            # Already recorded on the run; the daemon stays up.
            logger.error("Run %s of agent %s failed: %s", run_id[:8], agent_name, e)

    def get_run(self, run_ref: str) -> Run:
        return self.runs.get_run(run_ref, with_events=True)

    async def wait_for_runs(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop timers, let in-flight runs finish, then release tools and storage."""
        await self.scheduler.stop_scheduler()
        if self._tasks:
            logger.info("Waiting for %d in-flight runs", len(self._tasks))
            await self.wait_for_runs()
        await self.registry.disconnect_all()
        self.db.close()
        self._started = False
        logger.info("agentd stopped")

    async def serve_forever(self) -> None:
        """Run until SIGINT or SIGTERM."""
        await self.start()
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass
        try:
            await stop.wait()
        finally:
            await self.shutdown()


def build_daemon(config_path: Optional[Path] = None, overrides: Optional[dict] = None) -> Daemon:
    config = get_effective_config(config_path, overrides)
    log_config = config.get("logging", {})
    setup_logging(log_config.get("level", "INFO"), log_config.get("file") or None)
    return Daemon(config)
