"""Process-wide tool registry.

Maps ``<server>.<tool>`` to either an in-process handler or a subprocess
tool client. Every mutation swaps or removes a whole server entry, so callers
never observe a half-registered server.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from ..errors import (
    InvalidToolNameError,
    ServerNotFoundError,
    ToolNotFoundError,
    ToolRegistryError,
)
from ..models.tool import RegisteredTool, ToolResult, ToolServerConfig
from .client import DEFAULT_DISCONNECT_TIMEOUT, ToolClient, create_tool_client

logger = logging.getLogger(__name__)

TOOL_SEPARATOR = "."

LocalHandler = Callable[[dict[str, Any]], Awaitable[Union[ToolResult, dict]]]
ClientFactory = Callable[[ToolServerConfig, float], Awaitable[ToolClient]]


@dataclass
class LocalToolDef:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: LocalHandler


@dataclass
class ServerEntry:
    client: Optional[ToolClient]
    tools: dict[str, RegisteredTool]
    source: str
    local_handlers: dict[str, LocalHandler] = field(default_factory=dict)


def split_tool_name(tool_name: str) -> tuple[str, str]:
    server, sep, tool = tool_name.partition(TOOL_SEPARATOR)
    if not sep or not server or not tool:
        raise InvalidToolNameError(
            f'Invalid tool name "{tool_name}": expected format <server>.<tool>'
        )
    return server, tool


def _make_tool(server: str, raw: dict[str, Any], source: str) -> RegisteredTool:
    return RegisteredTool(
        name=f"{server}{TOOL_SEPARATOR}{raw['name']}",
        server_name=server,
        original_name=raw["name"],
        description=raw.get("description"),
        input_schema=raw.get("input_schema"),
        source=source,
    )


class ToolRegistry:
    def __init__(
        self,
        client_factory: ClientFactory = create_tool_client,
        disconnect_timeout: float = DEFAULT_DISCONNECT_TIMEOUT,
    ):
        self.client_factory = client_factory
        self.disconnect_timeout = disconnect_timeout
        self._servers: dict[str, ServerEntry] = {}
        self._lock = asyncio.Lock()

    async def register_server(
        self,
        name: str,
        config: ToolServerConfig,
        source: str = "manual",
        replace: bool = False,
    ) -> list[RegisteredTool]:
        """Connect a tool server subprocess and register its tools.

        An existing server of the same name is kept as-is unless ``replace``
        is set, in which case the old client is disconnected first.
        """
        async with self._lock:
            existing = self._servers.get(name)
            if existing is not None:
                if not replace:
                    logger.warning(
                        'Tool server "%s" already registered (source: %s), skipping',
                        name,
                        existing.source,
                    )
                    return list(existing.tools.values())
                del self._servers[name]
                if existing.client is not None:
                    try:
                        await existing.client.disconnect()
                    except Exception as e:
                        logger.warning('Failed to disconnect replaced server "%s": %s', name, e)

            client = await self.client_factory(config, self.disconnect_timeout)
            try:
                raw_tools = await client.list_tools()
            except Exception:
                await client.disconnect()
                raise

            tools = {raw["name"]: _make_tool(name, raw, source) for raw in raw_tools}
            self._servers[name] = ServerEntry(client=client, tools=tools, source=source)
            logger.info("Registered tool server %s (%d tools, source: %s)", name, len(tools), source)
            return list(tools.values())

    def register_local_server(
        self,
        name: str,
        tool_defs: list[LocalToolDef],
        source: str = "built-in",
        replace: bool = False,
    ) -> list[RegisteredTool]:
        """Register in-process handlers under ``name``. No connection step."""
        existing = self._servers.get(name)
        if existing is not None:
            if not replace:
                logger.warning(
                    'Tool server "%s" already registered (source: %s), skipping',
                    name,
                    existing.source,
                )
                return list(existing.tools.values())
            if existing.client is not None:
                raise ToolRegistryError(
                    f'Server "{name}" is backed by a running client; disconnect it first'
                )

        tools: dict[str, RegisteredTool] = {}
        handlers: dict[str, LocalHandler] = {}
        for t in tool_defs:
            raw = {"name": t.name, "description": t.description, "input_schema": t.input_schema}
            tools[t.name] = _make_tool(name, raw, source)
            handlers[t.name] = t.handler
        self._servers[name] = ServerEntry(
            client=None, tools=tools, source=source, local_handlers=handlers
        )
        return list(tools.values())

    def list_tools(self) -> list[RegisteredTool]:
        all_tools: list[RegisteredTool] = []
        for entry in list(self._servers.values()):
            all_tools.extend(entry.tools.values())
        return all_tools

    def list_servers(self) -> list[str]:
        return list(self._servers)

    def has_server(self, name: str) -> bool:
        return name in self._servers

    def _resolve(self, tool_name: str) -> tuple[ServerEntry, str]:
        server_name, original_name = split_tool_name(tool_name)

        server = self._servers.get(server_name)
        if server is None:
            available = ", ".join(self._servers) or "none"
            raise ServerNotFoundError(
                f'Server "{server_name}" not found. Available servers: {available}'
            )

        if original_name not in server.tools:
            available = ", ".join(server.tools) or "none"
            raise ToolNotFoundError(
                f'Tool "{tool_name}" not found on server "{server_name}". '
                f"Available tools: {available}"
            )
        return server, original_name

    async def call_tool(self, tool_name: str, args: Optional[dict[str, Any]] = None) -> ToolResult:
        server, original_name = self._resolve(tool_name)

        handler = server.local_handlers.get(original_name)
        if handler is not None:
            result = await handler(args or {})
            return result if isinstance(result, ToolResult) else ToolResult.model_validate(result)

        if server.client is None:
            raise ToolNotFoundError(f'Tool "{tool_name}" has no handler')
        return await server.client.call_tool(original_name, args)

    async def disconnect_server(self, name: str) -> bool:
        async with self._lock:
            entry = self._servers.pop(name, None)
        if entry is None:
            return False
        if entry.client is not None:
            await entry.client.disconnect()
        return True

    async def disconnect_all(self) -> None:
        """Disconnect every client in parallel. Failures are logged, never raised."""
        async with self._lock:
            entries = list(self._servers.items())
            self._servers.clear()

        clients = [(name, e.client) for name, e in entries if e.client is not None]
        results = await asyncio.gather(
            *(client.disconnect() for _, client in clients),
            return_exceptions=True,
        )
        for (name, _), result in zip(clients, results):
            if isinstance(result, BaseException):
                logger.warning('Failed to disconnect tool server "%s": %s', name, result)


_registry: Optional[ToolRegistry] = None


def get_registry() -> ToolRegistry:
    """The process-wide registry."""
    global _registry
    if _registry is None:
        _registry = ToolRegistry()
    return _registry
