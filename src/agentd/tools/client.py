"""Tool client adapter: one MCP tool server subprocess behind list/call/disconnect.

The subprocess inherits a filtered environment (see ``utils.env``) plus the
server's own ``env`` entries. There is no automatic reconnect; a broken
adapter has to be re-registered with ``replace=True``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any, Optional

from fastmcp import Client
from fastmcp.client.transports import StdioTransport

from ..errors import ToolRegistryError, ToolServerConnectError
from ..models.tool import ToolResult, ToolServerConfig
from ..utils.env import filter_env

logger = logging.getLogger(__name__)

DEFAULT_DISCONNECT_TIMEOUT = 5.0


class ClientState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


def build_subprocess_env(config: ToolServerConfig) -> dict[str, str]:
    env = filter_env()
    if config.env:
        env.update(config.env)
    return env


class ToolClient:
    def __init__(
        self,
        config: ToolServerConfig,
        disconnect_timeout: float = DEFAULT_DISCONNECT_TIMEOUT,
    ):
        self.config = config
        self.disconnect_timeout = disconnect_timeout
        self.state = ClientState.DISCONNECTED
        self._client: Optional[Client] = None
        self._stack: Optional[AsyncExitStack] = None

    async def connect(self) -> None:
        """Spawn the server process and complete the MCP handshake."""
        if self.state is not ClientState.DISCONNECTED:
            raise ToolRegistryError(f"Tool client is {self.state.value}, cannot connect")

        self.state = ClientState.CONNECTING
        transport = StdioTransport(
            command=self.config.command,
            args=list(self.config.args),
            env=build_subprocess_env(self.config),
        )
        client = Client(transport, timeout=self.config.timeout_seconds)
        stack = AsyncExitStack()
        try:
            await stack.enter_async_context(client)
        except Exception as e:
            self.state = ClientState.DISCONNECTED
            raise ToolServerConnectError(
                f"Failed to start tool server '{self.config.command}': {e}"
            ) from e

        self._client = client
        self._stack = stack
        self.state = ClientState.CONNECTED

    def _require_connected(self) -> Client:
        if self.state is not ClientState.CONNECTED or self._client is None:
            raise ToolRegistryError(
                f"Tool server '{self.config.command}' is not connected ({self.state.value})"
            )
        return self._client

    async def list_tools(self) -> list[dict[str, Any]]:
        """Ask the server for its tools. Not cached."""
        client = self._require_connected()
        tools = await client.list_tools()
        return [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": t.inputSchema,
            }
            for t in tools
        ]

    async def call_tool(self, name: str, args: Optional[dict[str, Any]] = None) -> ToolResult:
        client = self._require_connected()
        result = await client.call_tool_mcp(name=name, arguments=args or {})
        return ToolResult(
            content=[block.model_dump(mode="json", exclude_none=True) for block in result.content],
            is_error=bool(result.isError),
        )

    async def disconnect(self) -> None:
        """Close the session with a bounded wait. Never raises."""
        if self.state is ClientState.DISCONNECTED or self._stack is None:
            self.state = ClientState.DISCONNECTED
            return

        self.state = ClientState.DISCONNECTING
        stack = self._stack
        try:
            await asyncio.wait_for(stack.aclose(), timeout=self.disconnect_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Tool server '%s' did not close within %ss",
                self.config.command,
                self.disconnect_timeout,
            )
        except Exception as e:
            logger.warning("Tool server '%s' disconnect failed: %s", self.config.command, e)
        finally:
            self._client = None
            self._stack = None
            self.state = ClientState.DISCONNECTED


async def create_tool_client(
    config: ToolServerConfig,
    disconnect_timeout: float = DEFAULT_DISCONNECT_TIMEOUT,
) -> ToolClient:
    client = ToolClient(config, disconnect_timeout=disconnect_timeout)
    await client.connect()
    return client
