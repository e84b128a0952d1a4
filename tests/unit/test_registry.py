"""Tests for tools/registry.py."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from agentd.errors import (
    InvalidToolNameError,
    ServerNotFoundError,
    ToolNotFoundError,
    ToolRegistryError,
    ToolServerConnectError,
)
from agentd.models.tool import ToolResult, ToolServerConfig
from agentd.tools.registry import LocalToolDef, ToolRegistry, split_tool_name

SERVER = ToolServerConfig(command="fake-server", args=["--stdio"])


def fake_client(tools=None, result=None):
    client = MagicMock()
    client.list_tools = AsyncMock(
        return_value=tools
        or [
            {"name": "read_file", "description": "Read a file", "input_schema": {"type": "object"}},
            {"name": "write_file", "description": "Write a file", "input_schema": None},
        ]
    )
    client.call_tool = AsyncMock(return_value=result or ToolResult.text("contents"))
    client.disconnect = AsyncMock()
    return client


def registry_with(*clients):
    factory = AsyncMock(side_effect=list(clients))
    return ToolRegistry(client_factory=factory, disconnect_timeout=1.0), factory


class TestSplitToolName:
    def test_valid(self):
        assert split_tool_name("fs.read_file") == ("fs", "read_file")
        assert split_tool_name("fs.nested.name") == ("fs", "nested.name")

    @pytest.mark.parametrize("bad", ["noseparator", ".tool", "server.", ""])
    def test_invalid(self, bad):
        with pytest.raises(InvalidToolNameError, match="expected format <server>.<tool>"):
            split_tool_name(bad)


class TestRegisterServer:
    @pytest.mark.asyncio
    async def test_registers_namespaced_tools(self):
        registry, factory = registry_with(fake_client())
        tools = await registry.register_server("fs", SERVER)
        assert [t.name for t in tools] == ["fs.read_file", "fs.write_file"]
        assert tools[0].original_name == "read_file"
        assert tools[0].source == "manual"
        factory.assert_awaited_once_with(SERVER, 1.0)
        assert registry.list_servers() == ["fs"]

    @pytest.mark.asyncio
    async def test_duplicate_without_replace_is_noop(self):
        first = fake_client()
        second = fake_client(tools=[{"name": "other"}])
        registry, factory = registry_with(first, second)

        original = await registry.register_server("fs", SERVER)
        again = await registry.register_server("fs", SERVER, source="config")

        assert again == original
        assert registry.list_tools() == original
        assert factory.await_count == 1
        first.disconnect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_replace_disconnects_old_client(self):
        first = fake_client()
        second = fake_client(tools=[{"name": "other"}])
        registry, _ = registry_with(first, second)

        await registry.register_server("fs", SERVER)
        tools = await registry.register_server("fs", SERVER, replace=True)

        first.disconnect.assert_awaited_once()
        assert [t.name for t in tools] == ["fs.other"]
        assert [t.name for t in registry.list_tools()] == ["fs.other"]

    @pytest.mark.asyncio
    async def test_list_failure_disconnects_and_leaves_no_entry(self):
        broken = fake_client()
        broken.list_tools.side_effect = RuntimeError("handshake lost")
        registry, _ = registry_with(broken)

        with pytest.raises(RuntimeError):
            await registry.register_server("fs", SERVER)
        broken.disconnect.assert_awaited_once()
        assert not registry.has_server("fs")

    @pytest.mark.asyncio
    async def test_connect_failure_propagates(self):
        factory = AsyncMock(side_effect=ToolServerConnectError("no such command"))
        registry = ToolRegistry(client_factory=factory)
        with pytest.raises(ToolServerConnectError):
            await registry.register_server("fs", SERVER)
        assert registry.list_tools() == []


async def _ping(args):
    return {"content": [{"type": "text", "text": "pong"}], "is_error": False}


PING = [LocalToolDef(name="ping", description="Ping", input_schema={"type": "object"}, handler=_ping)]


class TestLocalServers:
    @pytest.mark.asyncio
    async def test_local_handler_dict_result_coerced(self):
        registry = ToolRegistry()
        registry.register_local_server("net", PING)
        result = await registry.call_tool("net.ping", {})
        assert result == ToolResult.text("pong")

    def test_duplicate_local_without_replace(self):
        registry = ToolRegistry()
        first = registry.register_local_server("net", PING)
        assert registry.register_local_server("net", []) == first

    @pytest.mark.asyncio
    async def test_local_cannot_replace_client_backed(self):
        registry, _ = registry_with(fake_client())
        await registry.register_server("fs", SERVER)
        with pytest.raises(ToolRegistryError):
            registry.register_local_server("fs", PING, replace=True)


class TestCallTool:
    @pytest.mark.asyncio
    async def test_routes_to_client(self):
        client = fake_client()
        registry, _ = registry_with(client)
        await registry.register_server("fs", SERVER)

        result = await registry.call_tool("fs.read_file", {"path": "/tmp/x"})

        assert result == ToolResult.text("contents")
        client.call_tool.assert_awaited_once_with("read_file", {"path": "/tmp/x"})

    @pytest.mark.asyncio
    async def test_missing_separator(self):
        registry = ToolRegistry()
        with pytest.raises(InvalidToolNameError):
            await registry.call_tool("readfile", {})

    @pytest.mark.asyncio
    async def test_unknown_server_with_no_servers(self):
        registry = ToolRegistry()
        with pytest.raises(ServerNotFoundError, match='Server "nosuchserver" not found. Available servers: none'):
            await registry.call_tool("nosuchserver.foo", {})

    @pytest.mark.asyncio
    async def test_unknown_server_names_available(self):
        registry = ToolRegistry()
        registry.register_local_server("net", PING)
        with pytest.raises(ServerNotFoundError, match="Available servers: net"):
            await registry.call_tool("nosuchserver.foo", {})

    @pytest.mark.asyncio
    async def test_unknown_tool_names_available(self):
        registry = ToolRegistry()
        registry.register_local_server("net", PING)
        with pytest.raises(ToolNotFoundError, match="Available tools: ping"):
            await registry.call_tool("net.traceroute", {})


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_disconnect_server(self):
        client = fake_client()
        registry, _ = registry_with(client)
        await registry.register_server("fs", SERVER)
        assert await registry.disconnect_server("fs") is True
        assert await registry.disconnect_server("fs") is False
        client.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disconnect_all_swallows_failures(self):
        bad = fake_client()
        bad.disconnect.side_effect = RuntimeError("stuck")
        good = fake_client()
        registry, _ = registry_with(bad, good)
        await registry.register_server("a", SERVER)
        await registry.register_server("b", SERVER)
        registry.register_local_server("net", PING)

        await registry.disconnect_all()

        good.disconnect.assert_awaited_once()
        assert registry.list_servers() == []
