"""Built-in ``filesystem`` tool server: the reference MCP filesystem server via npx."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ...models.tool import ToolServerConfig


def filesystem_server_config(allowed_directories: Optional[list[str]] = None) -> ToolServerConfig:
    dirs = [str(Path(d).expanduser()) for d in allowed_directories or []] or [str(Path.home())]
    return ToolServerConfig(
        command="npx",
        args=["-y", "@modelcontextprotocol/server-filesystem", *dirs],
    )
