"""Built-in ``shell`` tool server (in-process)."""

from __future__ import annotations

import os
import shutil

from ...models.tool import ToolResult
from ...utils.env import is_blocked_env_var
from ..registry import LocalToolDef
from .process import CommandError, run_exec, run_shell


async def _run_command(args: dict) -> ToolResult:
    program = str(args.get("program", ""))
    cmd_args = [str(a) for a in args.get("args") or []]
    cwd = str(args["cwd"]) if args.get("cwd") else None
    try:
        return ToolResult.text(await run_exec(program, cmd_args, cwd=cwd))
    except CommandError as e:
        return ToolResult.text(str(e), is_error=True)


async def _run_shell(args: dict) -> ToolResult:
    cwd = str(args["cwd"]) if args.get("cwd") else None
    try:
        return ToolResult.text(await run_shell(str(args.get("command", "")), cwd=cwd))
    except CommandError as e:
        return ToolResult.text(str(e), is_error=True)


async def _read_env(args: dict) -> ToolResult:
    name = str(args.get("name", ""))
    if is_blocked_env_var(name):
        return ToolResult.text("[REDACTED]")
    value = os.environ.get(name)
    if value is None:
        return ToolResult.text(f'Environment variable "{name}" is not set', is_error=True)
    return ToolResult.text(value)


async def _which(args: dict) -> ToolResult:
    command = str(args.get("command", ""))
    path = shutil.which(command) if command else None
    if not path:
        return ToolResult.text(f'Command "{command}" not found', is_error=True)
    return ToolResult.text(path)


SHELL_TOOLS: list[LocalToolDef] = [
    LocalToolDef(
        name="run_command",
        description=(
            "Execute a program directly without shell interpretation. Does not support "
            "pipes, redirects, or globbing. For those, use run_shell."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "program": {"type": "string", "description": "Program to execute (e.g. 'ls', 'git')"},
                "args": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Arguments to pass to the program",
                },
                "cwd": {"type": "string", "description": "Working directory (optional)"},
            },
            "required": ["program"],
        },
        handler=_run_command,
    ),
    LocalToolDef(
        name="run_shell",
        description=(
            "Execute a shell command string. Supports pipes, redirects and globbing. "
            "Prefer run_command when shell features are not needed."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to execute"},
                "cwd": {"type": "string", "description": "Working directory (optional)"},
            },
            "required": ["command"],
        },
        handler=_run_shell,
    ),
    LocalToolDef(
        name="read_env",
        description="Read the value of an environment variable",
        input_schema={
            "type": "object",
            "properties": {"name": {"type": "string", "description": "Environment variable name"}},
            "required": ["name"],
        },
        handler=_read_env,
    ),
    LocalToolDef(
        name="which",
        description="Find the path of a command",
        input_schema={
            "type": "object",
            "properties": {"command": {"type": "string", "description": "Command name to look up"}},
            "required": ["command"],
        },
        handler=_which,
    ),
]
