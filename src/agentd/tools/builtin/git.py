"""Built-in ``git`` tool server (in-process). Arguments never pass through a shell."""

from __future__ import annotations

from typing import Optional

from ...models.tool import ToolResult
from ..registry import LocalToolDef
from .process import CommandError, run_exec

GIT_TIMEOUT = 15.0

_CWD_PROPERTY = {"cwd": {"type": "string", "description": "Repository path (optional)"}}


async def _git(args: list[str], cwd: Optional[str], empty: str = "") -> ToolResult:
    try:
        output = (await run_exec("git", args, cwd=cwd, timeout=GIT_TIMEOUT)).strip()
    except CommandError as e:
        return ToolResult.text(str(e), is_error=True)
    return ToolResult.text(output or empty)


def _cwd(args: dict) -> Optional[str]:
    return str(args["cwd"]) if args.get("cwd") else None


async def _status(args: dict) -> ToolResult:
    return await _git(["status", "--short"], _cwd(args), empty="(clean)")


async def _diff(args: dict) -> ToolResult:
    cmd = ["diff", "--cached"] if args.get("staged") else ["diff"]
    return await _git(cmd, _cwd(args), empty="(no changes)")


async def _log(args: dict) -> ToolResult:
    try:
        count = int(args.get("count") or 10)
    except (TypeError, ValueError):
        count = 10
    return await _git(["log", "--oneline", "-n", str(max(count, 1))], _cwd(args))


async def _show(args: dict) -> ToolResult:
    ref = str(args.get("ref") or "HEAD")
    if ref.startswith("-"):
        return ToolResult.text(f'Invalid ref "{ref}": must not start with "-"', is_error=True)
    return await _git(["show", "--stat", ref, "--"], _cwd(args))


GIT_TOOLS: list[LocalToolDef] = [
    LocalToolDef(
        name="status",
        description="Show the working tree status (git status)",
        input_schema={"type": "object", "properties": dict(_CWD_PROPERTY)},
        handler=_status,
    ),
    LocalToolDef(
        name="diff",
        description="Show changes in the working tree (git diff)",
        input_schema={
            "type": "object",
            "properties": {
                **_CWD_PROPERTY,
                "staged": {"type": "boolean", "description": "Show staged changes only"},
            },
        },
        handler=_diff,
    ),
    LocalToolDef(
        name="log",
        description="Show recent commit history (git log)",
        input_schema={
            "type": "object",
            "properties": {
                **_CWD_PROPERTY,
                "count": {"type": "number", "description": "Number of commits to show (default: 10)"},
            },
        },
        handler=_log,
    ),
    LocalToolDef(
        name="show",
        description="Show details of a specific commit (git show)",
        input_schema={
            "type": "object",
            "properties": {
                "ref": {"type": "string", "description": "Commit ref (default: HEAD)"},
                **_CWD_PROPERTY,
            },
        },
        handler=_show,
    ),
]
