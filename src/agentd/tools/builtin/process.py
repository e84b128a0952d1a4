"""Non-blocking subprocess helpers for built-in tools."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

from ...utils.env import filter_env

DEFAULT_TIMEOUT = 30.0
MAX_OUTPUT_BYTES = 1024 * 1024


class CommandError(Exception):
    pass


def _decode(data: bytes) -> str:
    return data[:MAX_OUTPUT_BYTES].decode("utf-8", errors="replace")


async def _communicate(proc: asyncio.subprocess.Process, timeout: float) -> tuple[bytes, bytes]:
    try:
        return await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise CommandError(f"Command timed out after {timeout:g}s")


async def run_exec(
    program: str,
    args: list[str],
    cwd: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    """Run ``program`` with ``args`` directly (no shell). Raises CommandError on failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            program,
            *args,
            cwd=cwd,
            env=filter_env(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
        raise CommandError(str(e)) from e

    stdout, stderr = await _communicate(proc, timeout)
    if proc.returncode != 0:
        detail = _decode(stderr).strip() or _decode(stdout).strip()
        raise CommandError(f"Command failed with exit code {proc.returncode}: {detail}")
    return _decode(stdout)


async def run_shell(command: str, cwd: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT) -> str:
    """Run a shell command string. Raises CommandError on failure."""
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            env=filter_env(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
        raise CommandError(str(e)) from e

    stdout, stderr = await _communicate(proc, timeout)
    if proc.returncode != 0:
        detail = _decode(stderr).strip() or _decode(stdout).strip()
        raise CommandError(f"Command failed with exit code {proc.returncode}: {detail}")
    return _decode(stdout)
