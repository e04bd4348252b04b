"""Subprocess helpers shared by the git-backed components."""

from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path
from typing import Awaitable, Callable, Mapping, Sequence

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., Awaitable[subprocess.CompletedProcess[str]]]


async def run_command(
    cmd: Sequence[str],
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a command asynchronously and raise on non-zero exit."""
    logger.debug(f"Running: {' '.join(cmd)}" + (f" in {cwd}" if cwd else ""))
    process = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()

    if process.returncode != 0:
        raise subprocess.CalledProcessError(
            process.returncode, list(cmd), stdout.decode(errors="replace"), stderr.decode(errors="replace")
        )

    return subprocess.CompletedProcess(
        list(cmd), process.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")
    )


def describe_failure(error: subprocess.CalledProcessError, limit: int = 400) -> str:
    """One-line summary of a failed command with the tail of its stderr."""
    cmd = error.cmd if isinstance(error.cmd, str) else " ".join(str(c) for c in error.cmd)
    stderr = (error.stderr or "").strip()
    if len(stderr) > limit:
        stderr = "..." + stderr[-limit:]
    message = f"'{cmd}' exited with {error.returncode}"
    return f"{message}: {stderr}" if stderr else message
