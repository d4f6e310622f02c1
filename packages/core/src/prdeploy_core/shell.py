"""Run pipeline scripts in a single bash session and capture their output."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex

from rich.console import Console

from prdeploy_core.errors import ShellCommandError, ShellExecutionError

console = Console(highlight=False)
logger = logging.getLogger(__name__)

# Longest single output line accepted from a script (asyncio's default is 64 KiB).
_LINE_LIMIT = 1024 * 1024


class OutputBuffer:
    """Append-only list of output lines.

    The shell writes to it while a script runs; a tracking comment may read it
    concurrently to show live progress.
    """

    def __init__(self) -> None:
        self._lines: list[str] = []

    def append(self, line: str) -> None:
        self._lines.append(line)

    def __len__(self) -> int:
        return len(self._lines)

    def tail(self, count: int) -> list[str]:
        return self._lines[-count:]

    def text(self) -> str:
        return "\n".join(self._lines)


def _with_tracing(commands: list[str]) -> list[str]:
    traced = []
    for command in commands:
        if not command.startswith("echo"):
            traced.append(f"echo {shlex.quote(command)}")
        traced.append(command)
    return traced


async def run(
    commands: list[str],
    extra_env: dict[str, str] | None = None,
    buffer: OutputBuffer | None = None,
) -> str:
    """Run ``commands`` as one ``bash -e`` script and return the combined output.

    Each line of stdout/stderr is echoed to the console as it arrives and
    appended to ``buffer``. A non-zero exit raises ShellCommandError carrying
    the output; a failure to start bash raises ShellExecutionError.
    """
    output = buffer if buffer is not None else OutputBuffer()
    env = {**os.environ, **(extra_env or {})}
    script = "\n".join(_with_tracing(commands))

    try:
        process = await asyncio.create_subprocess_exec(
            "bash",
            "-e",
            "-c",
            script,
            env=env,
            cwd=os.getcwd(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            limit=_LINE_LIMIT,
        )
    except OSError as e:
        raise ShellExecutionError(f"Could not start bash: {e}") from e

    try:
        async for raw in process.stdout:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            output.append(line)
            console.print(line, markup=False, emoji=False, soft_wrap=True)
    except ValueError as e:
        # StreamReader refuses lines longer than its limit.
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
        raise ShellExecutionError(f"Script output line exceeded {_LINE_LIMIT} bytes") from e

    code = await process.wait()
    if code != 0:
        logger.debug("Script exited with %d", code)
        raise ShellCommandError(code, output.text())
    return output.text()


async def output(command: str) -> str:
    """Run a single command and return its stdout, for small queries like ``git rev-parse``."""
    try:
        process = await asyncio.create_subprocess_exec(
            "bash",
            "-c",
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ShellExecutionError(f"Could not start bash: {e}") from e

    stdout_bytes, stderr_bytes = await process.communicate()
    stdout = stdout_bytes.decode("utf-8", errors="replace")
    stderr = stderr_bytes.decode("utf-8", errors="replace")
    if stderr:
        console.print(stderr, markup=False)
    if process.returncode != 0:
        raise ShellCommandError(process.returncode, "\n".join(part for part in (stdout, stderr) if part))
    return stdout
