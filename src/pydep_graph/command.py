"""
Running package manager commands.

Output is read line by line on the event loop and every line is offered to
the registered output patterns as soon as it arrives, so handlers never run
concurrently with each other.
"""

import asyncio
import os
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .error_handling import CommandFailedError, sanitize_message
from .structured_logging import get_command_logger

# Longest single output line accepted from a command
_STREAM_LIMIT = 1024 * 1024


@dataclass
class OutputPattern:
    """A line matcher: ``handler`` is called with the match for every matching line."""

    regexp: "re.Pattern[str]"
    handler: Callable[["re.Match[str]", str], None]

    def apply(self, line: str) -> bool:
        match = self.regexp.search(line)
        if match is None:
            return False
        self.handler(match, line)
        return True


@dataclass
class Command:
    """A command line to run in a project directory."""

    executable: str
    args: List[str] = field(default_factory=list)
    cwd: Optional[Path] = None
    env: Dict[str, str] = field(default_factory=dict)

    def as_list(self) -> List[str]:
        return [str(self.executable), *[str(arg) for arg in self.args]]

    def __str__(self) -> str:
        return sanitize_message(" ".join(self.as_list()))


@dataclass(frozen=True)
class CommandResult:
    """Captured output of a finished command."""

    stdout: str
    stderr: str
    return_code: int

    @property
    def succeeded(self) -> bool:
        return self.return_code == 0


def apply_output_patterns(line: str, patterns: Sequence[OutputPattern]) -> None:
    """Offer one output line to every pattern."""
    for pattern in patterns:
        pattern.apply(line)


async def _read_lines(
    stream: asyncio.StreamReader, sink: List[str], patterns: Sequence[OutputPattern]
) -> None:
    while True:
        raw = await stream.readline()
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        sink.append(line)
        apply_output_patterns(line, patterns)


async def _stop_process(
    process: asyncio.subprocess.Process, tasks: Sequence["asyncio.Future[object]"]
) -> None:
    """Cancel the readers, kill the process if it is still running and reap it."""
    for task in tasks:
        task.cancel()
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()
    get_command_logger().debug("command_killed", return_code=process.returncode)


async def run_command_with_output_parser(
    command: Command,
    patterns: Sequence[OutputPattern] = (),
    timeout: Optional[float] = None,
) -> CommandResult:
    """
    Run a command, feeding its stdout and stderr lines to ``patterns``.

    A non-zero exit status is reported in the result, not raised.

    Args:
        command: Command to run
        patterns: Line matchers to apply, in registration order
        timeout: Seconds to wait before killing the command, None to wait forever

    Returns:
        CommandResult: Captured stdout, stderr and exit status

    Raises:
        CommandFailedError: If the command cannot be started or times out
    """
    logger = get_command_logger()
    env = {**os.environ, **command.env} if command.env else None
    logger.debug("command_started", command=str(command))

    try:
        process = await asyncio.create_subprocess_exec(
            *command.as_list(),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=command.cwd,
            env=env,
            limit=_STREAM_LIMIT,
        )
    except OSError as e:
        raise CommandFailedError(command.executable, str(e)) from e

    stdout_lines: List[str] = []
    stderr_lines: List[str] = []
    tasks = [
        asyncio.ensure_future(_read_lines(process.stdout, stdout_lines, patterns)),
        asyncio.ensure_future(_read_lines(process.stderr, stderr_lines, patterns)),
        asyncio.ensure_future(process.wait()),
    ]
    try:
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=timeout)
    except asyncio.TimeoutError:
        await _stop_process(process, tasks)
        raise CommandFailedError(
            command.executable,
            f"command timed out after {timeout}s",
            sanitize_message("\n".join(stderr_lines)),
        )
    except Exception as e:
        # Overlong output line or a failing output handler
        await _stop_process(process, tasks)
        raise CommandFailedError(
            command.executable,
            f"failed reading command output: {e}",
            sanitize_message("\n".join(stderr_lines)),
        ) from e

    result = CommandResult(
        stdout="\n".join(stdout_lines),
        stderr="\n".join(stderr_lines),
        return_code=process.returncode or 0,
    )
    logger.debug(
        "command_finished", command=str(command), return_code=result.return_code
    )
    return result


async def run_command_output(
    command: Command, timeout: Optional[float] = None
) -> CommandResult:
    """Run a command and capture its output without any line matchers."""
    return await run_command_with_output_parser(command, (), timeout)
