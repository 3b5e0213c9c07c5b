"""Command runner: spawn a command and stream its output to the sink."""

from __future__ import annotations

import asyncio
import logging
import shlex
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Tuple, Union

from .output import OutputSink

logger = logging.getLogger(__name__)

STREAM_LIMIT = 1024 * 1024


def split_command(command: str) -> Tuple[str, List[str]]:
    """Split a command string into executable and arguments.

    The executable may be wrapped in double quotes so it can contain
    spaces; everything after it is parsed as shell-like arguments.
    """
    command = command.strip()
    if not command:
        raise ValueError("Invalid command format: empty command.")

    if command.startswith('"'):
        closing = command.find('"', 1)
        if closing == -1:
            raise ValueError("Invalid command format: Missing closing quote.")
        executable = command[1:closing]
        rest = command[closing + 1:]
    else:
        executable, _, rest = command.partition(" ")

    return executable, shlex.split(rest)


class CommandRunner(ABC):
    """Executes a command string in a working directory."""

    @abstractmethod
    def run(self, command: str, working_directory: Union[str, Path]) -> bool:
        """Run *command* to completion and return True on a zero exit code."""
        ...


class SubprocessRunner(CommandRunner):
    """Runs commands with asyncio, draining stdout and stderr concurrently."""

    def __init__(self, sink: OutputSink) -> None:
        self.sink = sink

    def run(self, command: str, working_directory: Union[str, Path]) -> bool:
        self.sink.debug(f"[RUN in {working_directory}] {command}")
        try:
            executable, args = split_command(command)
        except ValueError as exc:
            self.sink.error(str(exc))
            return False
        try:
            return asyncio.run(self._execute(executable, args, working_directory))
        except OSError as exc:
            self.sink.error(f"Failed to start '{executable}': {exc}")
            return False
        except ValueError as exc:
            self.sink.error(f"Failed to read output of '{executable}': {exc}")
            return False

    async def _execute(
        self,
        executable: str,
        args: List[str],
        working_directory: Union[str, Path],
    ) -> bool:
        proc = await asyncio.create_subprocess_exec(
            executable,
            *args,
            cwd=str(working_directory),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )
        try:
            await asyncio.gather(
                self._drain(proc.stdout, self.sink.output),
                self._drain(proc.stderr, self.sink.process_error),
            )
        except BaseException:
            if proc.returncode is None:
                proc.kill()
            await proc.wait()
            raise
        returncode = await proc.wait()
        logger.debug("%s exited with %s", executable, returncode)
        return returncode == 0

    @staticmethod
    async def _drain(stream: asyncio.StreamReader, emit: Callable[[str], None]) -> None:
        """Emit *stream* line by line.

        Reads fixed-size chunks rather than ``readline`` so a line longer
        than ``STREAM_LIMIT`` is emitted in pieces instead of failing.
        """
        def flush(raw: bytes) -> None:
            line = raw.decode("utf-8", errors="replace").rstrip("\r")
            if line:
                emit(line)

        pending = b""
        while True:
            chunk = await stream.read(STREAM_LIMIT)
            if not chunk:
                break
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for raw in lines:
                flush(raw)
            if len(pending) >= STREAM_LIMIT:
                flush(pending)
                pending = b""
        if pending:
            flush(pending)
