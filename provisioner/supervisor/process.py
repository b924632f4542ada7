from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TypedDict

from structlog.typing import FilteringBoundLogger

from provisioner.errors import ProcessStartError
from provisioner.supervisor.process_utils import (
    Echo,
    drain_process_stream,
    is_process_alive,
    terminate_process_group,
)
from provisioner.supervisor.types import ProcessCommand


# readline() buffer limit for the child's stdout
STREAM_LIMIT = 1024 * 1024


class PopenKwargs(TypedDict, total=False):
    stdin: int | None
    stdout: int | None
    stderr: int | None
    cwd: str | Path | None
    env: Mapping[str, str] | None
    start_new_session: bool
    limit: int


@dataclass(slots=True)
class ProcessHandle:
    """Live child process and its captured output stream."""

    command: ProcessCommand
    process: asyncio.subprocess.Process
    started_monotonic: float
    max_line_len: int = 4000

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def is_alive(self) -> bool:
        return is_process_alive(self.process)

    @property
    def uptime_seconds(self) -> float:
        return max(0.0, time.monotonic() - self.started_monotonic)

    @property
    def stdout(self) -> asyncio.StreamReader:
        assert self.process.stdout is not None
        return self.process.stdout

    async def follow(self, echo: Echo, log_event: FilteringBoundLogger) -> int:
        """Pass the remaining output through until the process exits. Returns its exit code."""
        lines = await drain_process_stream(
            echo, reader=self.process.stdout, max_line_len=self.max_line_len
        )
        returncode = await self.process.wait()
        log_event.info(
            "proc.exit",
            pid=self.pid,
            returncode=returncode,
            lines=lines,
            uptime_s=round(self.uptime_seconds, 3),
        )
        return returncode

    async def stop(
        self,
        reason: str,
        log_event: FilteringBoundLogger,
        *,
        stop_timeout_sec: float = 15.0,
        kill_timeout_sec: float = 2.0,
    ) -> int | None:
        return await terminate_process_group(
            self.process,
            reason=reason,
            log_event=log_event,
            stop_timeout_sec=stop_timeout_sec,
            kill_timeout_sec=kill_timeout_sec,
        )


async def start_process(
    command: ProcessCommand,
    log_event: FilteringBoundLogger,
    *,
    merge_stderr: bool = False,
    max_line_len: int = 4000,
) -> ProcessHandle:
    """Spawn the child in its own session with stdout piped back to us."""
    env = os.environ.copy()
    if command.env:
        env.update(command.env)

    popen_kwargs: PopenKwargs = {
        "cwd": command.cwd,
        "env": env,
        "stdin": asyncio.subprocess.DEVNULL,
        "stdout": asyncio.subprocess.PIPE,
        # None inherits our stderr
        "stderr": asyncio.subprocess.STDOUT if merge_stderr else None,
        "start_new_session": True,
        "limit": STREAM_LIMIT,
    }

    try:
        process = await asyncio.create_subprocess_exec(*command.argv, **popen_kwargs)
    except OSError as exc:
        log_event.error("proc.start_error", error=repr(exc), exe=command.exe, args=command.args)
        raise ProcessStartError(f"Failed to start {command.exe}: {exc}") from exc

    log_event.info(
        "proc.started",
        pid=process.pid,
        cwd=command.cwd,
        exe=command.exe,
        args=command.args,
    )
    return ProcessHandle(
        command=command,
        process=process,
        started_monotonic=time.monotonic(),
        max_line_len=max_line_len,
    )
