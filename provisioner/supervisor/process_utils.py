"""
Async utilities for process supervision.

- decode_line(): bytes -> clamped text line
- read_line(): readline() that survives lines longer than the stream limit
- LineReader: lazy output line sequence with a per-read deadline
- drain_process_stream(): echoes the rest of a stream line-by-line
- terminate_process_group(): TERM -> wait -> KILL -> wait
- is_process_alive(): cheap check for subprocess liveness
"""

from __future__ import annotations

import asyncio
import os
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from structlog.typing import FilteringBoundLogger

from provisioner.errors import StreamReadError
from provisioner.supervisor.control import EndReason


Echo = Callable[[str], None]


def decode_line(raw: bytes, max_line_len: int = 4000) -> str:
    line = raw.decode(errors="replace").rstrip("\r\n")
    if len(line) > max_line_len:
        line = line[:max_line_len] + "…"
    return line


async def read_line(reader: asyncio.StreamReader) -> bytes:
    """
    Like `StreamReader.readline()`, but a line longer than the reader's limit
    is not fatal: its head is returned and the rest up to the newline is dropped.
    Returns b"" at EOF.
    """
    try:
        return await reader.readuntil(b"\n")
    except asyncio.IncompleteReadError as exc:
        return exc.partial
    except asyncio.LimitOverrunError as exc:
        head = await reader.read(exc.consumed)

    while True:
        try:
            await reader.readuntil(b"\n")
            return head
        except asyncio.IncompleteReadError:
            return head
        except asyncio.LimitOverrunError as exc:
            await reader.read(exc.consumed)


@dataclass(slots=True)
class LineReader:
    """
    Lazy sequence of output lines.

    Each `next_line()` call takes the absolute deadline for that read; the
    sequence ends on stream closure or when the deadline passes first.
    """

    reader: asyncio.StreamReader
    max_line_len: int = 4000
    clock: Callable[[], float] = field(default=time.monotonic)
    end_reason: EndReason | None = field(default=None, init=False)

    async def next_line(self, deadline: float) -> str | None:
        """Next line, or None once the sequence has ended (see `end_reason`)."""
        if self.end_reason is not None:
            return None

        timeout = max(0.0, deadline - self.clock())
        try:
            raw = await asyncio.wait_for(read_line(self.reader), timeout=timeout)
        except asyncio.TimeoutError:  # noqa: UP041
            self.end_reason = EndReason.TIMEOUT
            return None
        except (ValueError, OSError) as exc:
            raise StreamReadError(f"Failed to read process output: {exc!r}") from exc

        if not raw:
            self.end_reason = EndReason.EOF
            return None
        return decode_line(raw, self.max_line_len)


async def drain_process_stream(
    echo: Echo,
    *,
    reader: asyncio.StreamReader | None,
    max_line_len: int = 4000,
) -> int:
    """Echo every remaining line of `reader` until EOF. Returns the line count."""
    if reader is None:
        return 0

    count = 0
    while not reader.at_eof():
        try:
            raw = await read_line(reader)
        except (ValueError, OSError) as exc:
            raise StreamReadError(f"Failed to read process output: {exc!r}") from exc
        if not raw:
            break
        echo(decode_line(raw, max_line_len))
        count += 1
    return count


def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    try:
        pgid = os.getpgid(process.pid)
    except ProcessLookupError:
        return
    os.killpg(pgid, sig)


async def terminate_process_group(
    process: asyncio.subprocess.Process,
    *,
    reason: str,
    log_event: FilteringBoundLogger,
    stop_timeout_sec: float = 15.0,
    kill_timeout_sec: float = 2.0,
) -> int | None:
    """TERM(process group) → wait → KILL(process group) → wait. Returns the exit code."""
    if process.returncode is not None:
        return process.returncode

    # 1) TERM whole process group
    try:
        _signal_group(process, signal.SIGTERM)
    except OSError as exc:
        log_event.warning("signal.term_error", pid=process.pid, error=repr(exc))
    log_event.info("proc.terminate_sent", pid=process.pid, reason=reason)

    # 2) wait for graceful exit
    try:
        await asyncio.wait_for(process.wait(), timeout=stop_timeout_sec)
        log_event.info("proc.terminated", pid=process.pid, returncode=process.returncode)
        return process.returncode
    except asyncio.TimeoutError:  # noqa: UP041
        pass

    # 3) KILL whole process group
    try:
        _signal_group(process, signal.SIGKILL)
    except OSError as exc:
        log_event.warning("signal.kill_error", pid=process.pid, error=repr(exc))

    # 4) final wait after KILL
    try:
        await asyncio.wait_for(process.wait(), timeout=kill_timeout_sec)
        log_event.info("proc.killed", pid=process.pid, returncode=process.returncode)
    except asyncio.TimeoutError:  # noqa: UP041
        log_event.error("proc.kill_timeout", pid=process.pid)
    return process.returncode


def is_process_alive(proc: asyncio.subprocess.Process | None) -> bool:
    """Return True if the given subprocess is alive."""
    return proc is not None and proc.returncode is None
