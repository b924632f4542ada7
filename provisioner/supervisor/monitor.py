from __future__ import annotations

import sys
import time
from collections.abc import Callable

from structlog.typing import FilteringBoundLogger

from provisioner.logger import get_logger
from provisioner.supervisor.control import SuperviseResult, Success, TimedOut
from provisioner.supervisor.process import start_process
from provisioner.supervisor.process_utils import Echo, LineReader
from provisioner.supervisor.readiness import ReadinessPredicate
from provisioner.supervisor.types import MonitorState, ProcessCommand


def echo_stdout(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


async def supervise(
    command: ProcessCommand,
    ready: ReadinessPredicate,
    not_ready_timeout_sec: float,
    ready_timeout_sec: float,
    *,
    echo: Echo = echo_stdout,
    log_event: FilteringBoundLogger | None = None,
    merge_stderr: bool = False,
    terminate_on_timeout: bool = True,
    stop_timeout_sec: float = 15.0,
    kill_timeout_sec: float = 2.0,
    max_line_len: int = 4000,
    clock: Callable[[], float] = time.monotonic,
    on_state: Callable[[MonitorState], None] | None = None,
) -> SuperviseResult:
    """
    Start `command` and gate on its readiness.

    Output lines are echoed as they arrive. A line matching `ready` moves the
    monitor to Ready with the short timeout; any other line moves it back to
    NotReady with the long one. Supervision ends when the output closes or a
    read outlives the current deadline. Ending while Ready is Success and the
    process is left running; ending while NotReady is TimedOut.

    Raises ProcessStartError / StreamReadError on fatal failures. Any error
    raised inside the read loop stops the process group before it propagates.
    """
    if not_ready_timeout_sec <= 0 or ready_timeout_sec <= 0:
        raise ValueError("Timeouts must be positive")

    log_event = (log_event or get_logger("proc.event")).bind(exe=command.exe)

    handle = await start_process(
        command, log_event, merge_stderr=merge_stderr, max_line_len=max_line_len
    )
    log_event = log_event.bind(pid=handle.pid)

    lines = LineReader(handle.stdout, max_line_len=max_line_len, clock=clock)
    state = MonitorState.initial(not_ready_timeout_sec, ready_timeout_sec, now=clock())
    seen = 0

    try:
        while (line := await lines.next_line(state.deadline)) is not None:
            seen += 1
            echo(line)
            was_ready = state.is_ready
            state = state.observe(ready(line), now=clock())
            if state.is_ready and not was_ready:
                log_event.info("proc.ready", line=line, timeout_s=state.timeout_sec)
            elif was_ready and not state.is_ready:
                log_event.warning("proc.not_ready", line=line, timeout_s=state.timeout_sec)
            if on_state is not None:
                on_state(state)
    except BaseException as exc:
        # never leave the child's process group behind
        log_event.error("proc.supervise_error", error=repr(exc), lines=seen)
        await handle.stop(
            "error",
            log_event,
            stop_timeout_sec=stop_timeout_sec,
            kill_timeout_sec=kill_timeout_sec,
        )
        raise

    assert lines.end_reason is not None
    uptime = round(handle.uptime_seconds, 3)

    if state.is_ready:
        log_event.info(
            "proc.ready_confirmed", end_reason=lines.end_reason, lines=seen, uptime_s=uptime
        )
        return Success(
            message="process ready",
            handle=handle,
            end_reason=lines.end_reason,
            lines=seen,
        )

    log_event.error(
        "proc.timeout",
        end_reason=lines.end_reason,
        lines=seen,
        uptime_s=uptime,
        timeout_s=state.timeout_sec,
    )
    returncode = handle.returncode
    if terminate_on_timeout:
        returncode = await handle.stop(
            "not_ready",
            log_event,
            stop_timeout_sec=stop_timeout_sec,
            kill_timeout_sec=kill_timeout_sec,
        )
    return TimedOut(
        error="process never became ready",
        end_reason=lines.end_reason,
        lines=seen,
        returncode=returncode,
    )
