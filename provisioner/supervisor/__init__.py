"""
Public API for the supervised process monitor.
"""

from __future__ import annotations

from .control import EndReason, SuperviseResult, Success, TimedOut
from .monitor import echo_stdout, supervise
from .process import ProcessHandle, start_process
from .process_utils import Echo
from .readiness import ReadinessPredicate, from_text, pattern, substring
from .types import MonitorState, Phase, ProcessCommand


__all__ = [
    "Echo",
    "EndReason",
    "MonitorState",
    "Phase",
    "ProcessCommand",
    "ProcessHandle",
    "ReadinessPredicate",
    "SuperviseResult",
    "Success",
    "TimedOut",
    "echo_stdout",
    "from_text",
    "pattern",
    "start_process",
    "substring",
    "supervise",
]
