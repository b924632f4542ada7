from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Literal, TypeAlias


if TYPE_CHECKING:
    from provisioner.supervisor.process import ProcessHandle


class EndReason(StrEnum):
    """Why the output line sequence ended"""

    # no line arrived before the deadline
    TIMEOUT = "timeout"
    # the process closed its output or exited
    EOF = "eof"


@dataclass(slots=True, frozen=True)
class Success:
    message: str
    # still-running process; the caller owns it from here on
    handle: ProcessHandle
    end_reason: EndReason
    lines: int = 0

    is_ok: Literal[True] = True


@dataclass(slots=True, frozen=True)
class TimedOut:
    error: str
    end_reason: EndReason
    lines: int = 0
    returncode: int | None = None

    is_ok: Literal[False] = False


SuperviseResult: TypeAlias = Success | TimedOut
