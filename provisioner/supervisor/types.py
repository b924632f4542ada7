"""
Type definitions for the supervised process monitor.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum


# Executable, arguments and launch context for a process.
@dataclass(slots=True, frozen=True)
class ProcessCommand:
    exe: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] | None = None

    @property
    def argv(self) -> list[str]:
        return [self.exe, *self.args]


class Phase(StrEnum):
    """Monitor belief about the supervised process"""

    NOT_READY = "NotReady"
    READY = "Ready"


@dataclass(slots=True, frozen=True)
class MonitorState:
    """
    Phase plus the single active deadline.

    Every observed line produces a new state whose deadline is
    `now + timeout of the new phase`.
    """

    phase: Phase
    # absolute monotonic time after which silence ends supervision
    deadline: float
    not_ready_timeout_sec: float
    ready_timeout_sec: float

    @classmethod
    def initial(
        cls, not_ready_timeout_sec: float, ready_timeout_sec: float, *, now: float
    ) -> MonitorState:
        return cls(
            phase=Phase.NOT_READY,
            deadline=now + not_ready_timeout_sec,
            not_ready_timeout_sec=not_ready_timeout_sec,
            ready_timeout_sec=ready_timeout_sec,
        )

    @property
    def is_ready(self) -> bool:
        return self.phase is Phase.READY

    @property
    def timeout_sec(self) -> float:
        return self.ready_timeout_sec if self.is_ready else self.not_ready_timeout_sec

    def observe(self, matched: bool, *, now: float) -> MonitorState:
        """Step on one output line; `matched` is the readiness predicate verdict."""
        if matched:
            return replace(self, phase=Phase.READY, deadline=now + self.ready_timeout_sec)
        # a non-matching line drops back to NotReady even after readiness
        return replace(self, phase=Phase.NOT_READY, deadline=now + self.not_ready_timeout_sec)
