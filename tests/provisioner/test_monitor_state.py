from __future__ import annotations

import pytest

from provisioner.supervisor import MonitorState, Phase, from_text, pattern, substring


READY = "√ Connected to GitHub\n2024-05-01 10:00:00Z: Listening for Jobs"


def _state(now: float = 100.0) -> MonitorState:
    return MonitorState.initial(3600.0, 5.0, now=now)


# ---- initial state ----
def test_initial_state_is_not_ready_with_long_deadline() -> None:
    state = _state()
    assert state.phase is Phase.NOT_READY
    assert state.deadline == 3700.0
    assert state.timeout_sec == 3600.0


# ---- matching line while NotReady → Ready with short deadline ----
def test_match_moves_to_ready() -> None:
    state = _state().observe(True, now=200.0)
    assert state.phase is Phase.READY
    assert state.is_ready
    assert state.deadline == 205.0
    assert state.timeout_sec == 5.0


# ---- non-matching line resets to NotReady, even after Ready ----
@pytest.mark.parametrize("start_ready", [False, True])
def test_non_match_resets_to_not_ready(start_ready: bool) -> None:
    state = _state()
    if start_ready:
        state = state.observe(True, now=150.0)
    state = state.observe(False, now=300.0)
    assert state.phase is Phase.NOT_READY
    assert state.deadline == 3900.0


# ---- repeated match keeps Ready and pushes the short deadline ----
def test_repeated_match_refreshes_ready_deadline() -> None:
    state = _state().observe(True, now=200.0).observe(True, now=203.0)
    assert state.is_ready
    assert state.deadline == 208.0


# ---- observe never mutates ----
def test_observe_returns_new_state() -> None:
    state = _state()
    nxt = state.observe(True, now=101.0)
    assert state.phase is Phase.NOT_READY
    assert nxt is not state


# ---- phase sequence for the startup transcript ----
def test_phase_sequence_for_runner_startup() -> None:
    ready = substring("Listening for Jobs")
    state = _state()
    phases = []
    for line in ["starting", "starting", "2024-05-01 10:00:00Z: Listening for Jobs"]:
        state = state.observe(ready(line), now=110.0)
        phases.append(state.phase)
    assert phases == [Phase.NOT_READY, Phase.NOT_READY, Phase.READY]


# ---- predicates ----
def test_substring_predicate() -> None:
    ready = substring("Listening for Jobs")
    assert ready(READY)
    assert not ready("listening for jobs")


def test_substring_rejects_empty_text() -> None:
    with pytest.raises(ValueError):
        substring("")


def test_pattern_predicate_searches_anywhere() -> None:
    ready = pattern(r"Listening for (Jobs|Work)")
    assert ready("10:00 Listening for Work now")
    assert not ready("Listening for nothing")


def test_pattern_invalid_regex_is_value_error() -> None:
    with pytest.raises(ValueError, match="Invalid readiness pattern"):
        pattern("(unclosed")


def test_from_text_switches_on_regex_flag() -> None:
    assert from_text("a.c")("xa.cx")
    assert not from_text("a.c")("abc")
    assert from_text("a.c", regex=True)("abc")
