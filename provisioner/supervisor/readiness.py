from __future__ import annotations

import re
from collections.abc import Callable


ReadinessPredicate = Callable[[str], bool]  # "Is the process ready?" verdict for one line.


def substring(text: str) -> ReadinessPredicate:
    """Line contains `text` verbatim."""
    if not text:
        raise ValueError("Readiness text must not be empty")

    def _match(line: str) -> bool:
        return text in line

    return _match


def pattern(regex: str | re.Pattern[str]) -> ReadinessPredicate:
    """Regex found anywhere in the line."""
    try:
        compiled = re.compile(regex) if isinstance(regex, str) else regex
    except re.error as exc:
        raise ValueError(f"Invalid readiness pattern {regex!r}: {exc}") from exc

    def _match(line: str) -> bool:
        return compiled.search(line) is not None

    return _match


def from_text(text: str, *, regex: bool = False) -> ReadinessPredicate:
    return pattern(text) if regex else substring(text)


__all__ = ["ReadinessPredicate", "from_text", "pattern", "substring"]
