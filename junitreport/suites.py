from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CaseRef:
    """Identity of a single test case."""

    suite: str
    name: str


@dataclass(frozen=True)
class SuiteTransition:
    """Close ``previous`` (when set) and open ``current``."""

    previous: Optional[str]
    current: str


class SuiteTracker:
    """Track the open suite and decide when a suite boundary is crossed."""

    def __init__(self) -> None:
        self._current: Optional[str] = None
        self._closed = False

    @property
    def current(self) -> Optional[str]:
        return self._current

    @property
    def closed(self) -> bool:
        return self._closed

    def transition(self, suite_name: str) -> Optional[SuiteTransition]:
        """Return the transition required before a case of ``suite_name``."""

        if self._closed:
            return None
        if self._current is not None and self._current == suite_name:
            return None

        transition = SuiteTransition(previous=self._current, current=suite_name)
        self._current = suite_name
        return transition

    def close(self) -> Optional[str]:
        """Enter the terminal state, returning the suite that was open."""

        previous = self._current
        self._current = None
        self._closed = True
        return previous
