"""Base class for log sources tailed by the crash watcher."""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Iterable, Iterator


class LogSource(ABC):
    """Abstract source of log lines, read until the stream ends."""

    @abstractmethod
    def lines(self) -> Iterator[str]:
        """Yield lines without trailing newlines, blocking between lines."""
        pass

    def close(self) -> None:
        """Release the stream; pending reads end as if the log closed."""

    @property
    def description(self) -> str:
        return type(self).__name__


class IterableLogSource(LogSource):
    """Log source backed by an in-memory iterable of lines."""

    def __init__(self, lines: Iterable[str]) -> None:
        self._lines = lines
        self._closed = threading.Event()

    def lines(self) -> Iterator[str]:
        for line in self._lines:
            if self._closed.is_set():
                return
            yield line.rstrip("\r\n")

    def close(self) -> None:
        self._closed.set()


class NullLogSource(LogSource):
    """Log source that ends immediately."""

    def lines(self) -> Iterator[str]:
        return iter(())

    @property
    def description(self) -> str:
        return "no log source"


__all__ = ["IterableLogSource", "LogSource", "NullLogSource"]
