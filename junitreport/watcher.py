from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import TYPE_CHECKING, Iterator, List, Optional, Sequence

from .configuration import DEFAULT_WATCH_TRAILING_LINES
from .errors import ConfigurationError, ReportError
from .logsource import LogSource

if TYPE_CHECKING:
    from .sink import ReportSink


logger = logging.getLogger(__name__)

# Brief logcat lines look like "E/DEBUG   ( 1234): message".
LOG_PREFIX_SEPARATOR = "): "


class WatchState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    MATCHED = "matched"
    STREAM_ENDED = "stream_ended"


def strip_log_prefix(line: str) -> str:
    """Return ``line`` without its ``priority/tag(pid): `` prefix."""

    index = line.find(LOG_PREFIX_SEPARATOR)
    if index < 0:
        return line
    return line[index + len(LOG_PREFIX_SEPARATOR) :]


def match_keyword(line: str, keywords: Sequence[str]) -> Optional[str]:
    """Return the first of the lower-case ``keywords`` found in ``line``."""

    lowered = line.lower()
    for keyword in keywords:
        if keyword in lowered:
            return keyword
    return None


class LogWatcher:
    """Tail a log stream and rescue the report when a crash shows up in it.

    A native crash takes the whole process down, normally leaving a report
    with unbalanced tags. The watcher reads the log on a daemon thread; when
    a line contains one of the keywords it collects the following lines,
    attaches them to the report as a synthetic error and finalizes the report
    straight away, racing the process teardown. If the stream ends without a
    match nothing happens.
    """

    def __init__(
        self,
        sink: "ReportSink",
        source: LogSource,
        keywords: Sequence[str],
        trailing_lines: int = DEFAULT_WATCH_TRAILING_LINES,
    ) -> None:
        normalized = tuple(k.strip().lower() for k in keywords if k and k.strip())
        if not normalized:
            raise ConfigurationError("LogWatcher requires at least one keyword")
        if trailing_lines < 1:
            raise ConfigurationError(f"trailing_lines must be positive, got {trailing_lines}")

        self.keywords = normalized
        self.trailing_lines = trailing_lines
        self.matched_keyword: Optional[str] = None
        self.captured: Optional[str] = None
        self._sink = sink
        self._source = source
        self._state = WatchState.IDLE
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> WatchState:
        with self._state_lock:
            return self._state

    @property
    def source(self) -> LogSource:
        return self._source

    def start(self) -> bool:
        """Start the background thread; False if it was already started."""

        with self._state_lock:
            if self._state is not WatchState.IDLE:
                return False
            self._state = WatchState.RUNNING
            self._thread = threading.Thread(
                target=self._watch,
                name="junitreport_log_watcher",
                daemon=True,
            )
        self._thread.start()
        return True

    def run(self) -> WatchState:
        """Watch on the calling thread until a match or the end of the stream."""

        with self._state_lock:
            if self._state is not WatchState.IDLE:
                return self._state
            self._state = WatchState.RUNNING
        self._watch()
        return self.state

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the thread; True once the watcher has terminated."""

        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            return not thread.is_alive()
        return self.state in (WatchState.MATCHED, WatchState.STREAM_ENDED)

    def stop(self) -> None:
        """Close the log source so a blocked read ends the watcher."""

        self._source.close()

    def _set_state(self, state: WatchState) -> None:
        with self._state_lock:
            self._state = state

    def _watch(self) -> None:
        logger.info(f"Watching {self._source.description} for: {', '.join(self.keywords)}")
        try:
            captured = self._scan()
        except Exception as exc:
            logger.error(f"Log watcher stopped reading {self._source.description}: {exc}")
            captured = None

        if captured is None:
            self._set_state(WatchState.STREAM_ENDED)
            logger.info("Log stream ended without a crash signature")
            return

        self.captured = "\n".join(captured)
        self._set_state(WatchState.MATCHED)
        logger.warning(f"Crash signature {self.matched_keyword!r} found in log; finalizing report")
        try:
            self._sink.add_synthetic_error(self.captured)
        finally:
            try:
                self._sink.close_throws()
            except ReportError as exc:
                logger.error(f"Emergency report finalization failed: {exc}")
            self._source.close()

    def _scan(self) -> Optional[List[str]]:
        lines: Iterator[str] = iter(self._source.lines())
        for line in lines:
            keyword = match_keyword(line, self.keywords)
            if keyword is None:
                continue
            self.matched_keyword = keyword
            return self._capture(line, lines)
        return None

    def _capture(self, first: str, lines: Iterator[str]) -> List[str]:
        captured = [strip_log_prefix(first)]
        try:
            for line in lines:
                captured.append(strip_log_prefix(line))
                if len(captured) > self.trailing_lines:
                    break
        except Exception as exc:
            logger.warning(f"Log stream failed while capturing crash context: {exc}")
        return captured
