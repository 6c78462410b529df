from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .configuration import ReportConfig
from .errors import ReportError
from .logsource import LogSource, get_log_source
from .suites import CaseRef, SuiteTracker
from .trace_filter import DEFAULT_TRACE_FILTERS, filter_trace, format_trace
from .utils import safe_message, safe_type_name
from .watcher import LogWatcher
from .writer import UNKNOWN_SUITE, ProblemKind, ReportWriter


logger = logging.getLogger(__name__)

SYNTHETIC_MESSAGE = "Crash signature detected in system log"
SYNTHETIC_TYPE = "junitreport.NativeCrash"


def classify_problem(error: BaseException) -> ProblemKind:
    """Assertions are failures; anything else raised is an error."""

    if isinstance(error, AssertionError):
        return ProblemKind.FAILURE
    return ProblemKind.ERROR


class ReportSink:
    """Receive test lifecycle events and stream them into report files.

    In single-file mode every suite goes into one document. In multi-file
    mode each suite gets its own document and the previous one is finalized
    when the suite changes. All methods may be called from the harness
    thread and the log watcher thread concurrently.
    """

    def __init__(
        self,
        config: Optional[ReportConfig] = None,
        *,
        trace_filters: Sequence[str] = DEFAULT_TRACE_FILTERS,
    ) -> None:
        self.config = config if config is not None else ReportConfig()
        self._trace_filters = tuple(trace_filters)
        self._lock = threading.RLock()
        self._tracker = SuiteTracker()
        self._writer: Optional[ReportWriter] = None
        self._writers: List[ReportWriter] = []
        self._path_uses: Dict[Path, int] = {}
        self._watcher: Optional[LogWatcher] = None
        self._closed = False

    def __enter__(self) -> "ReportSink":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def watcher(self) -> Optional[LogWatcher]:
        return self._watcher

    @property
    def report_paths(self) -> Tuple[Path, ...]:
        """Paths of every document opened so far, in order."""

        with self._lock:
            return tuple(writer.path for writer in self._writers if writer.path is not None)

    def start_watcher(self, source: Optional[LogSource] = None) -> Optional[LogWatcher]:
        """Start the crash watcher if keywords are configured.

        Only one watcher runs per sink; later calls return the existing one.
        """

        with self._lock:
            if self._watcher is not None:
                return self._watcher
            if self._closed or not self.config.watch_enabled:
                return None
            if source is None:
                source = get_log_source(self.config)
            watcher = LogWatcher(
                self,
                source,
                self.config.watch_keywords,
                self.config.watch_trailing_lines,
            )
            self._watcher = watcher
        watcher.start()
        return watcher

    def on_start(self, case: CaseRef) -> None:
        with self._lock:
            if self._closed:
                logger.debug(f"Ignoring start of {case.suite}.{case.name}: report closed")
                return
            self._start_case(case)

    def on_problem(
        self,
        case: CaseRef,
        kind: Optional[ProblemKind],
        error: BaseException,
    ) -> None:
        """Attach ``error`` to ``case``; ``kind`` defaults by exception type."""

        kind = classify_problem(error) if kind is None else ProblemKind(kind)
        message = safe_message(error)
        exception_type = safe_type_name(error)
        trace_text = filter_trace(format_trace(error), self.config.filter_traces, self._trace_filters)

        with self._lock:
            if self._closed:
                logger.debug(f"Ignoring {kind.value} in {case.suite}.{case.name}: report closed")
                return
            if self._writer is None or not self._writer.case_open:
                self._start_case(case)
            self._writer.add_problem(kind, message, exception_type, trace_text)

    def on_failure(self, case: CaseRef, error: BaseException) -> None:
        self.on_problem(case, ProblemKind.FAILURE, error)

    def on_error(self, case: CaseRef, error: BaseException) -> None:
        self.on_problem(case, ProblemKind.ERROR, error)

    def on_end(self, case: CaseRef) -> None:
        with self._lock:
            if self._closed or self._writer is None:
                return
            self._writer.close_case()

    def add_synthetic_error(self, text: str) -> None:
        """Attach crash context from the log watcher to the report.

        The error lands in the case that is running, or in an inferred case
        when none is open.
        """

        with self._lock:
            if self._closed:
                logger.warning("Report already closed; crash context not recorded")
                return
            writer = self._writer_for_orphan()
            writer.add_problem(ProblemKind.ERROR, SYNTHETIC_MESSAGE, SYNTHETIC_TYPE, text)

    def close(self) -> None:
        """Finalize every document. Errors are logged, never raised."""

        error = self._finalize_all()
        if error is not None:
            logger.error(f"Report finalized with errors: {error}")

    def close_throws(self) -> None:
        """Finalize every document, raising the first failure encountered."""

        error = self._finalize_all()
        if error is not None:
            raise ReportError(f"Failed to finalize report: {error}") from error

    def _finalize_all(self) -> Optional[BaseException]:
        with self._lock:
            if self._closed:
                return None
            self._closed = True
            self._tracker.close()
            first_error: Optional[BaseException] = None
            for writer in self._writers:
                error = writer.finalize()
                if error is not None and first_error is None:
                    first_error = error
            self._writer = None
            watcher = self._watcher

        if watcher is not None:
            watcher.stop()
        return first_error

    def _start_case(self, case: CaseRef) -> None:
        transition = self._tracker.transition(case.suite)
        if transition is not None:
            self._enter_suite(transition.current)
        writer = self._writer if self._writer is not None else self._single_writer()
        writer.open_case(case.suite, case.name)

    def _enter_suite(self, suite: str) -> None:
        if self.config.multi_file:
            if self._writer is not None:
                error = self._writer.finalize()
                if error is not None:
                    logger.error(f"Report {self._writer.path} finalized with errors: {error}")
            self._writer = self._open_writer(self._claim_path(self.config.report_path_for(suite)))
        elif self._writer is None:
            self._single_writer()
        self._writer.open_suite(suite)

    def _writer_for_orphan(self) -> ReportWriter:
        if self._writer is not None:
            return self._writer
        if self.config.multi_file:
            self._tracker.transition(UNKNOWN_SUITE)
            self._enter_suite(UNKNOWN_SUITE)
            return self._writer
        return self._single_writer()

    def _single_writer(self) -> ReportWriter:
        if self._writer is None:
            self._writer = self._open_writer(self._claim_path(self.config.report_path_for()))
        return self._writer

    def _open_writer(self, path: Path) -> ReportWriter:
        writer = ReportWriter()
        self._writers.append(writer)
        if writer.open(path):
            logger.debug(f"Streaming test report to {path}")
        return writer

    def _claim_path(self, path: Path) -> Path:
        uses = self._path_uses.get(path, 0) + 1
        self._path_uses[path] = uses
        if uses == 1:
            return path
        return path.with_name(f"{path.stem}-{uses}{path.suffix}")
