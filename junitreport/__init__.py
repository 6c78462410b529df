"""Streaming JUnit XML reports that survive a crashing test process."""
from __future__ import annotations

from typing import Optional

from .configuration import ReportConfig
from .errors import ConfigurationError, ReportError
from .sink import ReportSink, classify_problem
from .suites import CaseRef
from .writer import ProblemKind, ReportWriter


__version__ = "1.0.0"


def start(config: Optional[ReportConfig] = None) -> ReportSink:
    """Create the report sink for a run and start its crash watcher.

    The watcher only runs when ``config`` names watch keywords. Call
    :meth:`ReportSink.close` when the run finishes.
    """

    sink = ReportSink(config)
    sink.start_watcher()
    return sink


__all__ = [
    "CaseRef",
    "ConfigurationError",
    "ProblemKind",
    "ReportConfig",
    "ReportError",
    "ReportSink",
    "ReportWriter",
    "classify_problem",
    "start",
]
