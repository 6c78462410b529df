"""pytest integration: stream results into a junitreport sink.

Enable with ``--junitreport-file`` / ``--junitreport-dir`` or the
``JUNITREPORT_FILE`` / ``JUNITREPORT_DIR`` environment variables.
"""
from __future__ import annotations

import os
import shlex
from typing import Optional

import pytest

from . import start
from .configuration import ReportConfig
from .sink import ReportSink
from .suites import CaseRef
from .writer import ProblemKind


SINK_KEY = pytest.StashKey[ReportSink]()


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("junitreport", "streaming JUnit XML report")
    group.addoption(
        "--junitreport-file",
        dest="junitreport_file",
        default=None,
        help="Write a streaming JUnit XML report to this path "
        "(in multi-file mode, $(suite) is replaced by the suite name).",
    )
    group.addoption(
        "--junitreport-dir",
        dest="junitreport_dir",
        default=None,
        help="Directory that relative report paths are resolved against.",
    )
    group.addoption(
        "--junitreport-multi-file",
        dest="junitreport_multi_file",
        action="store_true",
        default=None,
        help="Write one report file per suite.",
    )
    group.addoption(
        "--junitreport-no-filter-traces",
        dest="junitreport_filter_traces",
        action="store_false",
        default=None,
        help="Keep framework frames in reported stack traces.",
    )
    group.addoption(
        "--junitreport-watch-keyword",
        dest="junitreport_watch_keywords",
        action="append",
        default=[],
        help="Finalize the report as soon as this keyword appears in the "
        "system log (case-insensitive, repeatable).",
    )
    group.addoption(
        "--junitreport-watch-component",
        dest="junitreport_watch_components",
        action="append",
        default=[],
        help="Log tag to watch (repeatable).",
    )
    group.addoption(
        "--junitreport-watch-lines",
        dest="junitreport_watch_lines",
        type=int,
        default=None,
        help="Number of log lines captured after a crash signature.",
    )
    group.addoption(
        "--junitreport-watch-command",
        dest="junitreport_watch_command",
        default=None,
        help="Log command to tail (default: logcat -v brief).",
    )


def build_config(option: object, environ: Optional[dict] = None) -> Optional[ReportConfig]:
    """Merge command line options over ``JUNITREPORT_*`` environment settings.

    Returns None when no report location was requested.
    """

    base = ReportConfig.from_environment(os.environ if environ is None else environ)
    report_file = getattr(option, "junitreport_file", None) or base.report_file
    report_dir = getattr(option, "junitreport_dir", None) or base.report_dir
    if not report_file and not report_dir:
        return None

    multi_file = getattr(option, "junitreport_multi_file", None)
    filter_traces = getattr(option, "junitreport_filter_traces", None)
    keywords = tuple(getattr(option, "junitreport_watch_keywords", None) or ()) or base.watch_keywords
    components = tuple(getattr(option, "junitreport_watch_components", None) or ()) or base.watch_components
    lines = getattr(option, "junitreport_watch_lines", None)
    command = getattr(option, "junitreport_watch_command", None)

    return ReportConfig(
        report_file=report_file,
        report_dir=report_dir,
        multi_file=base.multi_file if multi_file is None else multi_file,
        filter_traces=base.filter_traces if filter_traces is None else filter_traces,
        watch_keywords=keywords,
        watch_components=components,
        watch_trailing_lines=base.watch_trailing_lines if lines is None else lines,
        watch_command=tuple(shlex.split(command)) if command else base.watch_command,
    )


def problem_kind(error: BaseException) -> Optional[ProblemKind]:
    """Report ``pytest.fail()`` as a failure; other errors classify by type."""

    if isinstance(error, pytest.fail.Exception):
        return ProblemKind.FAILURE
    return None


def case_ref_from_nodeid(nodeid: str) -> CaseRef:
    """Map a pytest node id to a suite/case pair.

    ``tests/unit/test_io.py::TestRead::test_eof[gz]`` becomes suite
    ``tests.unit.test_io.TestRead`` and case ``test_eof[gz]``.
    """

    parts = nodeid.split("::")
    path = parts[0]
    if path.endswith(".py"):
        path = path[: -len(".py")]
    module = path.replace("\\", "/").strip("/").replace("/", ".")

    if len(parts) == 1:
        return CaseRef(suite=module, name=module)
    suite = ".".join([module, *parts[1:-1]]) if module else ".".join(parts[1:-1])
    return CaseRef(suite=suite or parts[-1], name=parts[-1])


@pytest.hookimpl(trylast=True)
def pytest_configure(config: pytest.Config) -> None:
    if hasattr(config, "workerinput"):
        # xdist workers would race for the same file.
        return
    report_config = build_config(config.option)
    if report_config is None:
        return
    config.stash[SINK_KEY] = start(report_config)


def _sink(config: pytest.Config) -> Optional[ReportSink]:
    return config.stash.get(SINK_KEY, None)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_protocol(item: pytest.Item, nextitem: Optional[pytest.Item]):
    sink = _sink(item.config)
    case = case_ref_from_nodeid(item.nodeid)
    if sink is not None:
        sink.on_start(case)
    yield
    if sink is not None:
        sink.on_end(case)


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo):
    outcome = yield
    sink = _sink(item.config)
    if sink is None:
        return
    report = outcome.get_result()
    if not report.failed or call.excinfo is None:
        return
    error = call.excinfo.value
    sink.on_problem(case_ref_from_nodeid(item.nodeid), problem_kind(error), error)


def pytest_unconfigure(config: pytest.Config) -> None:
    sink = config.stash.get(SINK_KEY, None)
    if sink is None:
        return
    sink.close()
    del config.stash[SINK_KEY]


def pytest_terminal_summary(terminalreporter, exitstatus: int, config: pytest.Config) -> None:
    sink = _sink(config)
    if sink is None:
        return
    for path in sink.report_paths:
        terminalreporter.write_sep("-", f"junitreport: {path}")
