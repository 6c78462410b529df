from __future__ import annotations

import re
import traceback
from typing import Iterable, List, Sequence


# Frames that only add noise to a failure report. Trimmed from the Ant JUnit
# formatter list, with instrumentation and Python runner frames added.
DEFAULT_TRACE_FILTERS = (
    "junit.framework.TestCase",
    "junit.framework.TestResult",
    "junit.framework.TestSuite",
    "junit.framework.Assert.",  # keeps AssertionFailedError itself
    "java.lang.reflect.Method.invoke(",
    "sun.reflect.",
    "org.junit.",
    "junit.framework.JUnit4TestAdapter",
    "android.test.",
    "android.app.Instrumentation",
    "java.lang.reflect.Method.invokeNative",
    "/_pytest/",
    "/pluggy/",
    "/unittest/case.py",
    "/unittest/suite.py",
    "/unittest/mock.py",
)

PYTHON_TRACE_BANNER = "Traceback (most recent call last):"
_PYTHON_FRAME_HEADER = "  File "
_PYTHON_FRAME_BODY = "    "

# "\t... 12 more": frames shared with the enclosing JVM trace.
_ELIDED_FRAMES = re.compile(r"^\s*\.\.\. \d+ more\s*$")


def _is_filtered(line: str, filters: Sequence[str]) -> bool:
    return any(marker in line for marker in filters)


def _filter_python_lines(lines: List[str], filters: Sequence[str]) -> List[str]:
    # A frame is its "  File ..." header plus the indented source and caret
    # lines below it, and is kept or dropped as a unit. Everything else
    # (exception descriptions, chaining notes) is never filtered.
    kept: List[str] = []
    dropping = False
    for line in lines:
        if line.startswith(_PYTHON_FRAME_HEADER):
            dropping = _is_filtered(line, filters)
        elif not line.startswith(_PYTHON_FRAME_BODY):
            dropping = False
        if not dropping:
            kept.append(line)
    return kept


def filter_lines(lines: Iterable[str], filters: Sequence[str] = DEFAULT_TRACE_FILTERS) -> List[str]:
    """Return ``lines`` without denylisted frames.

    The first line heads the trace (the exception description for JVM
    traces, the ``Traceback`` banner for Python ones) and is always kept,
    even when it contains a denylisted substring. In Python tracebacks only
    frames are matched, so the exception description at the end survives.
    JVM ``... N more`` markers are dropped along with the filtered frames.
    """

    lines = list(lines)
    if not lines:
        return []
    head, rest = lines[0], lines[1:]
    if any(line.startswith(PYTHON_TRACE_BANNER) for line in lines):
        return [head] + _filter_python_lines(rest, filters)

    kept = [head]
    for line in rest:
        if _ELIDED_FRAMES.match(line) or _is_filtered(line, filters):
            continue
        kept.append(line)
    return kept


def filter_trace(
    text: str,
    enabled: bool = True,
    filters: Sequence[str] = DEFAULT_TRACE_FILTERS,
) -> str:
    """Return ``text`` with noise frames removed when ``enabled``."""

    if not enabled or not text:
        return text

    trailing_newline = text.endswith("\n")
    kept = filter_lines(text.splitlines(), filters)
    result = "\n".join(kept)
    if trailing_newline:
        result += "\n"
    return result


def format_trace(error: BaseException) -> str:
    """Render ``error`` and its chained causes as traceback text."""

    return "".join(traceback.format_exception(type(error), error, error.__traceback__))
