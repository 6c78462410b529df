from __future__ import annotations

import contextlib
import logging
import os
import re
import threading
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, TextIO, Union
from xml.sax.saxutils import XMLGenerator
from xml.sax.xmlreader import AttributesImpl


logger = logging.getLogger(__name__)

ENCODING_UTF_8 = "utf-8"
PROLOG = "<?xml version='1.0' encoding='utf-8' standalone='yes'?>"

TAG_SUITES = "testsuites"
TAG_SUITE = "testsuite"
TAG_CASE = "testcase"
ATTRIBUTE_NAME = "name"
ATTRIBUTE_CLASS = "classname"
ATTRIBUTE_TYPE = "type"
ATTRIBUTE_MESSAGE = "message"

UNKNOWN_SUITE = "unknown"
INFERRED_CASE = "unknown"

# Characters that may not appear anywhere in an XML 1.0 document.
_INVALID_XML_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


class ProblemKind(str, Enum):
    """Element used for a problem attached to a case."""

    FAILURE = "failure"
    ERROR = "error"


def _clean(value: str) -> str:
    return _INVALID_XML_CHARS.sub("", value)


class ReportWriter:
    """Stream one XML report document to disk.

    Every operation is flushed immediately, so the file holds everything
    reported so far even if the process dies. The writer tracks its own open
    elements and closes whatever is still open in :meth:`finalize`, which
    keeps the document balanced no matter how calls are paired. Failures are
    logged and absorbed: a writer that cannot open or write its file becomes
    inert instead of raising into the caller.
    """

    def __init__(self) -> None:
        self.path: Optional[Path] = None
        self._lock = threading.Lock()
        self._handle: Optional[TextIO] = None
        self._xml: Optional[XMLGenerator] = None
        self._stack: List[str] = []
        self._has_children: List[bool] = []
        self._suite: Optional[str] = None
        self._inert = False
        self._finalized = False

    @property
    def is_open(self) -> bool:
        return self._handle is not None and not self._inert and not self._finalized

    @property
    def inert(self) -> bool:
        return self._inert

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def case_open(self) -> bool:
        return TAG_CASE in self._stack

    def open(self, path: Union[str, os.PathLike]) -> bool:
        """Create or truncate ``path`` and start the document."""

        with self._lock:
            if self._handle is not None or self._inert or self._finalized:
                return False

            self.path = Path(path)
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                handle = self.path.open("w", encoding=ENCODING_UTF_8, newline="\n")
            except OSError as exc:
                logger.error(f"Unable to open report file {self.path}: {exc}")
                self._inert = True
                return False

            self._handle = handle
            self._xml = XMLGenerator(handle, encoding=ENCODING_UTF_8, short_empty_elements=False)
            with self._emitting("start document"):
                handle.write(PROLOG)
                self._start(TAG_SUITES, {})
            return not self._inert

    def open_suite(self, name: str) -> None:
        with self._lock:
            if not self.is_open:
                return
            with self._emitting(f"open suite {name}"):
                self._open_suite(name)

    def open_case(self, suite_name: str, case_name: str) -> None:
        with self._lock:
            if not self.is_open:
                return
            with self._emitting(f"open case {suite_name}.{case_name}"):
                self._close_case()
                if self._suite is None:
                    self._open_suite(UNKNOWN_SUITE)
                self._start(TAG_CASE, {ATTRIBUTE_CLASS: suite_name, ATTRIBUTE_NAME: case_name})

    def add_problem(
        self,
        kind: ProblemKind,
        message: str,
        exception_type: str,
        trace_text: str,
    ) -> None:
        """Attach a failure or error element to the open case.

        With no case open an inferred one is started first, so problems
        reported out of band (e.g. from the log watcher) still land inside a
        valid ``testcase`` element.
        """

        tag = ProblemKind(kind).value
        with self._lock:
            if not self.is_open:
                return
            with self._emitting(f"add {tag}"):
                if not self.case_open:
                    if self._suite is None:
                        self._open_suite(UNKNOWN_SUITE)
                    self._start(
                        TAG_CASE,
                        {ATTRIBUTE_CLASS: self._suite or UNKNOWN_SUITE, ATTRIBUTE_NAME: INFERRED_CASE},
                    )
                self._start(tag, {ATTRIBUTE_MESSAGE: message, ATTRIBUTE_TYPE: exception_type})
                if trace_text:
                    self._xml.characters(_clean(trace_text))
                self._end()

    def close_case(self) -> None:
        with self._lock:
            if not self.is_open:
                return
            with self._emitting("close case"):
                self._close_case()

    def finalize(self) -> Optional[BaseException]:
        """Close everything that is open, then the file.

        Safe to call repeatedly. Each step runs even when an earlier one
        failed; failures are logged and the first one is returned.
        """

        with self._lock:
            if self._finalized:
                return None
            self._finalized = True

            first_error: Optional[BaseException] = None
            if self._xml is not None and not self._inert:
                steps = (
                    ("close case", self._close_case),
                    ("close suite", self._close_suite),
                    ("close document", self._close_document),
                )
                for description, step in steps:
                    try:
                        step()
                    except Exception as exc:
                        logger.error(f"Failed to {description} in report {self.path}: {exc}")
                        if first_error is None:
                            first_error = exc

            if self._handle is not None:
                try:
                    self._handle.close()
                except OSError as exc:
                    logger.error(f"Failed to close report file {self.path}: {exc}")
                    if first_error is None:
                        first_error = exc
                self._handle = None
            self._xml = None
            return first_error

    @contextlib.contextmanager
    def _emitting(self, description: str) -> Iterator[None]:
        try:
            yield
            if self._handle is not None:
                self._handle.flush()
        except (OSError, ValueError) as exc:
            logger.error(f"Failed to {description} in report {self.path}: {exc}")
            self._inert = True

    def _open_suite(self, name: str) -> None:
        if self._suite == name:
            return
        self._close_case()
        self._close_suite()
        self._start(TAG_SUITE, {ATTRIBUTE_NAME: name})
        self._suite = name

    def _close_case(self) -> None:
        if TAG_CASE not in self._stack:
            return
        while self._stack:
            if self._end() == TAG_CASE:
                break

    def _close_suite(self) -> None:
        self._close_case()
        if TAG_SUITE in self._stack:
            while self._stack:
                if self._end() == TAG_SUITE:
                    break
        self._suite = None

    def _close_document(self) -> None:
        while self._stack:
            self._end()
        self._xml.ignorableWhitespace("\n")
        self._xml.endDocument()

    def _start(self, tag: str, attributes: Dict[str, str]) -> None:
        self._xml.ignorableWhitespace("\n" + "  " * len(self._stack))
        cleaned = {key: _clean(value) for key, value in attributes.items()}
        self._xml.startElement(tag, AttributesImpl(cleaned))
        if self._has_children:
            self._has_children[-1] = True
        self._stack.append(tag)
        self._has_children.append(False)

    def _end(self) -> str:
        tag = self._stack.pop()
        if self._has_children.pop():
            self._xml.ignorableWhitespace("\n" + "  " * len(self._stack))
        self._xml.endElement(tag)
        return tag
