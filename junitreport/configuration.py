from __future__ import annotations

import logging
import os
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from .errors import ConfigurationError
from .utils import env_flag, parse_boolean, split_list


logger = logging.getLogger(__name__)

SUITE_PLACEHOLDER = "$(suite)"

DEFAULT_SINGLE_REPORT_FILE = "junit-report.xml"
DEFAULT_MULTI_REPORT_FILE = f"junit-report-{SUITE_PLACEHOLDER}.xml"
DEFAULT_WATCH_COMPONENTS = ("DEBUG",)
DEFAULT_WATCH_TRAILING_LINES = 10
DEFAULT_WATCH_COMMAND = ("logcat", "-v", "brief")

# Runner argument names, as passed by the instrumentation command line.
ARG_REPORT_FILE = "reportFile"
ARG_REPORT_FILE_PATH = "reportFilePath"
ARG_REPORT_DIR = "reportDir"
ARG_MULTI_FILE = "multiFile"
ARG_FILTER_TRACES = "filterTraces"
ARG_WATCH_KEYWORDS = "logcatKeywords"
ARG_WATCH_COMPONENTS = "logcatComponents"
ARG_WATCH_LINES = "logcatLines"
ARG_WATCH_COMMAND = "logcatCommand"

ENV_PREFIX = "JUNITREPORT_"

_UNSAFE_SUITE_CHARS = re.compile(r"[\\/]")


@dataclass(frozen=True)
class ReportConfig:
    """Resolved settings for one report run."""

    report_file: Optional[str] = None
    report_dir: Optional[str] = None
    multi_file: bool = False
    filter_traces: bool = True
    watch_keywords: Tuple[str, ...] = ()
    watch_components: Tuple[str, ...] = DEFAULT_WATCH_COMPONENTS
    watch_trailing_lines: int = DEFAULT_WATCH_TRAILING_LINES
    watch_command: Tuple[str, ...] = DEFAULT_WATCH_COMMAND

    def __post_init__(self) -> None:
        if isinstance(self.watch_trailing_lines, bool) or not isinstance(self.watch_trailing_lines, int):
            raise ConfigurationError(
                f"watch_trailing_lines must be an integer, got {self.watch_trailing_lines!r}"
            )
        if self.watch_trailing_lines < 1:
            raise ConfigurationError(
                f"watch_trailing_lines must be positive, got {self.watch_trailing_lines}"
            )
        if not self.watch_command:
            raise ConfigurationError("watch_command must not be empty")
        keywords = tuple(k.strip().lower() for k in self.watch_keywords if k and k.strip())
        object.__setattr__(self, "watch_keywords", keywords)
        object.__setattr__(self, "watch_components", tuple(self.watch_components))
        object.__setattr__(self, "watch_command", tuple(self.watch_command))

    @property
    def watch_enabled(self) -> bool:
        return bool(self.watch_keywords)

    @property
    def report_pattern(self) -> str:
        """Return the configured report file, or the mode's default."""

        if self.report_file:
            return self.report_file
        return DEFAULT_MULTI_REPORT_FILE if self.multi_file else DEFAULT_SINGLE_REPORT_FILE

    def report_path_for(self, suite: Optional[str] = None) -> Path:
        """Return the report path, substituting ``suite`` in multi-file mode."""

        pattern = self.report_pattern
        if self.multi_file and suite is not None:
            safe_suite = _UNSAFE_SUITE_CHARS.sub("_", suite)
            if SUITE_PLACEHOLDER in pattern:
                pattern = pattern.replace(SUITE_PLACEHOLDER, safe_suite)
            else:
                candidate = Path(pattern)
                pattern = str(candidate.with_name(f"{candidate.stem}-{safe_suite}{candidate.suffix}"))

        path = Path(pattern)
        if self.report_dir and not path.is_absolute():
            path = Path(self.report_dir) / path
        return path

    @classmethod
    def from_arguments(cls, arguments: Optional[Mapping[str, str]]) -> "ReportConfig":
        """Build a configuration from a runner's string argument bundle."""

        if not arguments:
            return cls()

        values: Dict[str, object] = {
            "report_file": arguments.get(ARG_REPORT_FILE) or arguments.get(ARG_REPORT_FILE_PATH) or None,
            "report_dir": arguments.get(ARG_REPORT_DIR) or None,
            "multi_file": parse_boolean(arguments.get(ARG_MULTI_FILE), False),
            "filter_traces": parse_boolean(arguments.get(ARG_FILTER_TRACES), True),
            "watch_keywords": split_list(arguments.get(ARG_WATCH_KEYWORDS)),
        }

        components = split_list(arguments.get(ARG_WATCH_COMPONENTS))
        if components:
            values["watch_components"] = components

        command = _parse_command(arguments.get(ARG_WATCH_COMMAND), ARG_WATCH_COMMAND)
        if command:
            values["watch_command"] = command

        values["watch_trailing_lines"] = _parse_line_budget(arguments.get(ARG_WATCH_LINES), ARG_WATCH_LINES)
        return cls(**values)  # type: ignore[arg-type]

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> "ReportConfig":
        """Build a configuration from ``JUNITREPORT_*`` environment variables."""

        source = os.environ if environ is None else environ

        def lookup(name: str) -> Optional[str]:
            return source.get(f"{ENV_PREFIX}{name}")

        values: Dict[str, object] = {
            "report_file": lookup("FILE") or None,
            "report_dir": lookup("DIR") or None,
            "watch_keywords": split_list(lookup("WATCH_KEYWORDS")),
        }

        multi_file = env_flag(f"{ENV_PREFIX}MULTI_FILE", source)
        if multi_file is not None:
            values["multi_file"] = multi_file
        filter_traces = env_flag(f"{ENV_PREFIX}FILTER_TRACES", source)
        if filter_traces is not None:
            values["filter_traces"] = filter_traces

        components = split_list(lookup("WATCH_COMPONENTS"))
        if components:
            values["watch_components"] = components

        command = _parse_command(lookup("WATCH_COMMAND"), f"{ENV_PREFIX}WATCH_COMMAND")
        if command:
            values["watch_command"] = command

        values["watch_trailing_lines"] = _parse_line_budget(lookup("WATCH_LINES"), f"{ENV_PREFIX}WATCH_LINES")
        return cls(**values)  # type: ignore[arg-type]


def _parse_line_budget(value: Optional[str], name: str) -> int:
    if value is None or not value.strip():
        return DEFAULT_WATCH_TRAILING_LINES
    try:
        parsed = int(value.strip())
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={value!r}; using {DEFAULT_WATCH_TRAILING_LINES}")
        return DEFAULT_WATCH_TRAILING_LINES
    if parsed < 1:
        logger.warning(f"Ignoring non-positive {name}={parsed}; using {DEFAULT_WATCH_TRAILING_LINES}")
        return DEFAULT_WATCH_TRAILING_LINES
    return parsed


def _parse_command(value: Optional[str], name: str) -> Tuple[str, ...]:
    if not value:
        return ()
    try:
        return tuple(shlex.split(value))
    except ValueError as exc:
        logger.warning(f"Ignoring malformed {name}={value!r}: {exc}")
        return ()
