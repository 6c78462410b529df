"""Log sources tailed by the crash watcher."""
from __future__ import annotations

import logging
import shutil
from typing import TYPE_CHECKING

from .base import IterableLogSource, LogSource, NullLogSource
from .process import ProcessLogSource

if TYPE_CHECKING:
    from ..configuration import ReportConfig


logger = logging.getLogger(__name__)


def get_log_source(config: "ReportConfig") -> LogSource:
    """Return the log source described by ``config``."""

    executable = config.watch_command[0]
    if shutil.which(executable) is None:
        logger.warning(f"Log command {executable!r} not found; crash watching disabled")
        return NullLogSource()

    return ProcessLogSource(config.watch_command, config.watch_components)


__all__ = [
    "IterableLogSource",
    "LogSource",
    "NullLogSource",
    "ProcessLogSource",
    "get_log_source",
]
