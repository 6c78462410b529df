from __future__ import annotations

import logging
import subprocess
import sys
import threading
from typing import Any, Dict, Iterator, List, Optional, Sequence

import psutil

from .base import LogSource


logger = logging.getLogger(__name__)

KILL_GRACE_SECONDS = 1.0


def build_command(command: Sequence[str], components: Sequence[str]) -> List[str]:
    """Return ``command`` with logcat-style filter specs for ``components``.

    Each component is shown at every priority and everything else is
    silenced, so filtering happens in the log tool rather than here.
    """

    full = list(command)
    if components:
        full.extend(f"{component}:V" for component in components)
        full.append("*:S")
    return full


class ProcessLogSource(LogSource):
    """Tail the output of an external log command such as ``logcat``."""

    def __init__(self, command: Sequence[str], components: Sequence[str] = ()) -> None:
        self.command = build_command(command, components)
        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._closed = False

    @property
    def description(self) -> str:
        return " ".join(self.command)

    @property
    def pid(self) -> Optional[int]:
        process = self._process
        return process.pid if process is not None else None

    def lines(self) -> Iterator[str]:
        with self._lock:
            if self._closed:
                return
            popen_kwargs: Dict[str, Any] = {
                "stdout": subprocess.PIPE,
                "stderr": subprocess.DEVNULL,
                "stdin": subprocess.DEVNULL,
                "text": True,
                "errors": "replace",
                "bufsize": 1,
            }
            if sys.platform == "win32":
                if hasattr(subprocess, "CREATE_NEW_PROCESS_GROUP"):
                    popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                popen_kwargs["start_new_session"] = True
            process = subprocess.Popen(self.command, **popen_kwargs)
            self._process = process
            logger.debug(f"Started log command (pid {process.pid}): {self.description}")

        stream = process.stdout
        if stream is None:
            return
        try:
            for line in iter(stream.readline, ""):
                yield line.rstrip("\r\n")
        finally:
            try:
                stream.close()
            except (OSError, ValueError):
                # The stream may already be closed from another thread.
                pass

    def close(self) -> None:
        with self._lock:
            self._closed = True
            process = self._process

        if process is None or process.poll() is not None:
            return

        kill_process_tree(process.pid)
        try:
            process.wait(timeout=KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning(f"Log command (pid {process.pid}) did not exit after termination")


def kill_process_tree(pid: int) -> None:
    """Terminate ``pid`` and its descendants, escalating to kill."""

    try:
        parent = psutil.Process(pid)
        targets = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return
    except psutil.Error as exc:
        logger.warning(f"Unable to inspect process tree of {pid}: {exc}")
        targets = []
    else:
        targets.append(parent)

    if not targets:
        try:
            psutil.Process(pid).terminate()
        except psutil.Error:
            pass
        return

    for proc in targets:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            continue
        except psutil.Error as exc:
            logger.debug(f"terminate({proc.pid}) failed: {exc}")

    _, alive = psutil.wait_procs(targets, timeout=KILL_GRACE_SECONDS)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue
        except psutil.Error as exc:
            logger.warning(f"kill({proc.pid}) failed: {exc}")
