from __future__ import annotations

import os
from typing import Mapping, Optional, Tuple


def env_flag(name: str, environ: Optional[Mapping[str, str]] = None) -> Optional[bool]:
    """Return the truthiness of an environment variable, or None if unset."""

    source = os.environ if environ is None else environ
    value = source.get(name)
    if value is None:
        return None

    normalized = value.strip().lower()
    if not normalized:
        return False

    return normalized not in {"0", "false", "no", "off"}


def parse_boolean(value: Optional[str], default: bool) -> bool:
    """Parse a runner argument: only a case-insensitive ``true`` is true."""

    if value is None:
        return default
    return value.strip().lower() == "true"


def split_list(value: Optional[str]) -> Tuple[str, ...]:
    """Split a comma separated argument, dropping blank entries."""

    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def safe_type_name(error: BaseException) -> str:
    """Return the qualified class name of ``error``."""

    cls = type(error)
    module = cls.__module__
    if module in (None, "builtins"):
        return cls.__qualname__
    return f"{module}.{cls.__qualname__}"


def safe_message(error: BaseException) -> str:
    """Return a message for ``error`` that is never empty.

    Exceptions raised without a message yield ``"<type>: <null>"``.
    """

    try:
        message = str(error)
    except Exception:
        message = ""
    if not message:
        return f"{safe_type_name(error)}: <null>"
    return message
