from __future__ import annotations


class ReportError(Exception):
    """Raised when a report could not be finalized cleanly."""


class ConfigurationError(ValueError):
    """Raised for invalid report or watcher settings."""
