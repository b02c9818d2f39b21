"""
Exception hierarchy for tikstat.

Startup errors (ConnectError, DeclareError) are fatal for one device only.
CollectError is fatal for one poll tick only. ConfigParseError is fatal for
the whole process.
"""

from __future__ import annotations

from typing import Optional


class TikstatError(Exception):
    """Base class for all tikstat errors."""


class ConfigParseError(TikstatError):
    """A configuration file is malformed or carries unknown keys."""

    def __init__(self, message: str, path: Optional[str] = None):
        if path:
            message = f"{path}: {message}"
        super().__init__(message)
        self.path = path


class ConnectError(TikstatError):
    """Device unreachable, TLS failure or rejected credentials."""


class DeclareError(TikstatError):
    """A metric family could not be registered with the sink."""


class CollectError(TikstatError):
    """A collector failed during a poll tick."""


class CommandError(CollectError):
    """The device answered a command with an error or an unreadable payload."""


class CollectTimeout(CollectError):
    """The poll tick ran past its scrape deadline."""
