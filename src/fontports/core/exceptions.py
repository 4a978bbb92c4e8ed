"""
Custom exception classes for fontports.

Every error carries an ``exit_code`` so the console entry point can map a
failure to a process status without inspecting messages.
"""

from os import PathLike
from typing import Any, Dict, Optional, Union


class FontportsException(Exception):
    """Base exception class for all fontports exceptions."""

    exit_code: int = 1


class FlagsError(FontportsException):
    """
    Raised when the flags document cannot be turned into a payload.

    Keeps the offending path around so callers can report it.
    """

    def __init__(self, path: Union[str, PathLike], reason: str, details: Optional[Dict[str, Any]] = None):
        self.path = str(path)
        self.reason = reason
        self.details = details or {}
        message = f"{reason}: {self.path}"
        if self.details:
            message += f" - {self.details}"
        super().__init__(message)


class FileReadError(FlagsError):
    """Raised when the flags file is missing, unreadable, or I/O fails."""

    exit_code = 66


class ParseError(FlagsError):
    """Raised when the flags file does not contain valid JSON."""

    exit_code = 65


class ComputationUnitError(FontportsException):
    """Raised when a computation unit fails to load, initialize, or run."""

    exit_code = 70


class UnitLoadError(ComputationUnitError):
    """Raised when a unit target cannot be imported or is not usable."""

    pass


class PortNotFoundError(ComputationUnitError):
    """Raised when an instance does not expose the requested output port."""

    def __init__(self, name: str, available: Optional[list] = None):
        self.name = name
        self.available = sorted(available or [])
        super().__init__(f"No output port named {name!r} (available: {self.available})")


class PortClosedError(ComputationUnitError):
    """Raised when a value is sent on a port that already completed."""

    pass


class UnitRegistryError(FontportsException, RuntimeError):
    """Raised on unknown or duplicate unit kinds."""

    exit_code = 78


class ForwarderError(FontportsException):
    """Raised when the output forwarder is attached more than once."""

    exit_code = 70


class RunInterrupted(FontportsException):
    """Raised by the entry point when a run stopped on a termination signal."""

    exit_code = 130
