"""Exception hierarchy for the suggestion engine."""

from __future__ import annotations

__all__ = [
    "ScribemarkError",
    "OffsetOutOfRangeError",
    "DocumentPositionError",
    "AnalysisServiceError",
    "MalformedPayloadError",
]


class ScribemarkError(Exception):
    """Base class for all errors raised by :mod:`scribemark`."""


class OffsetOutOfRangeError(ScribemarkError, IndexError):
    """Raised when an offset or position falls outside the valid mapping range.

    Callers must not apply any document mutation after catching this error.
    """

    def __init__(self, value: int, lower: int, upper: int, *, kind: str = "offset") -> None:
        self.value = value
        self.lower = lower
        self.upper = upper
        self.kind = kind
        super().__init__(f"{kind} {value} outside [{lower}, {upper}]")


class DocumentPositionError(ScribemarkError, ValueError):
    """Raised when a document mutation targets a position outside textblock content."""


class AnalysisServiceError(ScribemarkError):
    """The external analysis service failed (network, status, timeout)."""

    def __init__(self, message: str, *, category: str | None = None) -> None:
        self.category = category
        super().__init__(message)


class MalformedPayloadError(AnalysisServiceError):
    """The analysis service answered with a payload that could not be decoded."""
