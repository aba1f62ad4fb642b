"""Structured helpers for representing spans of the plain-text projection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator


@dataclass(slots=True, frozen=True)
class TextRange:
    """Half-open ``[start, end)`` span using absolute character offsets."""

    start: int
    end: int

    def __post_init__(self) -> None:
        start = self._coerce_index(self.start, "start")
        end = self._coerce_index(self.end, "end")
        if end < start:
            start, end = end, start
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @staticmethod
    def _coerce_index(value: Any, label: str) -> int:
        if isinstance(value, bool):
            raise ValueError(f"TextRange {label} must be an integer")
        try:
            number = int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"TextRange {label} must be an integer") from exc
        if number < 0:
            raise ValueError(f"TextRange {label} must not be negative")
        return number

    def __iter__(self) -> Iterator[int]:
        yield self.start
        yield self.end

    def overlaps(self, other: TextRange | tuple[int, int]) -> bool:
        """Return ``True`` when both ranges share at least one character."""

        start, end = other
        return self.start < end and start < self.end

    def distance_to(self, offset: int) -> int:
        """Return how far ``offset`` sits from the range start."""

        return abs(self.start - offset)

    def shift(self, delta: int) -> TextRange:
        return TextRange(self.start + delta, self.end + delta)

    def to_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)


__all__ = ["TextRange"]
