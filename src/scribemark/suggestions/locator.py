"""Whitespace-tolerant lookup of service-quoted fragments in the projection."""

from __future__ import annotations

import logging
import re
from typing import Iterable

from ..core.ranges import TextRange

LOGGER = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

__all__ = ["build_pattern", "closest_occurrence", "find_occurrences", "matches_exactly"]


def build_pattern(needle: str) -> re.Pattern[str] | None:
    """Compile ``needle`` into a literal matcher where whitespace runs match ``\\s+``.

    Returns ``None`` for empty (or whitespace-only) needles.
    """

    stripped = needle.strip()
    if not stripped:
        return None
    literal = r"\s+".join(re.escape(chunk) for chunk in _WHITESPACE.split(stripped))
    return re.compile(literal)


def find_occurrences(haystack: str, needle: str) -> list[TextRange]:
    """Return every non-overlapping match of ``needle`` in ``haystack``, left to right."""

    if not needle:
        return []
    try:
        pattern = build_pattern(needle)
    except (re.error, TypeError, ValueError, OverflowError) as exc:
        LOGGER.warning("Could not build matcher for fragment %r: %s", needle[:80], exc)
        return []
    if pattern is None:
        return []
    return [TextRange(match.start(), match.end()) for match in pattern.finditer(haystack)]


def closest_occurrence(occurrences: Iterable[TextRange], anchor: int) -> TextRange | None:
    """Pick the occurrence whose start is nearest to ``anchor`` (earliest wins ties)."""

    best: TextRange | None = None
    for occurrence in occurrences:
        if best is None or occurrence.distance_to(anchor) < best.distance_to(anchor):
            best = occurrence
    return best


def matches_exactly(text: str, needle: str) -> bool:
    """Return ``True`` when ``text`` as a whole equals ``needle`` modulo whitespace."""

    occurrences = find_occurrences(text, needle)
    return any(occurrence.start == 0 and occurrence.end == len(text) for occurrence in occurrences)
