"""Selection of the span of the projection that is sent for analysis."""

from __future__ import annotations

import dataclasses
import logging
import re
from dataclasses import dataclass

from .cache import compute_fingerprint

LOGGER = logging.getLogger(__name__)

# Sentence end (with optional closing quote or bracket) or a blank line.
_BOUNDARY = re.compile(r"[.!?][\"')\]”’]*\s+|\n\s*\n")
_PARAGRAPH_BREAK = "\n\n"

__all__ = [
    "AnalysisWindow",
    "WindowConfig",
    "extract_window",
    "has_substance",
    "paragraph_window",
    "whole_document_window",
]


@dataclass(slots=True, frozen=True)
class WindowConfig:
    """Sizing rules for analysis windows.

    Attributes:
        max_window_chars: Hard cap on a caret-local window.
        fallback_radius: Radius used on a side where no boundary was found.
        edge_margin: A caret this close to either end widens the window to it.
        min_window_chars: Windows with less text are not worth a request.
        min_window_words: Windows with fewer words are not worth a request.
        max_document_chars: Cap for whole-document categories.
    """

    max_window_chars: int = 1200
    fallback_radius: int = 400
    edge_margin: int = 300
    min_window_chars: int = 12
    min_window_words: int = 3
    max_document_chars: int = 8000


@dataclass(slots=True, frozen=True)
class AnalysisWindow:
    """A fingerprinted ``[start, end)`` span of one projection snapshot."""

    start: int
    end: int
    text: str
    caret: int
    fingerprint: str

    @classmethod
    def create(cls, source: str, start: int, end: int, caret: int) -> AnalysisWindow:
        text = source[start:end]
        return cls(start, end, text, max(start, min(caret, end)), compute_fingerprint(text))

    @property
    def length(self) -> int:
        return self.end - self.start

    def relocate(self, current: str) -> AnalysisWindow | None:
        """Find this window's text in ``current``, or ``None`` when it is gone.

        The original offsets are tried first; otherwise the text must occur
        exactly once so results are not projected onto the wrong copy.
        """

        if current[self.start : self.end] == self.text:
            return self
        if not self.text:
            return None
        index = current.find(self.text)
        if index < 0 or current.find(self.text, index + 1) >= 0:
            return None
        shift = index - self.start
        return dataclasses.replace(self, start=index, end=index + len(self.text), caret=self.caret + shift)


def has_substance(text: str, min_chars: int, min_words: int) -> bool:
    """Return ``True`` when ``text`` carries enough content to analyse."""

    stripped = text.strip()
    return len(stripped) >= min_chars and len(stripped.split()) >= min_words


def extract_window(text: str, caret: int, config: WindowConfig | None = None) -> AnalysisWindow:
    """Return the window around ``caret`` (a projection offset)."""

    config = config or WindowConfig()
    length = len(text)
    caret = max(0, min(caret, length))
    limit = config.max_window_chars
    if length <= limit:
        return AnalysisWindow.create(text, 0, length, caret)

    half = limit // 2
    if caret <= config.edge_margin:
        start = 0
    else:
        start = _boundary_before(text, caret, half, config.fallback_radius)
    if caret >= length - config.edge_margin:
        end = length
    else:
        end = _boundary_after(text, caret, half, config.fallback_radius)

    if end - start > limit:
        if start == 0:
            end = limit
        else:
            start = end - limit
    return AnalysisWindow.create(text, start, end, caret)


def whole_document_window(text: str, caret: int, config: WindowConfig | None = None) -> AnalysisWindow:
    """Return the whole projection, or a caret-local window of document size if too long."""

    config = config or WindowConfig()
    if len(text) <= config.max_document_chars:
        return AnalysisWindow.create(text, 0, len(text), caret)
    LOGGER.debug("Document exceeds %d chars; analysing a local window", config.max_document_chars)
    wide = dataclasses.replace(
        config,
        max_window_chars=config.max_document_chars,
        fallback_radius=config.max_document_chars // 2,
    )
    return extract_window(text, caret, wide)


def paragraph_window(text: str, caret: int, config: WindowConfig | None = None) -> AnalysisWindow:
    """Return the textblock holding ``caret``.

    A caret inside a block separator belongs to the block before it. Blocks
    longer than ``max_document_chars`` fall back to a caret-local window.
    """

    config = config or WindowConfig()
    caret = max(0, min(caret, len(text)))
    start = 0
    for piece in text.split(_PARAGRAPH_BREAK):
        end = start + len(piece)
        if caret <= end + 1:
            break
        start = end + len(_PARAGRAPH_BREAK)
    if end - start > config.max_document_chars:
        return extract_window(text, caret, config)
    return AnalysisWindow.create(text, start, end, caret)


def _boundary_before(text: str, caret: int, reach: int, fallback: int) -> int:
    lower = max(0, caret - reach)
    last = None
    for match in _BOUNDARY.finditer(text, lower, caret):
        # A boundary right at the caret would leave nothing before it.
        if match.end() < caret:
            last = match
    if last is not None:
        return last.end()
    return max(0, caret - fallback)


def _boundary_after(text: str, caret: int, reach: int, fallback: int) -> int:
    upper = min(len(text), caret + reach)
    match = _BOUNDARY.search(text, caret, upper)
    if match is not None:
        return match.start() + len(match.group().rstrip())
    return min(len(text), caret + fallback)
