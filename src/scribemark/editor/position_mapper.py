"""Translate plain-text projection offsets into structured document positions."""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass

from ..errors import OffsetOutOfRangeError
from .document_model import BLOCK_SEPARATOR, StructuredDocument

LOGGER = logging.getLogger(__name__)

_SEPARATOR_LENGTH = len(BLOCK_SEPARATOR)

__all__ = ["DocumentAddress", "PositionMapper"]


@dataclass(slots=True, frozen=True)
class DocumentAddress:
    """A location inside the document tree.

    Attributes:
        pos: Absolute document position (ProseMirror addressing).
        block_index: Index of the textblock in document order.
        block_offset: Character offset inside that textblock.
        boundary: ``True`` when ``pos`` sits between two textblocks
            (the slot right after ``block_index``'s closing token).
    """

    pos: int
    block_index: int
    block_offset: int
    boundary: bool = False


@dataclass(slots=True, frozen=True)
class _BlockSpan:
    content_start: int
    length: int
    plain_start: int

    @property
    def content_end(self) -> int:
        return self.content_start + self.length

    @property
    def plain_end(self) -> int:
        return self.plain_start + self.length


class PositionMapper:
    """Bidirectional mapping between the projection and document positions.

    The mapper is bound to the document snapshot it was built from; build a
    fresh one after every mutation (``is_current`` reports staleness).

    Offset correction: the opening token of every enclosing node takes one
    slot, so plain offset 0 of a document whose first block is a top-level
    paragraph maps to position 1. Each textblock records its own content start,
    which already includes the slots of any enclosing list or blockquote.

    Separator characters map onto the boundary between textblocks: the first
    character onto the end of the previous block's content, the second onto
    the slot after that block's closing token, and the character after the
    separator onto the next block's content start.
    """

    def __init__(self, document: StructuredDocument) -> None:
        self._document = document
        self._version = document.version
        self._content_size = document.content_size
        spans: list[_BlockSpan] = []
        pieces: list[str] = []
        plain = 0
        for index, entry in enumerate(document.textblocks()):
            if index:
                plain += _SEPARATOR_LENGTH
            text = entry.block.text
            spans.append(_BlockSpan(entry.content_start, len(text), plain))
            pieces.append(text)
            plain += len(text)
        self._spans = spans
        self._plain_starts = [span.plain_start for span in spans]
        self._content_starts = [span.content_start for span in spans]
        self._text = BLOCK_SEPARATOR.join(pieces)

    @property
    def text(self) -> str:
        """The plain-text projection of the snapshot."""

        return self._text

    @property
    def length(self) -> int:
        return len(self._text)

    @property
    def version(self) -> int:
        return self._version

    def is_current(self) -> bool:
        return self._document.version == self._version

    # ------------------------------------------------------------------
    # Plain -> document
    # ------------------------------------------------------------------
    def to_document_position(self, offset: int) -> DocumentAddress:
        if not self._spans:
            if offset != 0:
                raise OffsetOutOfRangeError(offset, 0, 0)
            return DocumentAddress(0, 0, 0)
        if offset < 0 or offset > len(self._text):
            raise OffsetOutOfRangeError(offset, 0, len(self._text))
        index = bisect.bisect_right(self._plain_starts, offset) - 1
        span = self._spans[index]
        inside = offset - span.plain_start
        if inside <= span.length:
            return DocumentAddress(span.content_start + inside, index, inside)
        # offset == plain_end + 1: second separator character.
        return DocumentAddress(span.content_end + 1, index, span.length, boundary=True)

    def to_document_range(self, start: int, end: int) -> tuple[int, int]:
        return self.to_document_position(start).pos, self.to_document_position(end).pos

    # ------------------------------------------------------------------
    # Document -> plain
    # ------------------------------------------------------------------
    def to_plain_offset(self, address: DocumentAddress | int) -> int:
        pos = address.pos if isinstance(address, DocumentAddress) else int(address)
        if pos < 0 or pos > self._content_size:
            raise OffsetOutOfRangeError(pos, 0, self._content_size, kind="position")
        if not self._spans:
            return 0
        index = bisect.bisect_right(self._content_starts, pos) - 1
        if index < 0:
            # Opening tokens before the first textblock.
            return 0
        span = self._spans[index]
        if pos <= span.content_end:
            return span.plain_start + (pos - span.content_start)
        if index + 1 < len(self._spans):
            # Structural slots between two textblocks.
            return span.plain_end + 1
        return len(self._text)

    def to_plain_range(self, from_pos: int, to_pos: int) -> tuple[int, int]:
        return self.to_plain_offset(from_pos), self.to_plain_offset(to_pos)
