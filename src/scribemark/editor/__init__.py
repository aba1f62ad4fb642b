"""In-memory structured document and offset mapping."""

from .document_model import (
    BLOCK_SEPARATOR,
    BlockNode,
    DocumentChange,
    DocumentChangeEvent,
    Mark,
    StructuredDocument,
    TextRun,
)
from .position_mapper import DocumentAddress, PositionMapper

__all__ = [
    "BLOCK_SEPARATOR",
    "BlockNode",
    "DocumentAddress",
    "DocumentChange",
    "DocumentChangeEvent",
    "Mark",
    "PositionMapper",
    "StructuredDocument",
    "TextRun",
]
