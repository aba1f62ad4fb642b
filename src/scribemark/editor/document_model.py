"""Structured document tree acting as the editing surface for suggestion overlays.

The model mirrors the Tiptap/ProseMirror document JSON: textblocks
(``paragraph``, ``heading``, ``codeBlock``) hold text runs, containers
(``bulletList``, ``orderedList``, ``listItem``, ``blockquote``) hold blocks.
Positions follow ProseMirror addressing: the opening and closing token of
every node occupy one slot each and every character occupies one slot, so
the first character of a top-level paragraph sits at position 1.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Sequence, Union

from ..errors import DocumentPositionError

LOGGER = logging.getLogger(__name__)

BLOCK_SEPARATOR = "\n\n"
NODE_OPEN_SLOTS = 1
TEXTBLOCK_TYPES = frozenset({"paragraph", "heading", "codeBlock"})
CONTAINER_TYPES = frozenset({"bulletList", "orderedList", "listItem", "blockquote"})
# Text typed at the edge of these marks does not inherit them.
NON_INCLUSIVE_MARKS = frozenset({"suggestion"})

__all__ = [
    "BLOCK_SEPARATOR",
    "NODE_OPEN_SLOTS",
    "Mark",
    "TextRun",
    "BlockNode",
    "SelectionRange",
    "DocumentChange",
    "DocumentChangeEvent",
    "TextblockEntry",
    "StructuredDocument",
]


@dataclass(slots=True, frozen=True)
class Mark:
    """Inline formatting or annotation attached to a text run."""

    type: str
    attrs: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.attrs:
            payload["attrs"] = dict(self.attrs)
        return payload


@dataclass(slots=True)
class TextRun:
    """A run of characters sharing one set of marks."""

    text: str
    marks: tuple[Mark, ...] = ()

    def has_mark(self, mark_type: str) -> bool:
        return any(mark.type == mark_type for mark in self.marks)

    def get_mark(self, mark_type: str) -> Mark | None:
        for mark in self.marks:
            if mark.type == mark_type:
                return mark
        return None


Node = Union["BlockNode", TextRun]


@dataclass(slots=True)
class BlockNode:
    """Block-level node; textblocks hold :class:`TextRun` items, containers hold blocks."""

    type: str
    content: list[Any] = field(default_factory=list)
    attrs: dict[str, Any] = field(default_factory=dict)

    @property
    def is_textblock(self) -> bool:
        return self.type in TEXTBLOCK_TYPES

    @property
    def text(self) -> str:
        if self.is_textblock:
            return "".join(run.text for run in self.content)
        return BLOCK_SEPARATOR.join(child.text for child in self.content)

    @property
    def node_size(self) -> int:
        if self.is_textblock:
            inner = sum(len(run.text) for run in self.content)
        else:
            inner = sum(child.node_size for child in self.content)
        return inner + 2 * NODE_OPEN_SLOTS


@dataclass(slots=True)
class SelectionRange:
    """Current selection expressed in document positions."""

    start: int = 0
    end: int = 0

    def as_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)

    @property
    def head(self) -> int:
        return self.end


@dataclass(slots=True, frozen=True)
class DocumentChange:
    """One mutation step.

    ``from_pos``/``to_pos`` describe the replaced span in pre-change
    coordinates, ``inserted`` the number of characters written in its place
    and ``size_delta`` the net change of the document content size.
    """

    kind: str
    from_pos: int
    to_pos: int
    inserted: int = 0
    size_delta: int = 0

    @property
    def is_text(self) -> bool:
        return self.kind == "text"

    @property
    def edit_size(self) -> int:
        return max(self.to_pos - self.from_pos, self.inserted)

    def map_position(self, pos: int, assoc: int = 1) -> int:
        """Map a pre-change position into post-change coordinates."""

        if not self.is_text:
            return pos
        if pos < self.from_pos or (pos == self.from_pos and assoc < 0):
            return pos
        if pos > self.to_pos or (pos == self.to_pos and self.to_pos > self.from_pos):
            return pos + self.size_delta
        return self.from_pos + (self.inserted if assoc > 0 else 0)


@dataclass(slots=True, frozen=True)
class DocumentChangeEvent:
    """Notification delivered to listeners once per transaction."""

    version: int
    changes: tuple[DocumentChange, ...]

    @property
    def text_changed(self) -> bool:
        return any(change.is_text for change in self.changes)

    @property
    def edit_size(self) -> int:
        return sum(change.edit_size for change in self.changes if change.is_text)


@dataclass(slots=True)
class TextblockEntry:
    """A textblock located in the tree together with its parent list."""

    block: BlockNode
    parent: list[Any]
    content_start: int

    @property
    def length(self) -> int:
        return sum(len(run.text) for run in self.block.content)

    @property
    def content_end(self) -> int:
        return self.content_start + self.length


Listener = Callable[["StructuredDocument", DocumentChangeEvent], None]


class StructuredDocument:
    """Mutable block tree exposing the narrow mutation set the engine relies on."""

    def __init__(self, blocks: Sequence[BlockNode] | None = None, *, document_id: str | None = None) -> None:
        self._blocks: list[BlockNode] = list(blocks) if blocks else [BlockNode("paragraph")]
        self.document_id = document_id or uuid.uuid4().hex
        self.version = 1
        self._listeners: list[Listener] = []
        self._pending: list[DocumentChange] | None = None
        self._transaction_depth = 0
        entries = self.textblocks()
        start = entries[0].content_start if entries else 0
        self.selection = SelectionRange(start, start)

    # ------------------------------------------------------------------
    # Construction / serialization
    # ------------------------------------------------------------------
    @classmethod
    def from_text(cls, text: str, **kwargs: Any) -> StructuredDocument:
        """Build a document with one paragraph per blank-line separated chunk."""

        blocks = [
            BlockNode("paragraph", [TextRun(chunk)] if chunk else [])
            for chunk in text.split(BLOCK_SEPARATOR)
        ]
        return cls(blocks, **kwargs)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], **kwargs: Any) -> StructuredDocument:
        """Load a Tiptap-style JSON document (``{"type": "doc", "content": [...]}``)."""

        if payload.get("type") != "doc":
            raise ValueError("Document payload must have type 'doc'")
        blocks = [_block_from_dict(item) for item in payload.get("content") or []]
        return cls(blocks, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "doc", "content": [_block_to_dict(block) for block in self._blocks]}

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------
    @property
    def blocks(self) -> tuple[BlockNode, ...]:
        return tuple(self._blocks)

    @property
    def content_size(self) -> int:
        return sum(block.node_size for block in self._blocks)

    @property
    def caret(self) -> int:
        return self.selection.head

    def textblocks(self) -> list[TextblockEntry]:
        """Return every textblock in document order with its content start position."""

        entries: list[TextblockEntry] = []

        def walk(nodes: list[Any], pos: int) -> None:
            for node in nodes:
                if node.is_textblock:
                    entries.append(TextblockEntry(node, nodes, pos + NODE_OPEN_SLOTS))
                else:
                    walk(node.content, pos + NODE_OPEN_SLOTS)
                pos += node.node_size

        walk(self._blocks, 0)
        return entries

    def plain_text(self) -> str:
        """Return the plain-text projection (textblocks joined by ``BLOCK_SEPARATOR``)."""

        return BLOCK_SEPARATOR.join(entry.block.text for entry in self.textblocks())

    def resolve(self, pos: int) -> tuple[TextblockEntry, int]:
        """Return the textblock containing ``pos`` and the offset inside it."""

        for entry in self.textblocks():
            if entry.content_start <= pos <= entry.content_end:
                return entry, pos - entry.content_start
        raise DocumentPositionError(f"Position {pos} is not inside textblock content")

    def text_between(self, from_pos: int, to_pos: int) -> str:
        """Return the text between two positions, joining textblocks with the separator."""

        self._check_bounds(from_pos, to_pos)
        pieces: list[str] = []
        for entry in self.textblocks():
            if entry.content_end < from_pos or entry.content_start > to_pos:
                continue
            start = max(from_pos, entry.content_start) - entry.content_start
            end = min(to_pos, entry.content_end) - entry.content_start
            pieces.append(entry.block.text[start:end])
        return BLOCK_SEPARATOR.join(pieces)

    def mark_spans(self, mark_type: str) -> list[tuple[int, int, Mark]]:
        """Return coalesced ``(from, to, mark)`` spans carrying ``mark_type``."""

        spans: list[tuple[int, int, Mark]] = []
        for entry in self.textblocks():
            pos = entry.content_start
            for run in entry.block.content:
                mark = run.get_mark(mark_type)
                end = pos + len(run.text)
                if mark is not None:
                    if spans and spans[-1][1] == pos and spans[-1][2] == mark:
                        spans[-1] = (spans[-1][0], end, mark)
                    else:
                        spans.append((pos, end, mark))
                pos = end
        return spans

    def set_selection(self, start: int, end: int | None = None) -> None:
        end = start if end is None else end
        self._check_bounds(min(start, end), max(start, end))
        self.selection = SelectionRange(start, end)

    # ------------------------------------------------------------------
    # Listeners / transactions
    # ------------------------------------------------------------------
    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @contextmanager
    def transaction(self) -> Iterator[StructuredDocument]:
        """Fold every mutation made inside the block into one change notification."""

        self._transaction_depth += 1
        if self._pending is None:
            self._pending = []
        try:
            yield self
        finally:
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                changes, self._pending = self._pending, None
                if changes:
                    self._emit(changes)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def insert_text(self, pos: int, text: str, marks: Sequence[Mark] | None = None) -> None:
        if not text:
            return
        entry, offset = self.resolve(pos)
        runs = entry.block.content
        if marks is None:
            marks = _inherited_marks(runs, offset)
        before, after = _split_runs(runs, offset)
        entry.block.content = _normalize(before + [TextRun(text, tuple(marks))] + after)
        self._record(DocumentChange("text", pos, pos, len(text), len(text)))

    def delete_range(self, from_pos: int, to_pos: int) -> None:
        if from_pos > to_pos:
            from_pos, to_pos = to_pos, from_pos
        if from_pos == to_pos:
            return
        start_entry, start_offset = self.resolve(from_pos)
        end_entry, end_offset = self.resolve(to_pos)
        old_size = self.content_size
        if start_entry.block is end_entry.block:
            runs = start_entry.block.content
            before, _ = _split_runs(runs, start_offset)
            _, after = _split_runs(runs, end_offset)
            start_entry.block.content = _normalize(before + after)
        else:
            self._merge_textblocks(start_entry, start_offset, end_entry, end_offset)
        delta = self.content_size - old_size
        self._record(DocumentChange("text", from_pos, to_pos, 0, delta))

    def replace_range(self, from_pos: int, to_pos: int, text: str) -> None:
        """Replace ``[from_pos, to_pos)`` with ``text`` in a single step."""

        if from_pos > to_pos:
            from_pos, to_pos = to_pos, from_pos
        if from_pos == to_pos and not text:
            return
        entry, offset = self.resolve(from_pos)
        marks = _inherited_marks(entry.block.content, offset, prefer_right=from_pos < to_pos)
        old_size = self.content_size
        with self.transaction():
            pending = self._pending if self._pending is not None else []
            first_step = len(pending)
            self.delete_range(from_pos, to_pos)
            self.insert_text(from_pos, text, marks)
            # The delete/insert pair is reported as a single replace step.
            del pending[first_step:]
            pending.append(
                DocumentChange("text", from_pos, to_pos, len(text), self.content_size - old_size)
            )

    def add_mark(self, from_pos: int, to_pos: int, mark: Mark) -> None:
        """Apply ``mark`` over ``[from_pos, to_pos)``, replacing marks of the same type."""

        self._update_marks(from_pos, to_pos, lambda marks: _without(marks, mark.type) + (mark,))

    def remove_mark(self, from_pos: int, to_pos: int, mark_type: str) -> None:
        self._update_marks(from_pos, to_pos, lambda marks: _without(marks, mark_type))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _update_marks(
        self,
        from_pos: int,
        to_pos: int,
        update: Callable[[tuple[Mark, ...]], tuple[Mark, ...]],
    ) -> None:
        if from_pos > to_pos:
            from_pos, to_pos = to_pos, from_pos
        self._check_bounds(from_pos, to_pos)
        if from_pos == to_pos:
            return
        for entry in self.textblocks():
            start = max(from_pos, entry.content_start)
            end = min(to_pos, entry.content_end)
            if start >= end:
                continue
            runs = entry.block.content
            before, rest = _split_runs(runs, start - entry.content_start)
            middle, after = _split_runs(rest, end - start)
            middle = [TextRun(run.text, update(run.marks)) for run in middle]
            entry.block.content = _normalize(before + middle + after)
        self._record(DocumentChange("marks", from_pos, to_pos, to_pos - from_pos, 0))

    def _merge_textblocks(
        self,
        start_entry: TextblockEntry,
        start_offset: int,
        end_entry: TextblockEntry,
        end_offset: int,
    ) -> None:
        entries = self.textblocks()
        blocks = [entry.block for entry in entries]
        first = _index_by_identity(blocks, start_entry.block)
        last = _index_by_identity(blocks, end_entry.block)
        before, _ = _split_runs(start_entry.block.content, start_offset)
        _, after = _split_runs(end_entry.block.content, end_offset)
        start_entry.block.content = _normalize(before + after)
        for entry in entries[first + 1 : last + 1]:
            entry.parent.pop(_index_by_identity(entry.parent, entry.block))
        self._blocks = _prune_containers(self._blocks)

    def _check_bounds(self, from_pos: int, to_pos: int) -> None:
        size = self.content_size
        if from_pos < 0 or to_pos > size:
            raise DocumentPositionError(f"Range [{from_pos}, {to_pos}) outside document [0, {size}]")

    def _record(self, change: DocumentChange) -> None:
        self.version += 1
        if change.is_text:
            self.selection = SelectionRange(
                change.map_position(self.selection.start),
                change.map_position(self.selection.end),
            )
        if self._pending is not None:
            self._pending.append(change)
        else:
            self._emit([change])

    def _emit(self, changes: list[DocumentChange]) -> None:
        event = DocumentChangeEvent(self.version, tuple(changes))
        for listener in list(self._listeners):
            try:
                listener(self, event)
            except Exception:
                LOGGER.exception("Document listener %r failed", listener)


# ----------------------------------------------------------------------
# Run helpers
# ----------------------------------------------------------------------


def _split_runs(runs: Sequence[TextRun], offset: int) -> tuple[list[TextRun], list[TextRun]]:
    before: list[TextRun] = []
    after: list[TextRun] = []
    pos = 0
    for run in runs:
        end = pos + len(run.text)
        if end <= offset:
            before.append(TextRun(run.text, run.marks))
        elif pos >= offset:
            after.append(TextRun(run.text, run.marks))
        else:
            cut = offset - pos
            before.append(TextRun(run.text[:cut], run.marks))
            after.append(TextRun(run.text[cut:], run.marks))
        pos = end
    return before, after


def _normalize(runs: Sequence[TextRun]) -> list[TextRun]:
    merged: list[TextRun] = []
    for run in runs:
        if not run.text:
            continue
        if merged and merged[-1].marks == run.marks:
            merged[-1] = TextRun(merged[-1].text + run.text, run.marks)
        else:
            merged.append(run)
    return merged


def _inherited_marks(runs: Sequence[TextRun], offset: int, *, prefer_right: bool = False) -> tuple[Mark, ...]:
    before, after = _split_runs(runs, offset)
    source: TextRun | None = None
    if prefer_right and after:
        source = after[0]
    elif before:
        source = before[-1]
    elif after:
        source = after[0]
    if source is None:
        return ()
    return tuple(mark for mark in source.marks if mark.type not in NON_INCLUSIVE_MARKS)


def _without(marks: tuple[Mark, ...], mark_type: str) -> tuple[Mark, ...]:
    return tuple(mark for mark in marks if mark.type != mark_type)


def _index_by_identity(items: Sequence[Any], target: Any) -> int:
    for index, item in enumerate(items):
        if item is target:
            return index
    raise ValueError("Node is not part of the document")


def _prune_containers(nodes: list[Any]) -> list[Any]:
    kept: list[Any] = []
    for node in nodes:
        if not node.is_textblock:
            node.content = _prune_containers(node.content)
            if not node.content:
                continue
        kept.append(node)
    nodes[:] = kept
    return nodes


# ----------------------------------------------------------------------
# JSON helpers
# ----------------------------------------------------------------------


def _block_from_dict(payload: Mapping[str, Any]) -> BlockNode:
    node_type = payload.get("type")
    attrs = dict(payload.get("attrs") or {})
    children = payload.get("content") or []
    if node_type in TEXTBLOCK_TYPES:
        runs = [_run_from_dict(child) for child in children]
        return BlockNode(str(node_type), _normalize(runs), attrs)
    if node_type in CONTAINER_TYPES:
        return BlockNode(str(node_type), [_block_from_dict(child) for child in children], attrs)
    raise ValueError(f"Unsupported block node type: {node_type!r}")


def _run_from_dict(payload: Mapping[str, Any]) -> TextRun:
    node_type = payload.get("type")
    marks = tuple(
        Mark(str(item.get("type")), dict(item.get("attrs") or {}))
        for item in payload.get("marks") or []
    )
    if node_type == "text":
        return TextRun(str(payload.get("text") or ""), marks)
    if node_type == "hardBreak":
        # Leaf node of size one; kept as a newline so positions line up.
        return TextRun("\n", marks)
    raise ValueError(f"Unsupported inline node type: {node_type!r}")


def _block_to_dict(block: BlockNode) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": block.type}
    if block.attrs:
        payload["attrs"] = dict(block.attrs)
    if block.content:
        if block.is_textblock:
            payload["content"] = [_run_to_dict(run) for run in block.content]
        else:
            payload["content"] = [_block_to_dict(child) for child in block.content]
    return payload


def _run_to_dict(run: TextRun) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": "text", "text": run.text}
    if run.marks:
        payload["marks"] = [mark.to_dict() for mark in run.marks]
    return payload
