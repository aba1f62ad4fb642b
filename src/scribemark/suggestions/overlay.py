"""Annotation overlay bookkeeping on top of the document mark model.

The document only supports clearing a mark type over a range, not removing
one category's marks, so every category refresh clears the overlay mark and
re-applies the annotations of the other categories from memory.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from ..editor.document_model import DocumentChange, Mark, StructuredDocument
from ..editor.position_mapper import PositionMapper
from ..errors import OffsetOutOfRangeError
from ..events import AnnotationsChanged, EventBus
from .locator import matches_exactly
from .models import Annotation, SuggestionCategory

LOGGER = logging.getLogger(__name__)

DEFAULT_MARK_TYPE = "suggestion"


class AnnotationOverlayManager:
    """Owns the active annotations, keyed by category.

    Categories are kept in refresh order: the most recently refreshed
    category is re-applied last, so where the mark model collapses
    overlapping marks the newest category's attributes win. The exception is
    the mark layer: lower layers (paragraph-wide prompts) are always painted
    before the rest.
    """

    def __init__(
        self,
        document: StructuredDocument,
        *,
        mark_type: str = DEFAULT_MARK_TYPE,
        event_bus: EventBus | None = None,
    ) -> None:
        self._document = document
        self._mark_type = mark_type
        self._bus = event_bus
        self._annotations: dict[SuggestionCategory, list[Annotation]] = {}

    @property
    def mark_type(self) -> str:
        return self._mark_type

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_active(self, category: SuggestionCategory | str | None = None) -> tuple[Annotation, ...]:
        """Return a read-only snapshot sorted by document position."""

        if category is None:
            items = [annotation for group in self._annotations.values() for annotation in group]
        else:
            items = list(self._annotations.get(SuggestionCategory.coerce(category), ()))
        return tuple(sorted(items, key=lambda annotation: (annotation.start, annotation.end)))

    def get(self, annotation_id: str) -> Annotation | None:
        for group in self._annotations.values():
            for annotation in group:
                if annotation.annotation_id == annotation_id:
                    return annotation
        return None

    def counts(self) -> dict[str, int]:
        return {category.value: len(group) for category, group in self._annotations.items() if group}

    def __len__(self) -> int:
        return sum(len(group) for group in self._annotations.values())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def replace_category(
        self,
        category: SuggestionCategory | str,
        new_annotations: Iterable[Annotation],
    ) -> list[Annotation]:
        """Swap the annotation set of ``category`` leaving other categories in place."""

        category = SuggestionCategory.coerce(category)
        others = [(cat, list(group)) for cat, group in self._annotations.items() if cat is not category]
        restored: dict[SuggestionCategory, list[Annotation]] = {}
        installed: list[Annotation] = []
        # Stable sort: within a layer, existing categories still go before the refreshed one.
        passes = sorted([*others, (category, None)], key=lambda item: item[0].mark_layer)

        document = self._document
        with document.transaction():
            document.remove_mark(0, document.content_size, self._mark_type)
            for current, group in passes:
                if group is None:
                    installed = self._install(category, new_annotations)
                else:
                    restored[current] = [annotation for annotation in group if self._apply(annotation)]

        self._annotations = {cat: group for cat, group in restored.items() if group}
        if installed:
            self._annotations[category] = installed
        for other, group in others:
            if len(restored.get(other, ())) != len(group):
                self._publish(other)
        self._publish(category)
        return list(installed)

    def remove_annotations_in_range(self, start: int, end: int) -> list[Annotation]:
        """Remove every annotation intersecting ``[start, end)``."""

        removed = [annotation for annotation in self._iter_all() if annotation.overlaps(start, end)]
        self._discard(removed)
        return removed

    def remove_annotation(self, annotation: Annotation) -> bool:
        current = self.get(annotation.annotation_id)
        if current is None:
            return False
        self._discard([current])
        return True

    def clear(self) -> None:
        categories = list(self._annotations)
        self._annotations = {}
        document = self._document
        document.remove_mark(0, document.content_size, self._mark_type)
        for category in categories:
            self._publish(category)

    def map_change(self, change: DocumentChange) -> list[Annotation]:
        """Follow a text edit: shift later annotations, destroy edited ones."""

        if not change.is_text:
            return []
        destroyed: list[Annotation] = []
        stale_ranges: list[tuple[int, int]] = []
        for annotation in list(self._iter_all()):
            if annotation.overlaps(change.from_pos, change.to_pos):
                destroyed.append(annotation)
                stale_ranges.append(
                    (change.map_position(annotation.start, -1), change.map_position(annotation.end, 1))
                )
                continue
            annotation.start = change.map_position(annotation.start, 1)
            annotation.end = change.map_position(annotation.end, -1)
        if destroyed:
            LOGGER.debug("Edit at [%d, %d) destroyed %d annotation(s)", change.from_pos, change.to_pos, len(destroyed))
            self._forget(destroyed)
            self._clear_and_restore(stale_ranges)
            for category in {annotation.category for annotation in destroyed}:
                self._publish(category)
        return destroyed

    def prune_unconfirmed(self, mapper: PositionMapper) -> list[Annotation]:
        """Drop annotations whose text no longer matches their suggestion."""

        stale: list[Annotation] = []
        text = mapper.text
        for annotation in self._iter_all():
            try:
                start, end = mapper.to_plain_range(annotation.start, annotation.end)
            except OffsetOutOfRangeError:
                stale.append(annotation)
                continue
            if not matches_exactly(text[start:end], annotation.suggestion.original):
                stale.append(annotation)
        if stale:
            LOGGER.debug("Pruning %d annotation(s) that no longer match their text", len(stale))
            self._discard(stale)
        return stale

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _iter_all(self) -> Iterable[Annotation]:
        for category in sorted(self._annotations, key=lambda item: item.mark_layer):
            yield from self._annotations[category]

    def _install(self, category: SuggestionCategory, new_annotations: Iterable[Annotation]) -> list[Annotation]:
        installed: list[Annotation] = []
        for annotation in sorted(new_annotations, key=lambda item: (item.start, item.end)):
            if annotation.category is not category:
                LOGGER.warning(
                    "Ignoring %s annotation passed to the %s refresh",
                    annotation.category.value,
                    category.value,
                )
                continue
            if any(existing.overlaps(annotation.start, annotation.end) for existing in installed):
                LOGGER.debug(
                    "Skipping overlapping %s annotation at [%d, %d)",
                    category.value,
                    annotation.start,
                    annotation.end,
                )
                continue
            if self._apply(annotation):
                installed.append(annotation)
        return installed

    def _apply(self, annotation: Annotation) -> bool:
        size = self._document.content_size
        if not 0 <= annotation.start < annotation.end <= size:
            LOGGER.warning(
                "Skipping %s annotation with invalid range [%d, %d) (document size %d)",
                annotation.category.value,
                annotation.start,
                annotation.end,
                size,
            )
            return False
        try:
            self._document.add_mark(
                annotation.start,
                annotation.end,
                Mark(self._mark_type, annotation.mark_attrs()),
            )
        except Exception:
            LOGGER.warning(
                "Failed to apply %s annotation at [%d, %d)",
                annotation.category.value,
                annotation.start,
                annotation.end,
                exc_info=True,
            )
            return False
        return True

    def _discard(self, annotations: Sequence[Annotation]) -> None:
        if not annotations:
            return
        self._forget(annotations)
        self._clear_and_restore([annotation.range for annotation in annotations])
        for category in {annotation.category for annotation in annotations}:
            self._publish(category)

    def _forget(self, annotations: Sequence[Annotation]) -> None:
        doomed = {annotation.annotation_id for annotation in annotations}
        for category in list(self._annotations):
            kept = [item for item in self._annotations[category] if item.annotation_id not in doomed]
            if kept:
                self._annotations[category] = kept
            else:
                del self._annotations[category]

    def _clear_and_restore(self, ranges: Sequence[tuple[int, int]]) -> None:
        document = self._document
        size = document.content_size
        cleared: list[tuple[int, int]] = []
        with document.transaction():
            for start, end in ranges:
                start, end = max(0, min(start, size)), max(0, min(end, size))
                if start < end:
                    document.remove_mark(start, end, self._mark_type)
                    cleared.append((start, end))
            # Clearing is by mark type, so survivors sharing the span lose their marks too.
            for annotation in list(self._iter_all()):
                if any(annotation.start < end and start < annotation.end for start, end in cleared):
                    self._apply(annotation)

    def _publish(self, category: SuggestionCategory) -> None:
        if self._bus is None:
            return
        self._bus.publish(AnnotationsChanged(category.value, len(self._annotations.get(category, ()))))


__all__ = ["AnnotationOverlayManager", "DEFAULT_MARK_TYPE"]
