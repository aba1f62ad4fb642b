"""Top-level orchestration of analysis passes, reconciliation and user actions."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping, Protocol, Sequence

from ..core.ranges import TextRange
from ..editor.document_model import DocumentChangeEvent, StructuredDocument
from ..editor.position_mapper import PositionMapper
from ..errors import OffsetOutOfRangeError
from ..events import (
    AnalysisCompleted,
    AnalysisFailed,
    AnalysisStarted,
    EventBus,
    StaleResultDiscarded,
    SuggestionAccepted,
    SuggestionDismissed,
)
from .cache import SuggestionCache
from .locator import closest_occurrence, find_occurrences, matches_exactly
from .metrics import RequestMetrics, RequestPacer
from .models import DEFAULT_CATEGORIES, Annotation, Suggestion, SuggestionCategory
from .overlay import AnnotationOverlayManager
from .payloads import coerce_suggestions
from .scheduler import AnalysisScheduler, CategoryPolicy, CategoryState, SchedulingConfig
from .window import AnalysisWindow

LOGGER = logging.getLogger(__name__)

__all__ = ["AnalysisService", "CategoryStatus", "SuggestionLifecycleController"]


class AnalysisService(Protocol):
    """External collaborator that turns text into suggestions."""

    async def analyze(
        self, category: SuggestionCategory, text: str
    ) -> Sequence[Suggestion | Mapping[str, Any]]:  # pragma: no cover - protocol
        ...


@dataclass(slots=True, frozen=True)
class CategoryStatus:
    state: CategoryState
    error: str | None = None
    annotation_count: int = 0


class SuggestionLifecycleController:
    """Keeps the suggestion overlay of one document in step with its text.

    Edits are forwarded to the scheduler, finished passes are reconciled
    onto the overlay and accept/dismiss requests are applied to the
    document. Mutations made by the controller itself run under
    :meth:`applying_suggestions` so they never re-trigger change detection.
    """

    def __init__(
        self,
        document: StructuredDocument,
        analysis_service: AnalysisService,
        *,
        categories: Iterable[SuggestionCategory | str] = DEFAULT_CATEGORIES,
        cache: SuggestionCache | None = None,
        scheduling: SchedulingConfig | None = None,
        policies: Mapping[SuggestionCategory, CategoryPolicy] | None = None,
        event_bus: EventBus | None = None,
        metrics: RequestMetrics | None = None,
        pacer: RequestPacer | None = None,
        strict_positions: bool = False,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._document = document
        self._service = analysis_service
        self._bus = event_bus or EventBus()
        self._cache = cache or SuggestionCache()
        self._metrics = metrics or RequestMetrics()
        self._pacer = pacer or RequestPacer()
        self._overlay = AnnotationOverlayManager(document, event_bus=self._bus)
        self._scheduler = AnalysisScheduler(
            self._snapshot,
            self._run_pass,
            categories=categories,
            config=scheduling,
            policies=policies,
            event_bus=self._bus,
            loop=loop,
        )
        self._strict_positions = strict_positions
        self._applying = 0
        self._attached = False
        self._errors: dict[SuggestionCategory, str] = {}
        self._dismissed: dict[SuggestionCategory, set[tuple[str, str, str]]] = {}

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def document(self) -> StructuredDocument:
        return self._document

    @property
    def overlay(self) -> AnnotationOverlayManager:
        return self._overlay

    @property
    def scheduler(self) -> AnalysisScheduler:
        return self._scheduler

    @property
    def cache(self) -> SuggestionCache:
        return self._cache

    @property
    def metrics(self) -> RequestMetrics:
        return self._metrics

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def errors(self) -> dict[str, str]:
        """Latest failure message per category (cleared by the next success)."""

        return {category.value: message for category, message in self._errors.items()}

    @property
    def is_applying(self) -> bool:
        return self._applying > 0

    @contextmanager
    def applying_suggestions(self) -> Iterator[None]:
        """Mark document mutations in the block as programmatic."""

        self._applying += 1
        try:
            yield
        finally:
            self._applying -= 1

    # ------------------------------------------------------------------
    # Document wiring
    # ------------------------------------------------------------------
    def attach(self, *, initial_check: bool = False) -> None:
        """Start observing the document.

        With ``initial_check`` every category is scheduled once with the
        short debounce, as an editor does right after opening a document.
        """

        if not self._attached:
            self._document.add_listener(self._handle_document_change)
            self._attached = True
        if initial_check:
            delay = self._scheduler.config.short_debounce
            for category in self._scheduler.categories:
                self._scheduler.schedule(category, delay, force=True)

    def detach(self) -> None:
        if self._attached:
            self._document.remove_listener(self._handle_document_change)
            self._attached = False

    def on_document_changed(self, edit_size: int = 0) -> list[SuggestionCategory]:
        """Run change detection for a user edit; ignored while applying suggestions."""

        if self._applying:
            return []
        return self._scheduler.note_edit(edit_size)

    def _handle_document_change(self, document: StructuredDocument, event: DocumentChangeEvent) -> None:
        if not event.text_changed:
            return
        with self.applying_suggestions():
            for change in event.changes:
                self._overlay.map_change(change)
            if len(self._overlay):
                self._overlay.prune_unconfirmed(PositionMapper(document))
        if self._applying:
            return
        # Dismissals only hold until the user edits again.
        self._dismissed.clear()
        self.on_document_changed(event.edit_size)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------
    def accept_suggestion(self, annotation: Annotation) -> bool:
        """Apply ``annotation``'s replacement to the document.

        Coaching annotations carry no replacement and are dismissed instead.
        Returns ``False`` when the annotation is unknown or its text can no
        longer be found; the document is left untouched in that case.
        """

        current = self._overlay.get(annotation.annotation_id)
        if current is None:
            LOGGER.info("Ignoring accept for unknown annotation %s", annotation.annotation_id)
            return False
        if current.suggestion.is_coaching:
            return self.dismiss_suggestion(current)

        target = self._locate_annotation(PositionMapper(self._document), current)
        if target is None:
            LOGGER.warning(
                "Could not locate %r for %s annotation %s; dropping it",
                current.suggestion.original,
                current.category.value,
                current.annotation_id,
            )
            with self.applying_suggestions():
                self._overlay.remove_annotation(current)
            return False

        start, end = target
        with self.applying_suggestions(), self._document.transaction():
            # The target may have been found away from the annotation's own range.
            self._overlay.remove_annotation(current)
            self._overlay.remove_annotations_in_range(start, end)
            self._document.replace_range(start, end, current.suggestion.replacement)
        LOGGER.debug("Accepted %s suggestion %s", current.category.value, current.annotation_id)
        self._bus.publish(
            SuggestionAccepted(current.category.value, current.annotation_id, current.suggestion.replacement)
        )
        if current.category in self._scheduler.categories:
            self._scheduler.schedule(current.category, self._scheduler.config.short_debounce, force=True)
        return True

    def dismiss_suggestion(self, annotation: Annotation) -> bool:
        current = self._overlay.get(annotation.annotation_id)
        if current is None:
            LOGGER.info("Ignoring dismiss for unknown annotation %s", annotation.annotation_id)
            return False
        with self.applying_suggestions():
            self._overlay.remove_annotation(current)
        self._dismissed.setdefault(current.category, set()).add(current.suggestion.key)
        self._bus.publish(SuggestionDismissed(current.category.value, current.annotation_id))
        return True

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------
    async def analyze_now(
        self, category: SuggestionCategory | str | None = None
    ) -> dict[str, CategoryStatus]:
        """Run a pass immediately for ``category`` (or every enabled category)."""

        if category is None:
            targets = list(self._scheduler.categories)
        else:
            targets = [SuggestionCategory.coerce(category)]
        await asyncio.gather(*(self._scheduler.run_now(target) for target in targets))
        return {target.value: self.status(target) for target in targets}

    def status(self, category: SuggestionCategory | str) -> CategoryStatus:
        resolved = SuggestionCategory.coerce(category)
        return CategoryStatus(
            state=self._scheduler.state(resolved),
            error=self._errors.get(resolved),
            annotation_count=len(self._overlay.list_active(resolved)),
        )

    def diagnostics(self) -> dict[str, Any]:
        """Cache counters and request latencies, for logging or a status panel."""

        stats = self._cache.stats
        return {
            "cache": stats.to_dict() if stats is not None else {},
            "requests": self._metrics.to_dict(),
        }

    async def aclose(self) -> None:
        """Detach, cancel pending timers and wait for in-flight passes."""

        self.detach()
        await self._scheduler.aclose()

    def _snapshot(self) -> tuple[str, int]:
        mapper = PositionMapper(self._document)
        try:
            caret = mapper.to_plain_offset(self._document.caret)
        except OffsetOutOfRangeError:
            caret = mapper.length
        return mapper.text, caret

    async def _run_pass(self, category: SuggestionCategory, window: AnalysisWindow) -> None:
        self._bus.publish(AnalysisStarted(category.value, window.fingerprint, window.start, window.end))
        try:
            suggestions = await self._cache.get_or_fetch(
                window.fingerprint,
                category,
                lambda: self._fetch(category, window.text),
            )
            self._apply_result(category, window, suggestions)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._errors[category] = message
            LOGGER.warning("%s analysis failed: %s", category.value, message)
            self._bus.publish(AnalysisFailed(category.value, message))
            raise
        self._errors.pop(category, None)

    async def _fetch(self, category: SuggestionCategory, text: str) -> list[Suggestion]:
        await self._pacer.wait_turn()
        with self._metrics.measure(category):
            raw = await self._service.analyze(category, text)
        return coerce_suggestions(category, raw)

    def _apply_result(
        self,
        category: SuggestionCategory,
        window: AnalysisWindow,
        suggestions: Sequence[Suggestion],
    ) -> None:
        mapper = PositionMapper(self._document)
        current = window.relocate(mapper.text)
        if current is None:
            LOGGER.debug("Discarding stale %s result for window %s", category.value, window.fingerprint)
            self._bus.publish(StaleResultDiscarded(category.value, window.fingerprint))
            return

        dismissed = self._dismissed.get(category, set())
        located: list[Annotation] = []
        used: list[TextRange] = []
        for suggestion in suggestions:
            if suggestion.key in dismissed:
                continue
            occurrence = next(
                (
                    candidate
                    for candidate in find_occurrences(current.text, suggestion.original)
                    if not any(candidate.overlaps(taken) for taken in used)
                ),
                None,
            )
            if occurrence is None:
                LOGGER.debug("No free occurrence of %r in %s window", suggestion.original, category.value)
                continue
            span = occurrence.shift(current.start)
            try:
                start, end = mapper.to_document_range(span.start, span.end)
            except OffsetOutOfRangeError:
                if self._strict_positions:
                    raise
                LOGGER.error("Could not map %s suggestion at %s; skipping", category.value, span.to_tuple())
                continue
            used.append(occurrence)
            located.append(Annotation(suggestion, start, end))

        window_start, window_end = mapper.to_document_range(current.start, current.end)
        kept = [
            annotation
            for annotation in self._overlay.list_active(category)
            if annotation.end <= window_start or annotation.start >= window_end
        ]
        with self.applying_suggestions():
            installed = self._overlay.replace_category(category, kept + located)
        LOGGER.debug(
            "Reconciled %s window %s: %d located, %d kept",
            category.value,
            window.fingerprint,
            len(located),
            len(kept),
        )
        self._bus.publish(AnalysisCompleted(category.value, window.fingerprint, len(installed)))

    def _locate_annotation(self, mapper: PositionMapper, annotation: Annotation) -> tuple[int, int] | None:
        original = annotation.suggestion.original
        anchor = 0
        try:
            start, end = mapper.to_plain_range(annotation.start, annotation.end)
        except OffsetOutOfRangeError:
            LOGGER.debug("Annotation %s lies outside the document", annotation.annotation_id)
        else:
            if matches_exactly(mapper.text[start:end], original):
                return annotation.start, annotation.end
            anchor = start

        occurrence = closest_occurrence(find_occurrences(mapper.text, original), anchor)
        if occurrence is None:
            return None
        try:
            return mapper.to_document_range(occurrence.start, occurrence.end)
        except OffsetOutOfRangeError:
            if self._strict_positions:
                raise
            LOGGER.error("Could not map occurrence %s of %r", occurrence.to_tuple(), original)
            return None
