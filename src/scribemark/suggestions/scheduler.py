"""Per-category change detection and debounced dispatch of analysis passes."""

from __future__ import annotations

import asyncio
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterable, Mapping

from ..events import AnalysisScheduled, EventBus
from .models import DEFAULT_CATEGORIES, SuggestionCategory
from .window import (
    AnalysisWindow,
    WindowConfig,
    extract_window,
    has_substance,
    paragraph_window,
    whole_document_window,
)

LOGGER = logging.getLogger(__name__)

SnapshotProvider = Callable[[], tuple[str, int]]
Dispatch = Callable[[SuggestionCategory, AnalysisWindow], Awaitable[None]]

_QUOTE = re.compile(r"\"[^\"]+\"|“[^”]+”")

__all__ = [
    "AnalysisScheduler",
    "CategoryPolicy",
    "CategoryState",
    "DEFAULT_POLICIES",
    "SchedulingConfig",
]


class CategoryState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    IN_FLIGHT = "in_flight"


@dataclass(slots=True, frozen=True)
class SchedulingConfig:
    """Knobs of the change detector and the adaptive debounce.

    Attributes:
        base_debounce: Delay in seconds after an ordinary edit.
        short_debounce: Delay for small edits near either end of a long
            document, and for the re-check after an accepted suggestion.
        max_debounce: Upper bound for the adaptive delay.
        large_edit_chars: Edits at least this large (pastes, cuts) add
            ``large_edit_penalty``.
        long_document_chars: Every full multiple of this document length
            adds ``long_document_penalty``.
        length_threshold: Projection length must have changed by more than
            this since the category's last analysis.
        recent_fingerprints: Window fingerprints remembered per category.
        window: Window sizing rules.
    """

    base_debounce: float = 2.0
    short_debounce: float = 1.0
    max_debounce: float = 5.0
    large_edit_chars: int = 40
    large_edit_penalty: float = 1.0
    long_document_chars: int = 5000
    long_document_penalty: float = 0.5
    length_threshold: int = 1
    recent_fingerprints: int = 32
    window: WindowConfig = field(default_factory=WindowConfig)


@dataclass(slots=True, frozen=True)
class CategoryPolicy:
    """How one category picks its window and when it is worth analysing.

    Attributes:
        whole_document: Analyse the whole projection instead of a local window.
        paragraph_scope: Analyse only the textblock holding the caret.
        requires_quote: Only edits whose window holds a quotation qualify.
        min_chars: Windows with fewer non-blank characters are never sent,
            not even by an explicit run.
        once_per_window: A window already analysed is skipped even by an
            explicit run.
    """

    category: SuggestionCategory
    whole_document: bool = False
    paragraph_scope: bool = False
    requires_quote: bool = False
    min_chars: int = 0
    once_per_window: bool = False

    def window_for(self, text: str, caret: int, config: WindowConfig) -> AnalysisWindow:
        if self.whole_document:
            return whole_document_window(text, caret, config)
        if self.paragraph_scope:
            return paragraph_window(text, caret, config)
        return extract_window(text, caret, config)

    def too_short(self, window: AnalysisWindow) -> bool:
        return len(window.text.strip()) < self.min_chars

    def qualifies(self, window: AnalysisWindow) -> bool:
        if self.too_short(window):
            return False
        if self.requires_quote and _QUOTE.search(window.text) is None:
            return False
        return True


DEFAULT_POLICIES: Mapping[SuggestionCategory, CategoryPolicy] = {
    SuggestionCategory.GRAMMAR: CategoryPolicy(SuggestionCategory.GRAMMAR),
    SuggestionCategory.ACADEMIC_VOICE: CategoryPolicy(SuggestionCategory.ACADEMIC_VOICE),
    SuggestionCategory.EVIDENCE: CategoryPolicy(SuggestionCategory.EVIDENCE, requires_quote=True),
    SuggestionCategory.ARGUMENT: CategoryPolicy(SuggestionCategory.ARGUMENT, whole_document=True),
    SuggestionCategory.CRITICAL_THINKING: CategoryPolicy(
        SuggestionCategory.CRITICAL_THINKING,
        paragraph_scope=True,
        min_chars=50,
        once_per_window=True,
    ),
}


@dataclass(slots=True)
class _Track:
    state: CategoryState = CategoryState.IDLE
    timer: asyncio.TimerHandle | None = None
    tasks: set[asyncio.Task[None]] = field(default_factory=set)
    recent: OrderedDict[str, None] = field(default_factory=OrderedDict)
    last_length: int | None = None
    forced: bool = False


class AnalysisScheduler:
    """Decides per category when to analyse and dispatches debounced passes.

    States run ``IDLE -> SCHEDULED -> IN_FLIGHT -> IDLE``. An edit that
    qualifies while a pass is in flight re-arms the timer (``SCHEDULED``)
    without cancelling the running call.
    """

    def __init__(
        self,
        snapshot_provider: SnapshotProvider,
        dispatch: Dispatch,
        *,
        categories: Iterable[SuggestionCategory | str] = DEFAULT_CATEGORIES,
        config: SchedulingConfig | None = None,
        policies: Mapping[SuggestionCategory, CategoryPolicy] | None = None,
        event_bus: EventBus | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._snapshot = snapshot_provider
        self._dispatch = dispatch
        self._config = config or SchedulingConfig()
        self._policies = dict(DEFAULT_POLICIES)
        if policies:
            self._policies.update(policies)
        self._categories = tuple(SuggestionCategory.coerce(category) for category in categories)
        self._tracks = {category: _Track() for category in self._categories}
        self._bus = event_bus
        self._loop = loop
        self._closed = False

    @property
    def config(self) -> SchedulingConfig:
        return self._config

    @property
    def categories(self) -> tuple[SuggestionCategory, ...]:
        return self._categories

    def state(self, category: SuggestionCategory | str) -> CategoryState:
        return self._track(category).state

    def policy(self, category: SuggestionCategory | str) -> CategoryPolicy:
        resolved = SuggestionCategory.coerce(category)
        return self._policies.get(resolved) or CategoryPolicy(resolved)

    def has_analyzed(self, category: SuggestionCategory | str, fingerprint: str) -> bool:
        return fingerprint in self._track(category).recent

    # ------------------------------------------------------------------
    # Change detection
    # ------------------------------------------------------------------
    def note_edit(self, edit_size: int = 0) -> list[SuggestionCategory]:
        """Evaluate an edit for every category and arm the timers that qualify."""

        if self._closed:
            return []
        text, caret = self._snapshot()
        delay = self.debounce_delay(edit_size, len(text), caret)
        armed: list[SuggestionCategory] = []
        for category in self._categories:
            track = self._tracks[category]
            policy = self.policy(category)
            window = policy.window_for(text, caret, self._config.window)
            if not self._qualifies(category, track, policy, window, len(text)):
                continue
            self._arm(category, track, delay)
            armed.append(category)
        return armed

    def schedule(
        self,
        category: SuggestionCategory | str,
        delay: float | None = None,
        *,
        force: bool = False,
    ) -> None:
        """Arm ``category`` explicitly; ``force`` skips the change checks at fire time."""

        if self._closed:
            return
        track = self._track(category)
        track.forced = track.forced or force
        self._arm(SuggestionCategory.coerce(category), track, self._config.base_debounce if delay is None else delay)

    def debounce_delay(self, edit_size: int, document_length: int, caret: int) -> float:
        """Return the adaptive debounce for an edit of ``edit_size`` characters."""

        config = self._config
        margin = config.window.edge_margin
        large = edit_size >= config.large_edit_chars
        if not large and document_length > 2 * margin and (
            caret <= margin or caret >= document_length - margin
        ):
            return min(config.short_debounce, config.max_debounce)
        delay = config.base_debounce
        if large:
            delay += config.large_edit_penalty
        if config.long_document_chars > 0:
            delay += config.long_document_penalty * (document_length // config.long_document_chars)
        return min(delay, config.max_debounce)

    def forget(self, category: SuggestionCategory | str, fingerprint: str) -> None:
        """Allow ``fingerprint`` to be analysed again for ``category``."""

        self._track(category).recent.pop(fingerprint, None)

    def reset(self, category: SuggestionCategory | str | None = None) -> None:
        """Forget all change-detection history (fingerprints and lengths)."""

        for track in self._select(category):
            track.recent.clear()
            track.last_length = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def cancel(self, category: SuggestionCategory | str | None = None) -> None:
        """Cancel pending timers; in-flight calls keep running."""

        for track in self._select(category):
            if track.timer is not None:
                track.timer.cancel()
                track.timer = None
            track.forced = False
            track.state = CategoryState.IN_FLIGHT if track.tasks else CategoryState.IDLE

    async def drain(self) -> None:
        """Wait until every dispatched pass has finished."""

        while True:
            tasks = [task for track in self._tracks.values() for task in track.tasks]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        self._closed = True
        self.cancel()
        await self.drain()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _track(self, category: SuggestionCategory | str) -> _Track:
        resolved = SuggestionCategory.coerce(category)
        track = self._tracks.get(resolved)
        if track is None:
            raise KeyError(f"Category {resolved.value!r} is not enabled")
        return track

    def _select(self, category: SuggestionCategory | str | None) -> list[_Track]:
        if category is None:
            return list(self._tracks.values())
        return [self._track(category)]

    def _qualifies(
        self,
        category: SuggestionCategory,
        track: _Track,
        policy: CategoryPolicy,
        window: AnalysisWindow,
        length: int,
    ) -> bool:
        if window.fingerprint in track.recent:
            LOGGER.debug("%s window %s already analysed", category.value, window.fingerprint)
            return False
        if track.last_length is not None and abs(length - track.last_length) <= self._config.length_threshold:
            return False
        window_config = self._config.window
        if not has_substance(window.text, window_config.min_window_chars, window_config.min_window_words):
            return False
        return policy.qualifies(window)

    def _arm(self, category: SuggestionCategory, track: _Track, delay: float) -> None:
        loop = self._loop or asyncio.get_running_loop()
        if track.timer is not None:
            track.timer.cancel()
        track.timer = loop.call_later(max(0.0, delay), self._fire, category)
        track.state = CategoryState.SCHEDULED
        if self._bus is not None:
            self._bus.publish(AnalysisScheduled(category.value, delay))

    def _fire(self, category: SuggestionCategory) -> None:
        track = self._tracks[category]
        track.timer = None
        forced, track.forced = track.forced, False
        if self._closed:
            track.state = CategoryState.IN_FLIGHT if track.tasks else CategoryState.IDLE
            return
        self._start(category, forced)

    async def run_now(self, category: SuggestionCategory | str) -> bool:
        """Dispatch ``category`` immediately and wait for the pass to finish.

        Returns ``False`` when there was nothing to analyse.
        """

        resolved = SuggestionCategory.coerce(category)
        track = self._track(resolved)
        if track.timer is not None:
            track.timer.cancel()
            track.timer = None
        track.forced = False
        task = self._start(resolved, True)
        if task is None:
            return False
        await asyncio.gather(task, return_exceptions=True)
        return True

    def _start(self, category: SuggestionCategory, forced: bool) -> asyncio.Task[None] | None:
        track = self._tracks[category]
        text, caret = self._snapshot()
        policy = self.policy(category)
        window = policy.window_for(text, caret, self._config.window)
        seen = window.fingerprint in track.recent and (not forced or policy.once_per_window)
        if not window.text.strip() or seen or policy.too_short(window):
            LOGGER.debug("Skipping %s pass; nothing new to analyse", category.value)
            track.state = CategoryState.IN_FLIGHT if track.tasks else CategoryState.IDLE
            return None

        previous_length = track.last_length
        track.recent[window.fingerprint] = None
        track.recent.move_to_end(window.fingerprint)
        while len(track.recent) > self._config.recent_fingerprints:
            track.recent.popitem(last=False)
        track.last_length = len(text)
        track.state = CategoryState.IN_FLIGHT

        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._run(category, window, previous_length))
        track.tasks.add(task)
        task.add_done_callback(lambda done: self._finished(category, done))
        return task

    async def _run(self, category: SuggestionCategory, window: AnalysisWindow, previous_length: int | None) -> None:
        track = self._tracks[category]
        try:
            await self._dispatch(category, window)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.debug("%s pass for %s failed; allowing a retry", category.value, window.fingerprint, exc_info=True)
            self.forget(category, window.fingerprint)
            track.last_length = previous_length

    def _finished(self, category: SuggestionCategory, task: asyncio.Task[None]) -> None:
        track = self._tracks[category]
        track.tasks.discard(task)
        if track.timer is not None:
            track.state = CategoryState.SCHEDULED
        elif track.tasks:
            track.state = CategoryState.IN_FLIGHT
        else:
            track.state = CategoryState.IDLE
