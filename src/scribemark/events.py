"""Event bus through which renderers observe the suggestion engine.

Handlers run synchronously on the publishing (event loop) thread.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, DefaultDict, TypeVar
from weakref import WeakMethod

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[Any], None]


@dataclass(slots=True)
class Event:
    """Base class for all engine events."""


# =============================================================================
# Analysis lifecycle
# =============================================================================


@dataclass(slots=True)
class AnalysisScheduled(Event):
    """A category's debounce timer was (re)armed.

    Attributes:
        category: Suggestion category value.
        delay: Debounce delay in seconds.
    """

    category: str
    delay: float


@dataclass(slots=True)
class AnalysisStarted(Event):
    category: str
    fingerprint: str
    window_start: int
    window_end: int


@dataclass(slots=True)
class AnalysisCompleted(Event):
    """Results for a category were reconciled onto the document.

    Attributes:
        category: Suggestion category value.
        fingerprint: Fingerprint of the analysed window.
        annotation_count: Active annotations of the category afterwards.
    """

    category: str
    fingerprint: str
    annotation_count: int


@dataclass(slots=True)
class AnalysisFailed(Event):
    """The analysis service failed for a category; existing annotations stay."""

    category: str
    message: str


@dataclass(slots=True)
class StaleResultDiscarded(Event):
    category: str
    fingerprint: str


# =============================================================================
# Overlay / user actions
# =============================================================================


@dataclass(slots=True)
class AnnotationsChanged(Event):
    category: str
    count: int


@dataclass(slots=True)
class SuggestionAccepted(Event):
    category: str
    annotation_id: str
    replacement: str


@dataclass(slots=True)
class SuggestionDismissed(Event):
    category: str
    annotation_id: str


_QUIET_EVENT_TYPES: set[type] = {AnalysisScheduled}


class EventBus:
    """Typed publish/subscribe hub.

    Bound methods are held through :class:`~weakref.WeakMethod` so a
    discarded subscriber does not keep receiving events; plain functions are
    held strongly.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> None:
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug("Subscribed %s to %s", _handler_name(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Callable[[E], None]) -> None:
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        for index, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(index)
                return

    def publish(self, event: Event) -> None:
        """Deliver ``event`` to every handler; a failing handler does not stop delivery."""

        event_type = type(event)
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        if event_type not in _QUIET_EVENT_TYPES:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead: list[_HandlerRef] = []
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
        for handler_ref in dead:
            handlers.remove(handler_ref)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[Event] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: Any, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if self._is_weak:
            return self._ref()
        return self._ref

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Any) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


__all__ = [
    "AnalysisCompleted",
    "AnalysisFailed",
    "AnalysisScheduled",
    "AnalysisStarted",
    "AnnotationsChanged",
    "Event",
    "EventBus",
    "StaleResultDiscarded",
    "SuggestionAccepted",
    "SuggestionDismissed",
]
