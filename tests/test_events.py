"""Tests for the engine event bus."""

from __future__ import annotations

import gc
from unittest.mock import MagicMock

import pytest

from scribemark.events import AnalysisCompleted, AnalysisFailed, AnnotationsChanged, EventBus


class Subscriber:
    def __init__(self) -> None:
        self.received: list[AnnotationsChanged] = []

    def on_changed(self, event: AnnotationsChanged) -> None:
        self.received.append(event)


class TestEventBus:
    def test_publish_reaches_matching_handlers_only(self) -> None:
        bus = EventBus()
        changed = MagicMock()
        failed = MagicMock()
        bus.subscribe(AnnotationsChanged, changed)
        bus.subscribe(AnalysisFailed, failed)

        event = AnnotationsChanged("grammar", 2)
        bus.publish(event)

        changed.assert_called_once_with(event)
        failed.assert_not_called()

    def test_failing_handler_does_not_stop_delivery(self, caplog: pytest.LogCaptureFixture) -> None:
        bus = EventBus()
        survivor = MagicMock()
        bus.subscribe(AnalysisCompleted, MagicMock(side_effect=RuntimeError("boom")))
        bus.subscribe(AnalysisCompleted, survivor)

        bus.publish(AnalysisCompleted("grammar", "0000abcd", 1))

        survivor.assert_called_once()
        assert "raised for event AnalysisCompleted" in caplog.text

    def test_unsubscribe(self) -> None:
        bus = EventBus()
        handler = MagicMock()
        bus.subscribe(AnnotationsChanged, handler)
        bus.unsubscribe(AnnotationsChanged, handler)
        bus.unsubscribe(AnalysisFailed, handler)

        bus.publish(AnnotationsChanged("grammar", 0))

        handler.assert_not_called()
        assert bus.handler_count() == 0

    def test_bound_methods_are_weak(self) -> None:
        bus = EventBus()
        subscriber = Subscriber()
        bus.subscribe(AnnotationsChanged, subscriber.on_changed)

        bus.publish(AnnotationsChanged("grammar", 1))
        assert len(subscriber.received) == 1

        del subscriber
        gc.collect()
        bus.publish(AnnotationsChanged("grammar", 0))

        assert bus.handler_count(AnnotationsChanged) == 0

    def test_clear(self) -> None:
        bus = EventBus()
        bus.subscribe(AnnotationsChanged, MagicMock())
        bus.clear()
        assert bus.handler_count() == 0
