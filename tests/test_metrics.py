"""Tests for request latency bookkeeping and pacing."""

from __future__ import annotations

import asyncio
import logging

import pytest

from scribemark.suggestions.metrics import LatencySummary, RequestMetrics, RequestPacer
from scribemark.suggestions.models import SuggestionCategory


class TestRequestMetrics:
    def test_summary_statistics(self) -> None:
        metrics = RequestMetrics()
        for duration in (120.0, 80.0, 100.0):
            metrics.record("grammar", duration)

        summary = metrics.summary(SuggestionCategory.GRAMMAR)

        assert summary == LatencySummary(count=3, min_ms=80.0, max_ms=120.0, avg_ms=100.0)
        assert metrics.summary("evidence") is None

    def test_only_recent_samples_are_kept(self) -> None:
        metrics = RequestMetrics()
        for duration in range(150):
            metrics.record("grammar", float(duration))

        summary = metrics.summary("grammar")

        assert summary is not None
        assert summary.count == 100
        assert summary.min_ms == 50.0
        assert summary.max_ms == 149.0

    def test_failures_are_counted_apart(self) -> None:
        metrics = RequestMetrics()
        metrics.record("argument", 3000.0, failed=True)

        assert metrics.summary("argument") == LatencySummary(0, 0.0, 0.0, 0.0, failures=1)
        metrics.record("argument", 40.0)
        assert metrics.to_dict() == {
            "argument": {"count": 1, "min_ms": 40.0, "max_ms": 40.0, "avg_ms": 40.0, "failures": 1}
        }

    def test_measure_records_success_and_failure(self) -> None:
        metrics = RequestMetrics()
        with metrics.measure("grammar"):
            pass
        with pytest.raises(RuntimeError):
            with metrics.measure("grammar"):
                raise RuntimeError("boom")

        summary = metrics.summary("grammar")
        assert summary is not None
        assert (summary.count, summary.failures) == (1, 1)

    def test_slow_requests_are_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        metrics = RequestMetrics(slow_request_ms=500.0)
        with caplog.at_level(logging.DEBUG, logger="scribemark.suggestions.metrics"):
            metrics.record("grammar", 200.0)
            metrics.record("grammar", 900.0)

        warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
        assert [record.getMessage() for record in warnings] == ["Slow grammar request: 900.00ms"]

    def test_log_summary_and_reset(self, caplog: pytest.LogCaptureFixture) -> None:
        metrics = RequestMetrics()
        metrics.record("evidence", 10.0)
        with caplog.at_level(logging.INFO, logger="scribemark.suggestions.metrics"):
            metrics.log_summary()
        assert "evidence requests: avg 10.00ms" in caplog.text

        metrics.reset()
        assert metrics.to_dict() == {}

    def test_unknown_category_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            RequestMetrics().record("style", 1.0)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestRequestPacer:
    @pytest.mark.asyncio
    async def test_zero_interval_never_waits(self) -> None:
        pacer = RequestPacer()
        assert [await pacer.wait_turn() for _ in range(3)] == [0.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_starts_are_spaced(self, monkeypatch: pytest.MonkeyPatch) -> None:
        clock = FakeClock()
        slept: list[float] = []

        async def fake_sleep(delay: float) -> None:
            slept.append(delay)
            clock.now += delay

        monkeypatch.setattr("scribemark.suggestions.metrics.asyncio.sleep", fake_sleep)
        pacer = RequestPacer(0.1, clock=clock)

        assert await pacer.wait_turn() == 0.0
        clock.now += 0.04
        waited = await pacer.wait_turn()
        clock.now += 0.5
        late = await pacer.wait_turn()

        assert waited == pytest.approx(0.06)
        assert slept == [pytest.approx(0.06)]
        assert late == 0.0

    @pytest.mark.asyncio
    async def test_concurrent_callers_take_turns(self) -> None:
        pacer = RequestPacer(0.02)
        loop = asyncio.get_running_loop()
        started: list[float] = []

        async def request() -> None:
            await pacer.wait_turn()
            started.append(loop.time())

        await asyncio.gather(*(request() for _ in range(3)))

        gaps = [later - earlier for earlier, later in zip(started, started[1:])]
        assert all(gap >= 0.015 for gap in gaps)
