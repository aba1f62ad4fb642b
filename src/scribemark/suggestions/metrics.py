"""Latency bookkeeping and pacing for analysis requests."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from .models import SuggestionCategory

__all__ = ["LatencySummary", "RequestMetrics", "RequestPacer"]

LOGGER = logging.getLogger(__name__)

_SAMPLE_LIMIT = 100
_SLOW_REQUEST_MS = 1000.0


@dataclass(slots=True, frozen=True)
class LatencySummary:
    """Latency statistics of the retained samples of one category.

    Attributes:
        count: Successful requests among the retained samples.
        min_ms: Fastest request in milliseconds.
        max_ms: Slowest request in milliseconds.
        avg_ms: Mean request time in milliseconds.
        failures: Failed requests since the last reset.
    """

    count: int
    min_ms: float
    max_ms: float
    avg_ms: float
    failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "min_ms": round(self.min_ms, 3),
            "max_ms": round(self.max_ms, 3),
            "avg_ms": round(self.avg_ms, 3),
            "failures": self.failures,
        }


class RequestMetrics:
    """Keeps the most recent request latencies per category.

    Only calls that reach the analysis service are measured; cache hits and
    joined in-flight requests are counted by the cache instead.
    """

    def __init__(self, *, sample_limit: int = _SAMPLE_LIMIT, slow_request_ms: float = _SLOW_REQUEST_MS) -> None:
        self._sample_limit = max(1, sample_limit)
        self._slow_request_ms = slow_request_ms
        self._samples: dict[SuggestionCategory, deque[float]] = {}
        self._failures: dict[SuggestionCategory, int] = {}

    @property
    def slow_request_ms(self) -> float:
        return self._slow_request_ms

    def record(self, category: SuggestionCategory | str, duration_ms: float, *, failed: bool = False) -> None:
        resolved = SuggestionCategory.coerce(category)
        duration_ms = max(0.0, duration_ms)
        if failed:
            self._failures[resolved] = self._failures.get(resolved, 0) + 1
            LOGGER.debug("%s request failed after %.2fms", resolved.value, duration_ms)
            return
        samples = self._samples.get(resolved)
        if samples is None:
            samples = self._samples[resolved] = deque(maxlen=self._sample_limit)
        samples.append(duration_ms)
        if self._slow_request_ms > 0 and duration_ms > self._slow_request_ms:
            LOGGER.warning("Slow %s request: %.2fms", resolved.value, duration_ms)
        else:
            LOGGER.debug("%s request took %.2fms", resolved.value, duration_ms)

    @contextmanager
    def measure(self, category: SuggestionCategory | str) -> Iterator[None]:
        """Time the enclosed request; a raised exception counts as a failure."""

        start = time.perf_counter()
        try:
            yield
        except BaseException:
            self.record(category, (time.perf_counter() - start) * 1000.0, failed=True)
            raise
        self.record(category, (time.perf_counter() - start) * 1000.0)

    def summary(self, category: SuggestionCategory | str) -> LatencySummary | None:
        """Return the statistics of ``category``, or ``None`` before its first request."""

        resolved = SuggestionCategory.coerce(category)
        samples = self._samples.get(resolved)
        failures = self._failures.get(resolved, 0)
        if not samples:
            if not failures:
                return None
            return LatencySummary(0, 0.0, 0.0, 0.0, failures)
        return LatencySummary(
            count=len(samples),
            min_ms=min(samples),
            max_ms=max(samples),
            avg_ms=sum(samples) / len(samples),
            failures=failures,
        )

    def to_dict(self) -> dict[str, dict[str, Any]]:
        categories = sorted({*self._samples, *self._failures}, key=lambda item: item.value)
        report: dict[str, dict[str, Any]] = {}
        for category in categories:
            summary = self.summary(category)
            if summary is not None:
                report[category.value] = summary.to_dict()
        return report

    def log_summary(self, level: int = logging.INFO) -> None:
        for name, summary in self.to_dict().items():
            LOGGER.log(
                level,
                "%s requests: avg %.2fms, min %.2fms, max %.2fms over %d sample(s), %d failure(s)",
                name,
                summary["avg_ms"],
                summary["min_ms"],
                summary["max_ms"],
                summary["count"],
                summary["failures"],
            )

    def reset(self) -> None:
        self._samples.clear()
        self._failures.clear()


class RequestPacer:
    """Spaces the starts of analysis requests at least ``min_interval`` seconds apart.

    Requests still run concurrently; only their starts are staggered, in the
    order callers asked for a turn.
    """

    def __init__(self, min_interval: float = 0.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._min_interval = max(0.0, min_interval)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_start: float | None = None

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def wait_turn(self) -> float:
        """Wait until a request may start; return the seconds spent waiting."""

        if self._min_interval <= 0:
            return 0.0
        async with self._lock:
            waited = 0.0
            if self._last_start is not None:
                remaining = self._last_start + self._min_interval - self._clock()
                if remaining > 0:
                    await asyncio.sleep(remaining)
                    waited = remaining
            self._last_start = self._clock()
            return waited
