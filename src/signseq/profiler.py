"""Stage timing for the recognition loop.

Keeps a rolling window of durations per stage so the session can check
classification against the per-frame budget and report averages.
"""

from __future__ import annotations

import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass
class StageStats:
    name: str
    avg_ms: float
    max_ms: float
    p95_ms: float
    last_ms: float
    call_count: int


class PipelineProfiler:
    """Times named stages with `time.perf_counter`.

    Usage:
        profiler = PipelineProfiler()
        with profiler.stage("classification"):
            result = classifier.predict(sequence)
        profiler.last_ms("classification")
    """

    STAGES = ("detection", "feature_extraction", "classification")

    def __init__(self, window_size: int = 120, enabled: bool = True):
        self._window_size = window_size
        self._timings: dict[str, deque[float]] = {}
        self._counts: dict[str, int] = {}
        self.enabled = enabled
        for name in self.STAGES:
            self._register(name)

    def _register(self, name: str):
        self._timings[name] = deque(maxlen=self._window_size)
        self._counts[name] = 0

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        if not self.enabled:
            yield
            return
        if name not in self._timings:
            self._register(name)

        t0 = time.perf_counter()
        try:
            yield
        finally:
            self._timings[name].append((time.perf_counter() - t0) * 1000.0)
            self._counts[name] += 1

    def last_ms(self, name: str) -> Optional[float]:
        timings = self._timings.get(name)
        return timings[-1] if timings else None

    def get_stage_stats(self, name: str) -> Optional[StageStats]:
        timings = self._timings.get(name)
        if not timings:
            return None
        ordered = sorted(timings)
        n = len(ordered)
        return StageStats(
            name=name,
            avg_ms=sum(ordered) / n,
            max_ms=ordered[-1],
            p95_ms=ordered[min(n - 1, int(n * 0.95))],
            last_ms=timings[-1],
            call_count=self._counts[name],
        )

    def summary(self) -> dict[str, dict]:
        result = {}
        for name in self._timings:
            stats = self.get_stage_stats(name)
            if stats is None:
                continue
            result[name] = {
                "avg_ms": round(stats.avg_ms, 3),
                "max_ms": round(stats.max_ms, 3),
                "p95_ms": round(stats.p95_ms, 3),
                "calls": stats.call_count,
            }
        return result

    def reset(self):
        for timings in self._timings.values():
            timings.clear()
        for name in self._counts:
            self._counts[name] = 0
