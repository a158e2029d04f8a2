"""Per-stage timing of pipeline ticks.

Kept out of the matching code: the pipeline wraps each stage of a tick in
``profiler.stage(...)`` and nothing below it knows it is being measured.
"""

from __future__ import annotations

import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np


@dataclass
class StageStats:
    """Timing statistics for one stage over the recent window."""
    name: str
    avg_ms: float
    min_ms: float
    max_ms: float
    p95_ms: float
    call_count: int


class PipelineProfiler:
    """Rolling per-stage timings in milliseconds.

    Usage:
        profiler = PipelineProfiler()

        with profiler.stage("extraction"):
            ext = finger_extensions(sample.landmarks)

        print(profiler.summary())
    """

    STAGES = ("extraction", "motion", "emission", "sequence_scan", "total")

    def __init__(self, window_size: int = 120, enabled: bool = True):
        self._window_size = window_size
        self._samples: dict[str, deque[float]] = {}
        self._calls: dict[str, int] = {}
        self.enabled = enabled
        for name in self.STAGES:
            self._ensure(name)

    def _ensure(self, name: str):
        if name not in self._samples:
            self._samples[name] = deque(maxlen=self._window_size)
            self._calls[name] = 0

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time the body of the ``with`` block under ``name``."""
        if not self.enabled:
            yield
            return
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.record(name, (time.perf_counter() - t0) * 1000.0)

    def record(self, name: str, elapsed_ms: float):
        self._ensure(name)
        self._samples[name].append(elapsed_ms)
        self._calls[name] += 1

    def get_stage_stats(self, name: str) -> Optional[StageStats]:
        window = self._samples.get(name)
        if not window:
            return None
        arr = np.fromiter(window, dtype=np.float64)
        return StageStats(
            name=name,
            avg_ms=float(arr.mean()),
            min_ms=float(arr.min()),
            max_ms=float(arr.max()),
            p95_ms=float(np.percentile(arr, 95)),
            call_count=self._calls[name],
        )

    def summary(self) -> dict[str, dict]:
        """Stats of every stage that has run, rounded for display."""
        out = {}
        for name in self._samples:
            stats = self.get_stage_stats(name)
            if stats is None:
                continue
            out[name] = {
                "avg_ms": round(stats.avg_ms, 3),
                "min_ms": round(stats.min_ms, 3),
                "max_ms": round(stats.max_ms, 3),
                "p95_ms": round(stats.p95_ms, 3),
                "calls": stats.call_count,
            }
        return out

    def reset(self):
        for name in self._samples:
            self._samples[name].clear()
            self._calls[name] = 0
