"""Prometheus text-format metrics for the recognition pipeline.

Generates the exposition format directly; no client library needed.

Tracked metrics:
- spellcast_detections_total (counter, by gesture id)
- spellcast_sequences_total (counter, by sequence id)
- spellcast_motion_patterns_total (counter, by pattern)
- spellcast_frames_total / spellcast_hands_total (counters)
- spellcast_source_failures_total (counter)
- spellcast_tick_latency_seconds (histogram)
"""

from __future__ import annotations

import threading
import time
from collections import Counter

LATENCY_BUCKETS = (0.0005, 0.001, 0.002, 0.005, 0.010, 0.020, 0.050, 0.100)


class _Histogram:
    """Cumulative-bucket histogram."""

    def __init__(self, buckets):
        self.buckets = sorted(buckets)
        self.bucket_counts = [0] * len(self.buckets)
        self.count = 0
        self.sum = 0.0

    def observe(self, value: float):
        self.count += 1
        self.sum += value
        for i, bound in enumerate(self.buckets):
            if value <= bound:
                self.bucket_counts[i] += 1

    def render(self, name: str, help_text: str) -> list[str]:
        lines = [f"# HELP {name} {help_text}", f"# TYPE {name} histogram"]
        for bound, count in zip(self.buckets, self.bucket_counts):
            lines.append(f'{name}_bucket{{le="{bound}"}} {count}')
        lines.append(f'{name}_bucket{{le="+Inf"}} {self.count}')
        lines.append(f"{name}_sum {self.sum:.6f}")
        lines.append(f"{name}_count {self.count}")
        return lines


def _counter_block(name: str, help_text: str, label: str, counts: Counter) -> list[str]:
    lines = [f"# HELP {name} {help_text}", f"# TYPE {name} counter"]
    for key, count in sorted(counts.items()):
        lines.append(f'{name}{{{label}="{key}"}} {count}')
    return lines


class MetricsCollector:
    """Counts what the pipeline detects and how long ticks take."""

    def __init__(self):
        self._lock = threading.Lock()
        self._detections: Counter = Counter()
        self._sequences: Counter = Counter()
        self._motion_patterns: Counter = Counter()
        self._frames_total = 0
        self._hands_total = 0
        self._source_failures = 0
        self._latency = _Histogram(LATENCY_BUCKETS)
        self._start_time = time.monotonic()

    def record_detection(self, gesture_id: str):
        with self._lock:
            self._detections[gesture_id] += 1

    def record_sequence(self, sequence_id: str):
        with self._lock:
            self._sequences[sequence_id] += 1

    def record_motion_pattern(self, pattern: str):
        with self._lock:
            self._motion_patterns[pattern] += 1

    def record_source_failure(self):
        with self._lock:
            self._source_failures += 1

    def record_frame(self, latency_seconds: float, hand_present: bool):
        with self._lock:
            self._frames_total += 1
            if hand_present:
                self._hands_total += 1
            self._latency.observe(latency_seconds)

    @property
    def detection_counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._detections)

    @property
    def frames_total(self) -> int:
        return self._frames_total

    def render(self) -> str:
        """Render all metrics in Prometheus text exposition format."""
        with self._lock:
            blocks = [
                [
                    "# HELP spellcast_uptime_seconds Time since the collector was created",
                    "# TYPE spellcast_uptime_seconds gauge",
                    f"spellcast_uptime_seconds {time.monotonic() - self._start_time:.1f}",
                ],
                _counter_block("spellcast_detections_total", "Gesture detections by id",
                               "gesture", self._detections),
                _counter_block("spellcast_sequences_total", "Sequence matches by id",
                               "sequence", self._sequences),
                _counter_block("spellcast_motion_patterns_total", "Motion patterns recognized",
                               "pattern", self._motion_patterns),
                [
                    "# HELP spellcast_frames_total Ticks processed",
                    "# TYPE spellcast_frames_total counter",
                    f"spellcast_frames_total {self._frames_total}",
                ],
                [
                    "# HELP spellcast_hands_total Ticks with a usable hand sample",
                    "# TYPE spellcast_hands_total counter",
                    f"spellcast_hands_total {self._hands_total}",
                ],
                [
                    "# HELP spellcast_source_failures_total Pose source errors",
                    "# TYPE spellcast_source_failures_total counter",
                    f"spellcast_source_failures_total {self._source_failures}",
                ],
                self._latency.render("spellcast_tick_latency_seconds", "Tick processing latency in seconds"),
            ]
        return "\n\n".join("\n".join(block) for block in blocks) + "\n"
