"""Wrist trajectory tracking with an idle/active state machine.

The tracker samples the wrist at a fixed rate into a short FIFO buffer,
decides whether the hand is moving, and runs the motion classifier over
the buffer while it is. The classified pattern is held (hysteresis) until
nothing has been recognized for a grace period.

Usage:
    tracker = TrajectoryTracker(EngineConfig())
    # In frame loop:
    pattern = tracker.update(sample.wrist if sample else None, now)
    if pattern is not MotionPattern.NONE:
        print(f"Motion: {pattern.value}")
"""

from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Optional

import numpy as np

from spellcast.config import EngineConfig
from spellcast.geometry import distance
from spellcast.patterns import MotionPattern, classify_trajectory

# Absorbs float error in timestamps built from repeated additions
SAMPLE_TOLERANCE = 1e-6


class ActivityState(Enum):
    IDLE = "idle"
    ACTIVE = "active"


class TrajectoryTracker:
    """Motion position buffer, activity state machine and pattern hysteresis.

    Args:
        config: Engine settings (buffer size, sample interval, movement
            threshold, timeouts, classifier thresholds).
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self._buffer: deque[tuple[float, np.ndarray]] = deque(maxlen=self.config.motion_buffer_size)
        self._state = ActivityState.IDLE
        self._active_pattern = MotionPattern.NONE
        self._last_sample_time: Optional[float] = None
        self._last_movement_time: Optional[float] = None
        self._last_hand_time: Optional[float] = None
        self._last_recognized_time: Optional[float] = None
        self._classifications = 0

    @property
    def state(self) -> ActivityState:
        return self._state

    @property
    def active_pattern(self) -> MotionPattern:
        return self._active_pattern

    @property
    def classifications(self) -> int:
        """Number of classifier runs since construction."""
        return self._classifications

    @property
    def points(self) -> np.ndarray:
        """Buffered positions, oldest first, shape (N, 3)."""
        if not self._buffer:
            return np.empty((0, 3), dtype=np.float64)
        return np.stack([p for _, p in self._buffer])

    @property
    def times(self) -> np.ndarray:
        return np.array([t for t, _ in self._buffer], dtype=np.float64)

    def __len__(self) -> int:
        return len(self._buffer)

    def update(self, position: Optional[np.ndarray], now: float) -> MotionPattern:
        """Feed one tick. ``position`` is the wrist, or None when no hand is visible.

        Returns the currently active motion pattern.
        """
        if position is None:
            self._on_missing_hand(now)
        else:
            self._last_hand_time = now
            if self._sample_due(now):
                self._last_sample_time = now
                self._sample(np.asarray(position, dtype=np.float64), now)

        self._expire_pattern(now)
        return self._active_pattern

    def reset(self):
        """Clear the buffer, go idle and drop the active pattern."""
        self._buffer.clear()
        self._state = ActivityState.IDLE
        self._active_pattern = MotionPattern.NONE
        self._last_sample_time = None
        self._last_movement_time = None
        self._last_recognized_time = None
        self._last_hand_time = None

    def _sample_due(self, now: float) -> bool:
        if self._last_sample_time is None:
            return True
        return now - self._last_sample_time >= self.config.sample_interval - SAMPLE_TOLERANCE

    def _sample(self, position: np.ndarray, now: float):
        if not self._buffer:
            self._buffer.append((now, position))
            return

        moved = distance(position, self._buffer[-1][1])
        if moved > self.config.movement_threshold:
            self._state = ActivityState.ACTIVE
            self._buffer.append((now, position))
            self._last_movement_time = now
        elif self._state is ActivityState.ACTIVE:
            if self._inactive_too_long(now):
                self._go_idle()
                self._buffer.append((now, position))
        else:
            # Resting hand: keep the seed on the current position
            self._buffer[-1] = (now, position)

        if self._state is ActivityState.ACTIVE and len(self._buffer) >= self.config.motion.min_points:
            self._classify(now)

    def _classify(self, now: float):
        self._classifications += 1
        pattern = classify_trajectory(self.points, self.times, self.config.motion)
        if pattern is not MotionPattern.NONE:
            self._active_pattern = pattern
            self._last_recognized_time = now

    def _on_missing_hand(self, now: float):
        if self._last_hand_time is not None and now - self._last_hand_time > self.config.lost_hand_timeout:
            self.reset()
            return
        if self._state is ActivityState.ACTIVE and self._inactive_too_long(now):
            self._go_idle()

    def _inactive_too_long(self, now: float) -> bool:
        return (
            self._last_movement_time is not None
            and now - self._last_movement_time > self.config.inactivity_timeout
        )

    def _go_idle(self):
        self._state = ActivityState.IDLE
        self._buffer.clear()
        self._last_movement_time = None

    def _expire_pattern(self, now: float):
        if self._active_pattern is MotionPattern.NONE:
            return
        if (
            self._last_recognized_time is None
            or now - self._last_recognized_time > self.config.pattern_grace_period
        ):
            self._active_pattern = MotionPattern.NONE
            self._last_recognized_time = None
