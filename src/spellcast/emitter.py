"""Gesture selection and debounced event emission."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from spellcast.gestures import GestureDefinition, GestureRegistry, finger_extensions
from spellcast.patterns import MotionPattern
from spellcast.pose import Handedness, HandPoseSample


@dataclass
class DetectionEvent:
    """A detected gesture with metadata."""
    gesture_id: str
    name: str
    score: float
    timestamp: float
    handedness: Handedness
    motion: bool = False
    discipline: str = ""


class GestureEmitter:
    """Picks the gesture a sample shows and decides whether to emit it.

    Motion gestures win over static ones: the first registered motion
    gesture whose pattern equals the active motion pattern is selected.
    Otherwise the highest-scoring static match is. Holding the same gesture
    emits on every tick; switching to a different gesture is throttled to
    one emission per ``cooldown`` seconds.
    """

    def __init__(self, registry: GestureRegistry, cooldown: float = 0.3, motion_score: float = 0.9):
        self.registry = registry
        self.cooldown = cooldown
        self.motion_score = motion_score
        self._last_emitted_id: Optional[str] = None
        self._last_emit_time: Optional[float] = None
        self._last_candidate_id: Optional[str] = None

    def select(
        self,
        sample: HandPoseSample,
        motion: MotionPattern = MotionPattern.NONE,
        extensions: Optional[np.ndarray] = None,
    ) -> Optional[tuple[GestureDefinition, float]]:
        """Return the (gesture, score) this sample matches best, or None."""
        if motion is not MotionPattern.NONE:
            for gesture in self.registry.motion_gestures:
                matched, score = gesture.match(sample, motion=motion, motion_score=self.motion_score)
                if matched:
                    return gesture, score

        statics = self.registry.static_gestures
        if not statics:
            return None
        if extensions is None:
            extensions = finger_extensions(sample.landmarks)

        best: Optional[tuple[GestureDefinition, float]] = None
        for gesture in statics:
            matched, score = gesture.match(sample, extensions=extensions)
            if matched and (best is None or score > best[1]):
                best = (gesture, score)
        return best

    def process(
        self,
        sample: Optional[HandPoseSample],
        motion: MotionPattern,
        now: float,
        extensions: Optional[np.ndarray] = None,
    ) -> Optional[DetectionEvent]:
        """Select a gesture for this tick and apply the debounce rule."""
        if sample is None:
            return None
        candidate = self.select(sample, motion, extensions)
        if candidate is None:
            return None

        gesture, score = candidate
        holding = gesture.id == self._last_emitted_id and gesture.id == self._last_candidate_id
        self._last_candidate_id = gesture.id
        if not holding and not self._cooled_down(now):
            return None

        self._last_emitted_id = gesture.id
        self._last_emit_time = now
        return DetectionEvent(
            gesture_id=gesture.id,
            name=gesture.name,
            score=score,
            timestamp=now,
            handedness=sample.handedness,
            motion=gesture.is_motion,
            discipline=gesture.discipline,
        )

    def _cooled_down(self, now: float) -> bool:
        return self._last_emit_time is None or now - self._last_emit_time > self.cooldown

    def reset(self):
        self._last_emitted_id = None
        self._last_emit_time = None
        self._last_candidate_id = None
