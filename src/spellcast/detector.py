"""Pose source backed by MediaPipe Hands.

Turns an RGB frame into at most one ``HandPoseSample``. MediaPipe is an
optional dependency (``pip install spellcast[camera]``).
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Optional

import numpy as np

from spellcast.pose import Handedness, HandPoseSample

try:
    import mediapipe as mp
except ImportError:
    mp = None


def sample_from_result(
    results: Any,
    timestamp: float,
    flip_handedness: bool = False,
) -> Optional[HandPoseSample]:
    """Build a sample from the first hand of a MediaPipe Hands result, or None."""
    if not getattr(results, "multi_hand_landmarks", None):
        return None

    landmarks = np.array(
        [[lm.x, lm.y, lm.z] for lm in results.multi_hand_landmarks[0].landmark],
        dtype=np.float32,
    )

    label, score = "right", 1.0
    if getattr(results, "multi_handedness", None):
        classification = results.multi_handedness[0].classification[0]
        label, score = classification.label.lower(), float(classification.score)
    hand = Handedness.parse(label)
    if flip_handedness:
        hand = Handedness.LEFT if hand is Handedness.RIGHT else Handedness.RIGHT

    try:
        return HandPoseSample(timestamp=timestamp, landmarks=landmarks, handedness=hand, score=score)
    except ValueError:
        return None


class HandPoseSource:
    """Single-hand landmark estimation using MediaPipe Hands.

    MediaPipe labels handedness assuming a mirrored (selfie) image; pass
    ``flip_handedness=True`` when frames are not mirrored.
    """

    def __init__(
        self,
        min_detection_confidence: float = 0.7,
        min_tracking_confidence: float = 0.5,
        flip_handedness: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        if mp is None:
            raise ImportError(
                "mediapipe is required. Install with: pip install spellcast[camera]"
            )

        self.flip_handedness = flip_handedness
        self._clock = clock
        self._hands = mp.solutions.hands.Hands(
            static_image_mode=False,
            max_num_hands=1,
            min_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
        )

    def detect(self, frame_rgb: np.ndarray) -> Optional[HandPoseSample]:
        """Blocking estimate for an RGB (H, W, 3) uint8 frame."""
        results = self._hands.process(frame_rgb)
        return sample_from_result(results, self._clock(), self.flip_handedness)

    async def estimate(self, frame_rgb: np.ndarray) -> Optional[HandPoseSample]:
        """Estimate off the event loop thread."""
        return await asyncio.to_thread(self.detect, frame_rgb)

    def close(self):
        """Release MediaPipe resources."""
        self._hands.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
