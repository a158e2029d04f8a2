"""Hand pose samples and the rolling pose history used by sequence matching."""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Optional

import numpy as np

from spellcast.patterns import MotionPattern

# Canonical hand skeleton (MediaPipe ordering)
WRIST = 0
THUMB_CMC, THUMB_MCP, THUMB_IP, THUMB_TIP = 1, 2, 3, 4
INDEX_MCP, INDEX_PIP, INDEX_DIP, INDEX_TIP = 5, 6, 7, 8
MIDDLE_MCP, MIDDLE_PIP, MIDDLE_DIP, MIDDLE_TIP = 9, 10, 11, 12
RING_MCP, RING_PIP, RING_DIP, RING_TIP = 13, 14, 15, 16
PINKY_MCP, PINKY_PIP, PINKY_DIP, PINKY_TIP = 17, 18, 19, 20

NUM_LANDMARKS = 21
LANDMARK_DIM = 3  # x, y, z

FINGER_NAMES = ("thumb", "index", "middle", "ring", "pinky")
FINGER_JOINTS = (
    (THUMB_CMC, THUMB_MCP, THUMB_IP, THUMB_TIP),
    (INDEX_MCP, INDEX_PIP, INDEX_DIP, INDEX_TIP),
    (MIDDLE_MCP, MIDDLE_PIP, MIDDLE_DIP, MIDDLE_TIP),
    (RING_MCP, RING_PIP, RING_DIP, RING_TIP),
    (PINKY_MCP, PINKY_PIP, PINKY_DIP, PINKY_TIP),
)


class Handedness(Enum):
    """Which hand a sample shows, or which hand a gesture requires."""
    LEFT = "left"
    RIGHT = "right"
    ANY = "any"  # only valid as a gesture requirement

    @classmethod
    def parse(cls, value: Any) -> Handedness:
        if isinstance(value, Handedness):
            return value
        return cls(str(value).strip().lower())

    def accepts(self, other: Handedness) -> bool:
        """True if a sample of hand ``other`` satisfies this requirement."""
        return self is Handedness.ANY or self is other


@dataclass(frozen=True)
class HandPoseSample:
    """One frame's detected hand.

    Landmarks are a read-only (21, 3) float32 array. Construction fails with
    ValueError for anything that is not a complete, finite skeleton with a
    concrete handedness and a score in [0, 1].
    """
    timestamp: float
    landmarks: np.ndarray
    handedness: Handedness
    score: float

    def __post_init__(self):
        lm = np.array(self.landmarks, dtype=np.float32)
        if lm.shape != (NUM_LANDMARKS, LANDMARK_DIM):
            raise ValueError(
                f"expected ({NUM_LANDMARKS}, {LANDMARK_DIM}) landmarks, got {lm.shape}"
            )
        if not np.all(np.isfinite(lm)):
            raise ValueError("landmarks contain non-finite values")

        handedness = Handedness.parse(self.handedness)
        if handedness is Handedness.ANY:
            raise ValueError("a sample must be a left or right hand")

        score = float(self.score)
        if not 0.0 <= score <= 1.0:
            raise ValueError(f"score {score} outside [0, 1]")

        lm.flags.writeable = False
        object.__setattr__(self, "landmarks", lm)
        object.__setattr__(self, "handedness", handedness)
        object.__setattr__(self, "score", score)
        object.__setattr__(self, "timestamp", float(self.timestamp))

    @property
    def wrist(self) -> np.ndarray:
        return self.landmarks[WRIST]

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "landmarks": self.landmarks.tolist(),
            "handedness": self.handedness.value,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> HandPoseSample:
        return cls(
            timestamp=data["timestamp"],
            landmarks=np.asarray(data["landmarks"], dtype=np.float32),
            handedness=Handedness.parse(data["handedness"]),
            score=data["score"],
        )


def validate_sample(candidate: Any) -> Optional[HandPoseSample]:
    """Coerce pose-source output into a sample, or None when it is unusable.

    Accepts a HandPoseSample, a mapping with the ``to_dict`` keys, or None.
    Malformed input (wrong landmark count, missing handedness or score) is
    reported as "no hand" rather than raised.
    """
    if candidate is None or isinstance(candidate, HandPoseSample):
        return candidate
    if isinstance(candidate, Mapping):
        try:
            return HandPoseSample.from_dict(candidate)
        except (KeyError, TypeError, ValueError):
            return None
    return None


@dataclass(frozen=True)
class BufferedPose:
    """A pose in the history, with the motion pattern active when it arrived."""
    sample: HandPoseSample
    motion: MotionPattern = MotionPattern.NONE

    @property
    def timestamp(self) -> float:
        return self.sample.timestamp


class PoseBuffer:
    """Fixed-capacity FIFO of recent poses (oldest evicted first)."""

    def __init__(self, capacity: int = 30):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._entries: deque[BufferedPose] = deque(maxlen=capacity)

    def append(self, sample: HandPoseSample, motion: MotionPattern = MotionPattern.NONE):
        self._entries.append(BufferedPose(sample=sample, motion=motion))

    def recent(self, n: int) -> list[BufferedPose]:
        """The newest ``n`` entries, oldest first."""
        if n <= 0:
            return []
        return list(self._entries)[-n:]

    @property
    def latest(self) -> Optional[BufferedPose]:
        return self._entries[-1] if self._entries else None

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[BufferedPose]:
        return iter(self._entries)
