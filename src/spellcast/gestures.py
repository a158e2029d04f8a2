"""Gesture definitions: finger-extension shapes and motion trajectories.

A gesture is either *static* (a target finger-extension pattern, scored
against a single pose) or *motion* (a target ``MotionPattern`` traced by the
wrist over several samples), never both.

Finger extension is the ratio of a finger's straight base-to-tip distance to
the length of its joint chain: 1.0 for a straight finger, shrinking toward 0
as the finger curls.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

import numpy as np
import yaml

from spellcast.patterns import MotionPattern
from spellcast.pose import FINGER_JOINTS, MIDDLE_MCP, WRIST, Handedness, HandPoseSample

EXTENSION_EPSILON = 0.001
# Index, middle and pinky carry the most shape information
FINGER_WEIGHTS = (0.8, 1.2, 1.2, 1.0, 1.2)
LENIENCY = 1.15


class RegistrationError(ValueError):
    """A gesture or sequence definition that cannot be registered."""


def finger_extensions(landmarks: np.ndarray) -> np.ndarray:
    """Compute the 5-element extension vector (thumb → pinky) for a (21, 3) hand.

    Values are clamped to [0, 1].
    """
    lm = np.asarray(landmarks, dtype=np.float64)
    palm_center = (lm[WRIST] + lm[MIDDLE_MCP]) / 2.0
    lm = lm - palm_center

    extensions = np.empty(len(FINGER_JOINTS), dtype=np.float64)
    for i, joints in enumerate(FINGER_JOINTS):
        chain = lm[list(joints)]
        max_length = np.linalg.norm(chain[-1] - chain[0])
        joints_length = np.sum(np.linalg.norm(np.diff(chain, axis=0), axis=1))
        extensions[i] = max_length / (joints_length + EXTENSION_EPSILON)

    return np.clip(extensions, 0.0, 1.0)


def match_finger_pattern(
    extensions: Sequence[float],
    target: Sequence[float],
    weights: Sequence[float] = FINGER_WEIGHTS,
    leniency: float = LENIENCY,
) -> float:
    """Score how well an extension vector matches a target pattern, in [0, 1]."""
    if len(extensions) != len(target) or len(target) != len(weights):
        return 0.0

    total = 0.0
    for actual, expected, weight in zip(extensions, target, weights):
        total += (1.0 - min(abs(float(actual) - float(expected)), 1.0)) * weight

    score = total / float(sum(weights))
    return min(score * leniency, 1.0)


@dataclass
class GestureDefinition:
    """A named recognizable hand shape or trajectory.

    Exactly one of ``finger_pattern`` (static) or ``motion_pattern`` (motion)
    must be set. ``hand`` restricts which hand may perform it.
    """

    id: str
    name: str = ""
    discipline: str = ""
    hand: Handedness = Handedness.ANY
    threshold: float = 0.8
    finger_pattern: Optional[tuple[float, ...]] = None
    motion_pattern: Optional[MotionPattern] = None
    description: str = ""

    def __post_init__(self):
        if not self.name:
            self.name = self.id
        try:
            self.hand = Handedness.parse(self.hand)
            if self.motion_pattern is not None:
                self.motion_pattern = MotionPattern.parse(self.motion_pattern)
                if self.motion_pattern is MotionPattern.NONE:
                    self.motion_pattern = None
        except (KeyError, ValueError) as e:
            raise RegistrationError(f"gesture {self.id!r}: {e}") from e
        if self.finger_pattern is not None:
            self.finger_pattern = tuple(float(v) for v in self.finger_pattern)

    @property
    def is_motion(self) -> bool:
        return self.motion_pattern is not None

    @property
    def is_static(self) -> bool:
        return self.finger_pattern is not None

    def validate(self):
        """Raise RegistrationError if this definition is unusable."""
        if not self.id:
            raise RegistrationError("gesture id must not be empty")
        if self.is_static == self.is_motion:
            raise RegistrationError(
                f"gesture {self.id!r} must define exactly one of finger_pattern "
                f"or motion_pattern"
            )
        if self.is_static:
            if len(self.finger_pattern) != len(FINGER_JOINTS):
                raise RegistrationError(
                    f"gesture {self.id!r}: finger_pattern needs {len(FINGER_JOINTS)} "
                    f"values, got {len(self.finger_pattern)}"
                )
            if any(not 0.0 <= v <= 1.0 for v in self.finger_pattern):
                raise RegistrationError(f"gesture {self.id!r}: finger_pattern values must be in [0, 1]")
        if not 0.0 <= self.threshold <= 1.0:
            raise RegistrationError(f"gesture {self.id!r}: threshold must be in [0, 1]")

    def match(
        self,
        sample: HandPoseSample,
        extensions: Optional[np.ndarray] = None,
        motion: MotionPattern = MotionPattern.NONE,
        motion_score: float = 0.9,
    ) -> tuple[bool, float]:
        """Check a pose (and the motion active with it) against this gesture.

        Args:
            sample: The pose to test.
            extensions: Precomputed ``finger_extensions`` of the sample.
            motion: Motion pattern active when the sample was taken.
            motion_score: Fixed confidence reported for a motion match.

        Returns:
            (matched, score) tuple.
        """
        if not self.hand.accepts(sample.handedness):
            return False, 0.0

        if self.is_motion:
            if motion is self.motion_pattern:
                return True, motion_score
            return False, 0.0

        if extensions is None:
            extensions = finger_extensions(sample.landmarks)
        score = match_finger_pattern(extensions, self.finger_pattern)
        return score > self.threshold, score

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "discipline": self.discipline,
            "hand": self.hand.value,
            "threshold": self.threshold,
            "description": self.description,
        }
        if self.is_static:
            data["finger_pattern"] = list(self.finger_pattern)
        if self.is_motion:
            data["motion_pattern"] = self.motion_pattern.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> GestureDefinition:
        if "id" not in data:
            raise RegistrationError(f"gesture entry without an id: {data!r}")
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            discipline=data.get("discipline", ""),
            hand=data.get("hand", "any"),
            threshold=float(data.get("threshold", 0.8)),
            finger_pattern=data.get("finger_pattern"),
            motion_pattern=data.get("motion_pattern"),
            description=data.get("description", ""),
        )


def validate_gestures(gestures: Iterable[GestureDefinition]) -> list[GestureDefinition]:
    """Validate a whole gesture set, returning it as a list.

    Raises RegistrationError on the first invalid or duplicate definition.
    """
    checked = list(gestures)
    seen: set[str] = set()
    for gesture in checked:
        if not isinstance(gesture, GestureDefinition):
            raise RegistrationError(f"not a GestureDefinition: {gesture!r}")
        gesture.validate()
        if gesture.id in seen:
            raise RegistrationError(f"duplicate gesture id {gesture.id!r}")
        seen.add(gesture.id)
    return checked


def read_definitions(path: str | Path) -> dict:
    """Read a YAML or JSON definitions file into a dict."""
    path = Path(path)
    with open(path) as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise RegistrationError(f"{path}: expected a mapping with a 'gestures' list")
    return data


class GestureRegistry:
    """Ordered set of gesture definitions.

    Registration order matters: motion gestures are matched first-registered
    first. Every mutation validates the complete resulting set and leaves
    the registry untouched when anything is invalid.
    """

    def __init__(self, gestures: Optional[Iterable[GestureDefinition]] = None):
        self._gestures: list[GestureDefinition] = []
        if gestures is not None:
            self.replace(gestures)

    def register(self, gesture: GestureDefinition):
        """Add a gesture definition to the registry."""
        self._gestures = validate_gestures([*self._gestures, gesture])

    def replace(self, gestures: Iterable[GestureDefinition]):
        """Swap in a new gesture set (all-or-nothing)."""
        self._gestures = validate_gestures(gestures)

    def get(self, gesture_id: str) -> Optional[GestureDefinition]:
        for gesture in self._gestures:
            if gesture.id == gesture_id:
                return gesture
        return None

    @property
    def motion_gestures(self) -> list[GestureDefinition]:
        return [g for g in self._gestures if g.is_motion]

    @property
    def static_gestures(self) -> list[GestureDefinition]:
        return [g for g in self._gestures if g.is_static]

    def load_from_file(self, path: str | Path):
        """Append gesture definitions from a YAML or JSON file."""
        data = read_definitions(path)
        new = [GestureDefinition.from_dict(entry) for entry in data.get("gestures", [])]
        self._gestures = validate_gestures([*self._gestures, *new])

    def save_to_file(self, path: str | Path):
        """Save all gesture definitions (YAML unless the suffix is .json)."""
        path = Path(path)
        data = {"gestures": [g.to_dict() for g in self._gestures]}
        with open(path, "w") as f:
            if path.suffix.lower() == ".json":
                json.dump(data, f, indent=2)
            else:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def with_defaults(cls) -> GestureRegistry:
        """Create a registry with the built-in spell gestures."""
        curled = 0.3
        return cls([
            GestureDefinition(
                id="open_palm", name="Open Palm", discipline="FIRE",
                finger_pattern=(1.0, 1.0, 1.0, 1.0, 1.0), threshold=0.85,
                description="All fingers extended",
            ),
            GestureDefinition(
                id="fist", name="Fist", discipline="EARTH",
                finger_pattern=(curled,) * 5, threshold=0.85,
                description="All fingers curled",
            ),
            GestureDefinition(
                id="point", name="Point", discipline="LIGHTNING",
                finger_pattern=(curled, 1.0, curled, curled, curled), threshold=0.85,
                description="Index finger extended",
            ),
            GestureDefinition(
                id="victory", name="Victory", discipline="AIR",
                finger_pattern=(curled, 1.0, 1.0, curled, curled), threshold=0.85,
                description="Index and middle fingers extended",
            ),
            GestureDefinition(
                id="horns", name="Horns", discipline="SHADOW",
                finger_pattern=(curled, 1.0, curled, curled, 1.0), threshold=0.85,
                description="Index and pinky extended",
            ),
            GestureDefinition(
                id="call_me", name="Call Me", discipline="WATER",
                finger_pattern=(1.0, curled, curled, curled, 1.0), threshold=0.85,
                description="Thumb and pinky extended",
            ),
            GestureDefinition(
                id="circle_clockwise", name="Circular Motion (clockwise)", discipline="FIRE",
                hand=Handedness.RIGHT, motion_pattern=MotionPattern.CIRCLE_CW, threshold=0.5,
                description="Draw a clockwise circle with your right hand",
            ),
            GestureDefinition(
                id="circle_counterclockwise", name="Circular Motion (counter-clockwise)",
                discipline="WATER", motion_pattern=MotionPattern.CIRCLE_CCW, threshold=0.5,
                description="Draw a counter-clockwise circle",
            ),
            GestureDefinition(
                id="zigzag", name="Zigzag", discipline="LIGHTNING",
                motion_pattern=MotionPattern.ZIGZAG, threshold=0.5,
                description="Trace a Z across the air",
            ),
            GestureDefinition(
                id="wave_motion", name="Wave Motion", discipline="WATER",
                motion_pattern=MotionPattern.WAVE, threshold=0.5,
                description="Wave your hand side to side several times",
            ),
            GestureDefinition(
                id="vertical_motion", name="Vertical Motion", discipline="AIR",
                motion_pattern=MotionPattern.VERTICAL, threshold=0.5,
                description="Move your hand up and down vertically",
            ),
            GestureDefinition(
                id="forward_thrust", name="Forward Thrust", discipline="LIGHTNING",
                motion_pattern=MotionPattern.FORWARD_THRUST, threshold=0.65,
                description="Push your hand forward toward the camera",
            ),
        ])

    def __len__(self) -> int:
        return len(self._gestures)

    def __iter__(self) -> Iterator[GestureDefinition]:
        return iter(self._gestures)
