"""Multi-gesture sequence ("spell") detection.

A sequence is an ordered list of gesture steps, e.g. fist→open_palm
("fireball"). The matcher looks at the tail of the pose history and slides a
window the length of the sequence over it; every pose in the window must
match its step, or the window is rejected outright. Partial completion earns
nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

import numpy as np

from spellcast.gestures import (
    GestureDefinition,
    GestureRegistry,
    RegistrationError,
    finger_extensions,
    read_definitions,
    validate_gestures,
)
from spellcast.pose import BufferedPose, PoseBuffer


@dataclass
class GestureSequence:
    """A named sequence of gestures that triggers a compound event."""
    id: str
    steps: list[GestureDefinition]
    name: str = ""
    max_duration: Optional[float] = None  # max seconds between first and last step
    discipline: str = ""
    description: str = ""

    def __post_init__(self):
        if not self.name:
            self.name = self.id

    def validate(self):
        if not self.id:
            raise RegistrationError("sequence id must not be empty")
        if not self.steps:
            raise RegistrationError(f"sequence {self.id!r} has no steps")
        if self.max_duration is not None and self.max_duration < 0:
            raise RegistrationError(f"sequence {self.id!r}: max_duration must not be negative")
        try:
            # Steps may repeat a gesture, so only validate each one on its own
            for step in self.steps:
                validate_gestures([step])
        except RegistrationError as e:
            raise RegistrationError(f"sequence {self.id!r}: {e}") from e

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "steps": [step.id for step in self.steps],
            "max_duration": self.max_duration,
            "discipline": self.discipline,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict, registry: Optional[GestureRegistry] = None) -> GestureSequence:
        """Build a sequence whose steps are gesture ids or inline gesture dicts."""
        if "id" not in data:
            raise RegistrationError(f"sequence entry without an id: {data!r}")
        steps = []
        for step in data.get("steps", []):
            if isinstance(step, dict):
                steps.append(GestureDefinition.from_dict(step))
                continue
            gesture = registry.get(str(step)) if registry is not None else None
            if gesture is None:
                raise RegistrationError(f"sequence {data['id']!r}: unknown gesture {step!r}")
            steps.append(gesture)
        max_duration = data.get("max_duration")
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            steps=steps,
            max_duration=float(max_duration) if max_duration is not None else None,
            discipline=data.get("discipline", ""),
            description=data.get("description", ""),
        )


@dataclass
class SequenceMatchResult:
    """Outcome of matching one sequence against the pose history."""
    sequence_id: str
    name: str
    matched: bool
    score: float
    timestamp: float
    offset: int = -1  # window start within the searched range
    step_scores: list[float] = field(default_factory=list)


def validate_sequences(sequences: Iterable[GestureSequence]) -> list[GestureSequence]:
    checked = list(sequences)
    seen: set[str] = set()
    for seq in checked:
        if not isinstance(seq, GestureSequence):
            raise RegistrationError(f"not a GestureSequence: {seq!r}")
        seq.validate()
        if seq.id in seen:
            raise RegistrationError(f"duplicate sequence id {seq.id!r}")
        seen.add(seq.id)
    return checked


def load_sequences(path: str | Path, registry: Optional[GestureRegistry] = None) -> list[GestureSequence]:
    """Read the ``sequences`` list of a YAML or JSON definitions file."""
    data = read_definitions(path)
    return [GestureSequence.from_dict(entry, registry) for entry in data.get("sequences", [])]


class SequenceMatcher:
    """Matches registered sequences against the recent pose history.

    Only the newest ``window_factor * len(steps)`` poses are searched for
    each sequence.
    """

    def __init__(
        self,
        sequences: Optional[Iterable[GestureSequence]] = None,
        window_factor: int = 3,
        motion_score: float = 0.9,
    ):
        self.window_factor = window_factor
        self.motion_score = motion_score
        self._sequences: list[GestureSequence] = []
        if sequences is not None:
            self.register_all(sequences)

    @property
    def sequences(self) -> list[GestureSequence]:
        return list(self._sequences)

    def register(self, sequence: GestureSequence):
        """Add a sequence to watch for."""
        self._sequences = validate_sequences([*self._sequences, sequence])

    def register_all(self, sequences: Iterable[GestureSequence]):
        """Replace every registered sequence (all-or-nothing)."""
        self._sequences = validate_sequences(sequences)

    def match_sequence(
        self,
        sequence: GestureSequence,
        history: list[BufferedPose],
        now: float,
        extensions: Optional[dict[int, np.ndarray]] = None,
    ) -> SequenceMatchResult:
        """Find the best fully-matching window for one sequence.

        Args:
            sequence: The sequence to look for.
            history: Buffered poses, oldest first.
            now: Timestamp for the result.
            extensions: Cache of finger extensions keyed by ``id(entry)``.

        Returns:
            A result with ``matched=False`` and score 0 when no window matches.
        """
        k = len(sequence.steps)
        recent = history[-k * self.window_factor:]
        cache = extensions if extensions is not None else {}

        best: Optional[tuple[float, int, list[float]]] = None
        for offset in range(len(recent) - k + 1):
            window = recent[offset:offset + k]
            if (
                sequence.max_duration is not None
                and window[-1].timestamp - window[0].timestamp > sequence.max_duration
            ):
                continue

            scores = self._score_window(sequence, window, cache)
            if scores is None:
                continue
            mean = sum(scores) / k
            if best is None or mean > best[0]:
                best = (mean, offset, scores)

        if best is None:
            return SequenceMatchResult(sequence.id, sequence.name, False, 0.0, now)
        return SequenceMatchResult(
            sequence_id=sequence.id,
            name=sequence.name,
            matched=True,
            score=best[0],
            timestamp=now,
            offset=best[1],
            step_scores=best[2],
        )

    def _score_window(
        self,
        sequence: GestureSequence,
        window: list[BufferedPose],
        cache: dict[int, np.ndarray],
    ) -> Optional[list[float]]:
        scores = []
        for step, entry in zip(sequence.steps, window):
            ext = None
            if step.is_static:
                ext = cache.get(id(entry))
                if ext is None:
                    ext = finger_extensions(entry.sample.landmarks)
                    cache[id(entry)] = ext
            matched, score = step.match(
                entry.sample, extensions=ext, motion=entry.motion, motion_score=self.motion_score,
            )
            if not matched:
                return None
            scores.append(score)
        return scores

    def match(self, buffer: PoseBuffer, now: float) -> list[SequenceMatchResult]:
        """Check every registered sequence; returns only the matched ones."""
        if not self._sequences or len(buffer) == 0:
            return []
        history = list(buffer)
        cache: dict[int, np.ndarray] = {}
        results = []
        for sequence in self._sequences:
            result = self.match_sequence(sequence, history, now, cache)
            if result.matched:
                results.append(result)
        return results

    @classmethod
    def with_defaults(cls, registry: Optional[GestureRegistry] = None) -> SequenceMatcher:
        """Create a matcher with the built-in spells over the default gestures."""
        registry = registry or GestureRegistry.with_defaults()

        def steps(*ids: str) -> list[GestureDefinition]:
            return [registry.get(i) for i in ids]

        return cls([
            GestureSequence(
                id="fireball", name="Fireball", discipline="FIRE",
                steps=steps("fist", "open_palm"), max_duration=1.5,
                description="Clench, then burst open",
            ),
            GestureSequence(
                id="lightning_bolt", name="Lightning Bolt", discipline="LIGHTNING",
                steps=steps("point", "victory"), max_duration=1.5,
                description="Point, then fork the bolt",
            ),
            GestureSequence(
                id="tidal_wave", name="Tidal Wave", discipline="WATER",
                steps=steps("open_palm", "fist", "call_me"), max_duration=2.0,
                description="Gather, grip, then release the tide",
            ),
            GestureSequence(
                id="shadow_step", name="Shadow Step", discipline="SHADOW",
                steps=steps("horns", "fist"), max_duration=1.5,
                description="Horns, then vanish into a fist",
            ),
        ])
