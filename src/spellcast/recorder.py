"""Sample recording and replay: capture pose streams to disk.

Record real sessions for:
- Reproducible tests without a camera
- Tuning thresholds offline against the same input
- Demo recordings that replay deterministically

A recording is a list of ticks; a tick holds the time since the first tick
and either a hand sample or nothing (no hand that tick).
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional

import numpy as np

from spellcast.pose import LANDMARK_DIM, NUM_LANDMARKS, Handedness, HandPoseSample

FORMAT_VERSION = 1


@dataclass
class RecordedTick:
    """One tick of a recording."""
    timestamp: float  # seconds from the first tick
    sample: Optional[HandPoseSample]


class SampleRecorder:
    """Records the pose stream fed to the pipeline.

    Usage:
        recorder = SampleRecorder()
        recorder.start()
        # In your tick loop:
        recorder.add(sample, now)
        # When done:
        recorder.save("session.json")
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._ticks: list[RecordedTick] = []
        self._origin: Optional[float] = None
        self._recording = False

    def start(self):
        """Begin a new recording session."""
        self._ticks = []
        self._origin = None
        self._recording = True

    def stop(self) -> int:
        """Stop recording. Returns the number of ticks captured."""
        self._recording = False
        return len(self._ticks)

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def tick_count(self) -> int:
        return len(self._ticks)

    @property
    def duration(self) -> float:
        return self._ticks[-1].timestamp if self._ticks else 0.0

    def add(self, sample: Optional[HandPoseSample], now: Optional[float] = None):
        """Append a tick; ``now`` defaults to the sample's timestamp, then the clock."""
        if not self._recording:
            return
        if now is None:
            now = sample.timestamp if sample is not None else self._clock()
        if self._origin is None:
            self._origin = now
        self._ticks.append(RecordedTick(timestamp=now - self._origin, sample=sample))

    def save(self, path: str | Path):
        """Save as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": FORMAT_VERSION,
            "tick_count": len(self._ticks),
            "duration": self.duration,
            "ticks": [
                {
                    "timestamp": t.timestamp,
                    "hand": None if t.sample is None else {
                        "landmarks": t.sample.landmarks.tolist(),
                        "handedness": t.sample.handedness.value,
                        "score": t.sample.score,
                    },
                }
                for t in self._ticks
            ],
        }
        with open(path, "w") as f:
            json.dump(data, f)

    def save_compact(self, path: str | Path) -> Path:
        """Save in compact numpy npz format. Returns the path written."""
        path = Path(path).with_suffix(".npz")
        path.parent.mkdir(parents=True, exist_ok=True)

        n = len(self._ticks)
        landmarks = np.zeros((n, NUM_LANDMARKS, LANDMARK_DIM), dtype=np.float32)
        present = np.zeros(n, dtype=bool)
        handedness = np.full(n, "", dtype="<U5")
        scores = np.zeros(n, dtype=np.float32)
        for i, tick in enumerate(self._ticks):
            if tick.sample is None:
                continue
            landmarks[i] = tick.sample.landmarks
            present[i] = True
            handedness[i] = tick.sample.handedness.value
            scores[i] = tick.sample.score

        np.savez_compressed(
            path,
            timestamps=np.array([t.timestamp for t in self._ticks], dtype=np.float64),
            landmarks=landmarks,
            present=present,
            handedness=handedness,
            scores=scores,
        )
        return path


class SamplePlayer:
    """Replays a recorded session.

    Usage:
        player = SamplePlayer.load("session.json")
        for tick in player.play():
            pipeline.process_sample(tick.sample, now=tick.timestamp)
    """

    def __init__(self, ticks: list[RecordedTick]):
        self._ticks = ticks

    @classmethod
    def load(cls, path: str | Path) -> SamplePlayer:
        """Load a JSON or npz recording."""
        path = Path(path)
        if path.suffix == ".npz":
            return cls._load_compact(path)

        with open(path) as f:
            data = json.load(f)

        ticks = []
        for entry in data["ticks"]:
            hand = entry.get("hand")
            sample = None
            if hand is not None:
                sample = HandPoseSample(
                    timestamp=entry["timestamp"],
                    landmarks=np.asarray(hand["landmarks"], dtype=np.float32),
                    handedness=Handedness.parse(hand["handedness"]),
                    score=hand["score"],
                )
            ticks.append(RecordedTick(timestamp=float(entry["timestamp"]), sample=sample))
        return cls(ticks)

    @classmethod
    def _load_compact(cls, path: Path) -> SamplePlayer:
        data = np.load(path, allow_pickle=False)
        ticks = []
        for i, ts in enumerate(data["timestamps"]):
            sample = None
            if data["present"][i]:
                sample = HandPoseSample(
                    timestamp=float(ts),
                    landmarks=data["landmarks"][i],
                    handedness=Handedness.parse(str(data["handedness"][i])),
                    score=float(data["scores"][i]),
                )
            ticks.append(RecordedTick(timestamp=float(ts), sample=sample))
        return cls(ticks)

    @property
    def tick_count(self) -> int:
        return len(self._ticks)

    @property
    def duration(self) -> float:
        return self._ticks[-1].timestamp if self._ticks else 0.0

    def play(self) -> Iterator[RecordedTick]:
        """Iterate through all ticks instantly (no timing)."""
        yield from self._ticks

    def play_realtime(self, speed: float = 1.0) -> Iterator[RecordedTick]:
        """Replay at the recorded pace (or scaled by ``speed``)."""
        start = time.monotonic()
        for tick in self._ticks:
            target = tick.timestamp / speed
            elapsed = time.monotonic() - start
            if target > elapsed:
                time.sleep(target - elapsed)
            yield tick

    def get_tick(self, index: int) -> Optional[RecordedTick]:
        if 0 <= index < len(self._ticks):
            return self._ticks[index]
        return None
