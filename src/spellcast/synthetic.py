"""Synthetic hands and wrist trajectories.

Used by the benchmark command and the tests to drive the engine without a
camera. Hands are built from target finger-extension values, so a hand made
with ``make_hand(POINT)`` scores ~1.0 against a gesture whose pattern is
``POINT``.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from spellcast.pose import FINGER_JOINTS, WRIST, Handedness, HandPoseSample

CURLED = 0.3
OPEN_PALM = (1.0, 1.0, 1.0, 1.0, 1.0)
FIST = (CURLED,) * 5
POINT = (CURLED, 1.0, CURLED, CURLED, CURLED)
VICTORY = (CURLED, 1.0, 1.0, CURLED, CURLED)
HORNS = (CURLED, 1.0, CURLED, CURLED, 1.0)
CALL_ME = (1.0, CURLED, CURLED, CURLED, 1.0)

# Finger base offsets from the wrist and pointing directions, in hand units
_FINGER_BASES = ((-0.35, -0.25), (-0.2, -0.9), (0.0, -0.95), (0.2, -0.9), (0.38, -0.8))
_FINGER_DIRECTIONS = ((-0.6, -0.8), (0.0, -1.0), (0.0, -1.0), (0.0, -1.0), (0.0, -1.0))
_BONE_LENGTH = 0.3


def _chain_ratio(theta: float) -> float:
    """Base-to-tip over chain length for three equal bones each turning by ``theta``."""
    if theta < 1e-9:
        return 1.0
    return abs(math.sin(1.5 * theta)) / (3.0 * math.sin(0.5 * theta))


def bend_for_extension(extension: float) -> float:
    """Per-joint bend angle that gives a finger the requested extension ratio."""
    target = min(max(extension, 0.0), 1.0)
    lo, hi = 0.0, 2.0 * math.pi / 3.0  # ratio falls monotonically from 1 to 0
    for _ in range(50):
        mid = 0.5 * (lo + hi)
        if _chain_ratio(mid) > target:
            lo = mid
        else:
            hi = mid
    return 0.5 * (lo + hi)


def hand_landmarks(
    extensions: Sequence[float] = OPEN_PALM,
    wrist: Sequence[float] = (0.5, 0.6, 0.0),
    size: float = 0.1,
) -> np.ndarray:
    """A (21, 3) hand with the given finger extensions, fingers curling toward +z."""
    lm = np.zeros((21, 3), dtype=np.float64)
    origin = np.asarray(wrist, dtype=np.float64)
    lm[WRIST] = origin
    bone = _BONE_LENGTH * size
    depth = np.array([0.0, 0.0, 1.0])

    for joints, base, direction, extension in zip(FINGER_JOINTS, _FINGER_BASES, _FINGER_DIRECTIONS, extensions):
        theta = bend_for_extension(extension)
        forward = np.array([direction[0], direction[1], 0.0])
        point = origin + np.array([base[0], base[1], 0.0]) * size
        lm[joints[0]] = point
        for k, idx in enumerate(joints[1:]):
            angle = k * theta
            point = point + bone * (forward * math.cos(angle) + depth * math.sin(angle))
            lm[idx] = point
    return lm


def make_hand(
    extensions: Sequence[float] = OPEN_PALM,
    wrist: Sequence[float] = (0.5, 0.6, 0.0),
    handedness: Handedness | str = Handedness.RIGHT,
    timestamp: float = 0.0,
    score: float = 0.95,
    size: float = 0.1,
) -> HandPoseSample:
    return HandPoseSample(
        timestamp=timestamp,
        landmarks=hand_landmarks(extensions, wrist, size),
        handedness=Handedness.parse(handedness),
        score=score,
    )


def hand_stream(
    path: np.ndarray,
    extensions: Sequence[float] = OPEN_PALM,
    handedness: Handedness | str = Handedness.RIGHT,
    interval: float = 0.1,
    start: float = 0.0,
) -> list[HandPoseSample]:
    """One sample per path point, the wrist following ``path``."""
    return [
        make_hand(extensions, wrist=point, handedness=handedness, timestamp=start + i * interval)
        for i, point in enumerate(np.asarray(path, dtype=np.float64))
    ]


def timestamps(n: int, interval: float = 0.1, start: float = 0.0) -> np.ndarray:
    return start + np.arange(n, dtype=np.float64) * interval


def polyline(vertices: Sequence[Sequence[float]], steps_per_edge: int = 4) -> np.ndarray:
    """Evenly spaced points along the edges through ``vertices`` (z = 0 if omitted)."""
    verts = [np.array([*v, 0.0][:3], dtype=np.float64) for v in vertices]
    points = [verts[0]]
    for a, b in zip(verts, verts[1:]):
        for k in range(1, steps_per_edge + 1):
            points.append(a + (b - a) * (k / steps_per_edge))
    return np.stack(points)


def circle_path(
    n: int = 20,
    radius: float = 0.1,
    center: Sequence[float] = (0.5, 0.5),
    clockwise: bool = True,
    turns: float = 1.0,
) -> np.ndarray:
    """``n`` points evenly around a circle; clockwise as seen on screen (y down)."""
    sign = 1.0 if clockwise else -1.0
    theta = sign * 2.0 * math.pi * turns * np.arange(n) / n
    return np.stack([
        center[0] + radius * np.cos(theta),
        center[1] + radius * np.sin(theta),
        np.zeros(n),
    ], axis=1)


def line_path(n: int = 10, start=(0.2, 0.2), end=(0.8, 0.5)) -> np.ndarray:
    return polyline([start, end], steps_per_edge=n - 1)


def zigzag_path(steps_per_edge: int = 4) -> np.ndarray:
    """A "Z": right, diagonal down-left, right."""
    return polyline([(0.3, 0.3), (0.6, 0.3), (0.3, 0.6), (0.6, 0.6)], steps_per_edge)


def w_path(steps_per_edge: int = 4) -> np.ndarray:
    return polyline([(0.3, 0.3), (0.4, 0.6), (0.5, 0.4), (0.6, 0.6), (0.7, 0.3)], steps_per_edge)


def v_path(steps_per_edge: int = 4) -> np.ndarray:
    return polyline([(0.2, 0.3), (0.5, 0.55), (0.8, 0.3)], steps_per_edge)


def clap_path(n: int = 5) -> np.ndarray:
    """Fast downward stroke (0.2 per sample at the default interval)."""
    return polyline([(0.5, 0.1), (0.5, 0.1 + 0.2 * (n - 1))], steps_per_edge=n - 1)


def wave_path(swings: int = 5, steps_per_swing: int = 2) -> np.ndarray:
    vertices = [(0.4, 0.5)] + [((0.6 if i % 2 == 0 else 0.4), 0.5) for i in range(swings)]
    return polyline(vertices, steps_per_swing)


def vertical_path(n: int = 6) -> np.ndarray:
    return polyline([(0.5, 0.3), (0.5, 0.7)], steps_per_edge=n - 1)


def thrust_path(n: int = 6, depth: float = 0.3) -> np.ndarray:
    """Straight toward the camera (negative z)."""
    return polyline([(0.5, 0.5, 0.0), (0.5, 0.5, -depth)], steps_per_edge=n - 1)
