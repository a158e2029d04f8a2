"""Motion trajectory classification.

Classifies a short path of reference-point positions (the wrist, sampled by
``TrajectoryTracker``) into one of a closed set of named shapes. The tests
run as a fixed-priority cascade and the first positive test wins; there is
no voting between shapes.

Coordinates are normalized image space: x to the right, y down, z toward
the scene. "Clockwise" therefore means clockwise as seen on screen, and a
"peak" in the y-series is a lower vertex of the drawn shape.

Usage:
    pattern = classify_trajectory(points, times)
    if pattern is MotionPattern.CIRCLE_CW:
        ...
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np

from spellcast.config import MotionThresholds
from spellcast.geometry import EPSILON, angle_between, centroid, path_length, signed_angle_2d


class MotionPattern(Enum):
    """Trajectory shapes the classifier can report."""
    NONE = "none"
    CIRCLE_CW = "circle_cw"
    CIRCLE_CCW = "circle_ccw"
    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"
    FORWARD_THRUST = "forward_thrust"
    WAVE = "wave"
    ZIGZAG = "zigzag"
    TWO_HAND_CLAP = "two_hand_clap"
    V_SHAPE = "v_shape"
    W_SHAPE = "w_shape"

    @classmethod
    def parse(cls, value) -> MotionPattern:
        if isinstance(value, MotionPattern):
            return value
        text = str(value).strip()
        try:
            return cls(text.lower())
        except ValueError:
            return cls[text.upper()]


@dataclass
class CircleMetrics:
    """Intermediate measurements of the circular test."""
    total_rotation: float  # radians, positive = clockwise on screen
    cw_steps: int
    ccw_steps: int
    deviation_ratio: float  # mean |r - r_mean| / r_mean
    circularity: float  # path length / (2 * pi * r_mean)
    min_radius_ratio: float  # min r / r_mean
    max_step_angle: float  # largest single |turn| around the centroid, radians


@dataclass
class Extremum:
    kind: str  # "peak" (local max of y) or "valley" (local min of y)
    index: int
    y: float
    time: float


def circle_metrics(points: np.ndarray, direction_epsilon: float = 1e-3) -> Optional[CircleMetrics]:
    """Measure how circular an (N, 2+) path is around its own centroid."""
    xy = np.asarray(points, dtype=np.float64)[:, :2]
    if len(xy) < 3:
        return None

    rel = xy - centroid(xy)
    radii = np.linalg.norm(rel, axis=1)
    mean_radius = float(radii.mean())
    if mean_radius < EPSILON:
        return None

    steps = [signed_angle_2d(rel[i], rel[i + 1]) for i in range(len(rel) - 1)]
    return CircleMetrics(
        total_rotation=float(sum(steps)),
        cw_steps=sum(1 for s in steps if s > direction_epsilon),
        ccw_steps=sum(1 for s in steps if s < -direction_epsilon),
        deviation_ratio=float(np.abs(radii - mean_radius).mean() / mean_radius),
        circularity=path_length(xy) / (2.0 * math.pi * mean_radius),
        min_radius_ratio=float(radii.min() / mean_radius),
        max_step_angle=max(abs(s) for s in steps),
    )


def find_extrema(ys: np.ndarray, times: np.ndarray, min_change: float) -> list[Extremum]:
    """Turning points of a 1-D series, ignoring wiggles smaller than ``min_change``.

    Endpoints are never reported; a turning point is confirmed only once the
    series has moved back by more than ``min_change`` from it.
    """
    ys = np.asarray(ys, dtype=np.float64)
    extrema: list[Extremum] = []
    if len(ys) < 3:
        return extrema

    direction = 0
    lo = hi = anchor = 0
    for i in range(1, len(ys)):
        y = ys[i]
        if direction == 0:
            if y > ys[hi]:
                hi = i
            if y < ys[lo]:
                lo = i
            if ys[hi] - ys[lo] > min_change:
                direction = 1 if hi > lo else -1
                anchor = hi if direction == 1 else lo
        elif direction == 1:
            if y >= ys[anchor]:
                anchor = i
            elif ys[anchor] - y > min_change:
                extrema.append(Extremum("peak", anchor, float(ys[anchor]), float(times[anchor])))
                direction, anchor = -1, i
        else:
            if y <= ys[anchor]:
                anchor = i
            elif y - ys[anchor] > min_change:
                extrema.append(Extremum("valley", anchor, float(ys[anchor]), float(times[anchor])))
                direction, anchor = 1, i

    return extrema


def _coefficient_of_variation(values: list[float]) -> float:
    if len(values) < 2:
        return 0.0
    arr = np.asarray(values, dtype=np.float64)
    mean = float(arr.mean())
    if abs(mean) < EPSILON:
        return float("inf")
    return float(arr.std() / abs(mean))


def _moving_segments(points: np.ndarray, floor: float) -> np.ndarray:
    """xy displacement of every step longer than ``floor``."""
    segs = np.diff(np.asarray(points, dtype=np.float64)[:, :2], axis=0)
    if len(segs) == 0:
        return segs
    return segs[np.linalg.norm(segs, axis=1) > floor]


def _segment_type(seg: np.ndarray, th: MotionThresholds) -> Optional[str]:
    dx, dy = abs(seg[0]), abs(seg[1])
    if dy <= th.horizontal_ratio * dx:
        return "horizontal"
    if dy >= th.diagonal_ratio * dx:
        return "diagonal"
    return None


def _count_reversals(segs: np.ndarray) -> int:
    """Successive segments turning by more than 90 degrees."""
    return sum(
        1 for i in range(1, len(segs))
        if angle_between(segs[i - 1], segs[i]) > math.pi / 2
    )


# --- Individual tests, in cascade order ---

def _detect_circle(points, times, th: MotionThresholds) -> Optional[MotionPattern]:
    m = circle_metrics(points, th.direction_epsilon)
    if m is None:
        return None
    if abs(m.total_rotation) <= th.circle_min_rotation:
        return None
    if m.deviation_ratio >= th.circle_max_deviation:
        return None
    if not th.circle_min_circularity <= m.circularity <= th.circle_max_circularity:
        return None
    # Paths that pass through their own centroid (a Z diagonal) are not loops
    if m.min_radius_ratio < th.circle_min_radius_ratio or m.max_step_angle > th.circle_max_step_angle:
        return None

    bearing = m.cw_steps + m.ccw_steps
    if bearing == 0:
        return None
    if m.cw_steps / bearing > th.circle_direction_majority:
        return MotionPattern.CIRCLE_CW
    if m.ccw_steps / bearing > th.circle_direction_majority:
        return MotionPattern.CIRCLE_CCW
    return None


def _detect_zigzag(points, times, th: MotionThresholds) -> Optional[MotionPattern]:
    segs = _moving_segments(points, th.segment_floor)
    if len(segs) < 2:
        return None

    types = [t for t in (_segment_type(s, th) for s in segs) if t is not None]
    if "horizontal" not in types or "diagonal" not in types:
        return None

    alternations = sum(1 for a, b in zip(types, types[1:]) if a != b)
    if alternations < 1 or _count_reversals(segs) < 1:
        return None

    if path_length(np.asarray(points)[:, :2]) <= th.zigzag_min_path:
        return None
    return MotionPattern.ZIGZAG


def _detect_clap(points, times, th: MotionThresholds) -> Optional[MotionPattern]:
    pts = np.asarray(points, dtype=np.float64)
    dy = np.abs(np.diff(pts[:, 1]))
    dx = np.abs(np.diff(pts[:, 0]))
    dt = np.diff(np.asarray(times, dtype=np.float64))

    valid = dt > EPSILON
    if not np.any(valid):
        return None
    peak_speed = float(np.max(dy[valid] / dt[valid]))

    vertical = float(dy.sum())
    horizontal = float(dx.sum())
    ratio = vertical / max(horizontal, EPSILON)

    if (
        peak_speed > th.clap_min_peak_speed
        and vertical > th.clap_min_vertical
        and ratio > th.clap_min_ratio
    ):
        return MotionPattern.TWO_HAND_CLAP
    return None


def _detect_w_shape(points, times, th: MotionThresholds) -> Optional[MotionPattern]:
    pts = np.asarray(points, dtype=np.float64)
    extrema = find_extrema(pts[:, 1], times, th.reversal_min_change)

    peaks = [e for e in extrema if e.kind == "peak"]
    valleys = [e for e in extrema if e.kind == "valley"]
    if len(peaks) < 2 or len(valleys) < 1:
        return None

    if float(np.abs(np.diff(pts[:, 1])).sum()) <= th.w_min_vertical:
        return None

    # Consistent stroke heights and rhythm separate a W from tremor
    amplitudes = [abs(b.y - a.y) for a, b in zip(extrema, extrema[1:])]
    if _coefficient_of_variation(amplitudes) > th.w_max_amplitude_cv:
        return None
    intervals = [b.time - a.time for a, b in zip(extrema, extrema[1:])]
    if _coefficient_of_variation(intervals) > th.w_max_timing_cv:
        return None

    return MotionPattern.W_SHAPE


def _detect_v_shape(points, times, th: MotionThresholds) -> Optional[MotionPattern]:
    pts = np.asarray(points, dtype=np.float64)
    extrema = find_extrema(pts[:, 1], times, th.reversal_min_change)
    if len(extrema) != 1:
        return None

    segs = _moving_segments(pts, th.segment_floor)
    if not any(_segment_type(s, th) == "diagonal" and abs(s[0]) > EPSILON for s in segs):
        return None

    if path_length(pts[:, :2]) <= th.v_min_movement:
        return None
    return MotionPattern.V_SHAPE


def _detect_wave(points, times, th: MotionThresholds) -> Optional[MotionPattern]:
    if len(points) < th.wave_min_points:
        return None

    segs = _moving_segments(points, th.segment_floor)
    changes = 0
    last_sign = 0
    for seg in segs:
        sign = int(np.sign(seg[0]))
        if sign == 0:
            continue
        if last_sign and sign != last_sign:
            changes += 1
        last_sign = sign

    if changes >= th.wave_min_reversals:
        return MotionPattern.WAVE
    return None


def _axis_travel(points) -> tuple[float, float]:
    d = np.abs(np.diff(np.asarray(points, dtype=np.float64)[:, :2], axis=0))
    return float(d[:, 0].sum()), float(d[:, 1].sum())


def _detect_vertical(points, times, th: MotionThresholds) -> Optional[MotionPattern]:
    horizontal, vertical = _axis_travel(points)
    if vertical > horizontal * th.axis_dominance and vertical > th.axis_min_travel:
        return MotionPattern.VERTICAL
    return None


def _detect_horizontal(points, times, th: MotionThresholds) -> Optional[MotionPattern]:
    horizontal, vertical = _axis_travel(points)
    if horizontal > vertical * th.axis_dominance and horizontal > th.axis_min_travel:
        return MotionPattern.HORIZONTAL
    return None


def _detect_forward_thrust(points, times, th: MotionThresholds) -> Optional[MotionPattern]:
    pts = np.asarray(points, dtype=np.float64)
    if pts.shape[1] < 3:
        return None
    # Negative z is toward the camera
    if float(pts[-1, 2] - pts[0, 2]) < -th.thrust_min_depth:
        return MotionPattern.FORWARD_THRUST
    return None


Detector = Callable[[np.ndarray, np.ndarray, MotionThresholds], Optional[MotionPattern]]

CASCADE: tuple[Detector, ...] = (
    _detect_circle,
    _detect_zigzag,
    _detect_clap,
    _detect_w_shape,
    _detect_v_shape,
    _detect_wave,
    _detect_vertical,
    _detect_horizontal,
    _detect_forward_thrust,
)


def classify_trajectory(
    points: np.ndarray,
    times: np.ndarray,
    thresholds: Optional[MotionThresholds] = None,
) -> MotionPattern:
    """Classify a path of shape (N, 2) or (N, 3) sampled at ``times``.

    Returns NONE for paths shorter than ``thresholds.min_points`` or when
    no test in the cascade matches.
    """
    th = thresholds or MotionThresholds()
    pts = np.asarray(points, dtype=np.float64)
    ts = np.asarray(times, dtype=np.float64)
    if pts.ndim != 2 or len(pts) < th.min_points or len(ts) != len(pts):
        return MotionPattern.NONE

    for detect in CASCADE:
        pattern = detect(pts, ts, th)
        if pattern is not None:
            return pattern
    return MotionPattern.NONE
