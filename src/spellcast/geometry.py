"""Small vector helpers shared by the pose matcher and trajectory classifier.

Everything works on numpy arrays of shape (D,) or (N, D). Points coming from
the pose source are (x, y, z) in normalized image space with y pointing down.
"""

from __future__ import annotations

import math

import numpy as np

EPSILON = 1e-8


def distance(a: np.ndarray, b: np.ndarray) -> float:
    """Euclidean distance between two points of equal dimension."""
    return float(np.linalg.norm(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)))


def centroid(points: np.ndarray) -> np.ndarray:
    """Mean point of an (N, D) array."""
    pts = np.asarray(points, dtype=np.float64)
    if len(pts) == 0:
        raise ValueError("centroid of an empty point set")
    return pts.mean(axis=0)


def path_length(points: np.ndarray) -> float:
    """Total length of the polyline through ``points``."""
    pts = np.asarray(points, dtype=np.float64)
    if len(pts) < 2:
        return 0.0
    return float(np.sum(np.linalg.norm(np.diff(pts, axis=0), axis=1)))


def angle_between(u: np.ndarray, v: np.ndarray) -> float:
    """Unsigned angle in radians between two vectors, 0 for degenerate input."""
    nu = np.linalg.norm(u)
    nv = np.linalg.norm(v)
    if nu < EPSILON or nv < EPSILON:
        return 0.0
    cos_angle = float(np.dot(u, v) / (nu * nv))
    return math.acos(max(-1.0, min(1.0, cos_angle)))


def signed_angle_2d(u: np.ndarray, v: np.ndarray) -> float:
    """Signed rotation from ``u`` to ``v`` in the xy-plane, in (-pi, pi].

    With image coordinates (y down) a positive value is a clockwise turn
    as seen on screen.
    """
    cross = float(u[0] * v[1] - u[1] * v[0])
    dot = float(u[0] * v[0] + u[1] * v[1])
    return math.atan2(cross, dot)
