"""Tests for the vector helpers."""

import math

import numpy as np
import pytest

from spellcast.geometry import (
    angle_between,
    centroid,
    distance,
    path_length,
    signed_angle_2d,
)


class TestDistances:
    def test_distance(self):
        assert distance(np.array([0, 0, 0]), np.array([3, 4, 0])) == pytest.approx(5.0)

    def test_centroid(self):
        c = centroid(np.array([[0.0, 0.0], [2.0, 2.0]]))
        assert np.allclose(c, [1.0, 1.0])

    def test_centroid_empty_raises(self):
        with pytest.raises(ValueError):
            centroid(np.empty((0, 2)))

    def test_path_length(self):
        square = np.array([[0, 0], [1, 0], [1, 1], [0, 1]], dtype=float)
        assert path_length(square) == pytest.approx(3.0)
        assert path_length(square[:1]) == 0.0


class TestAngles:
    def test_right_angle(self):
        assert angle_between(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == pytest.approx(math.pi / 2)

    def test_degenerate_vector(self):
        assert angle_between(np.zeros(3), np.array([1.0, 0.0, 0.0])) == 0.0

    def test_signed_angle_clockwise_on_screen(self):
        # Right to down is clockwise when y points down
        assert signed_angle_2d(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == pytest.approx(math.pi / 2)
        assert signed_angle_2d(np.array([0.0, 1.0]), np.array([1.0, 0.0])) == pytest.approx(-math.pi / 2)
