"""Tunable engine configuration.

All timing values are seconds on the monotonic clock; all distances are in
normalized image units. Load overrides from YAML:

    config = EngineConfig.from_yaml("spellcast.yml")

Only the keys present in the file are overridden; unknown keys are rejected
so typos don't silently fall back to defaults.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


@dataclass
class MotionThresholds:
    """Geometric floors and ratios used by the trajectory classifier."""
    min_points: int = 5
    direction_epsilon: float = 1e-3  # radians; smaller turns carry no direction
    segment_floor: float = 0.005  # segments shorter than this are jitter

    # Circular
    circle_min_rotation: float = 1.5  # radians
    circle_max_deviation: float = 0.5
    circle_min_circularity: float = 0.7
    circle_max_circularity: float = 1.3
    circle_direction_majority: float = 0.55
    circle_min_radius_ratio: float = 0.5  # min r / mean r
    circle_max_step_angle: float = 1.5  # radians turned around the centroid in one step

    # Zigzag
    horizontal_ratio: float = 0.5  # |dy| <= ratio * |dx|
    diagonal_ratio: float = 0.8  # |dy| >= ratio * |dx|
    zigzag_min_path: float = 0.15

    # Clap proxy
    clap_min_peak_speed: float = 1.5  # units per second
    clap_min_vertical: float = 0.15
    clap_min_ratio: float = 1.5

    # W / V shapes
    reversal_min_change: float = 0.03
    w_min_vertical: float = 0.2
    w_max_amplitude_cv: float = 0.5
    w_max_timing_cv: float = 0.6
    v_min_movement: float = 0.1

    # Wave, axis swipes, thrust
    wave_min_points: int = 10
    wave_min_reversals: int = 3
    axis_dominance: float = 2.0
    axis_min_travel: float = 0.15
    thrust_min_depth: float = 0.15

    def validate(self):
        if self.min_points < 2:
            raise ValueError("min_points must be at least 2")
        if self.circle_min_circularity > self.circle_max_circularity:
            raise ValueError("circle_min_circularity exceeds circle_max_circularity")
        if not 0.5 <= self.circle_direction_majority < 1.0:
            raise ValueError("circle_direction_majority must be in [0.5, 1)")
        if not 0.0 <= self.circle_min_radius_ratio < 1.0:
            raise ValueError("circle_min_radius_ratio must be in [0, 1)")


@dataclass
class EngineConfig:
    """Buffers, state-machine timing and debounce settings for the pipeline."""
    pose_buffer_size: int = 30
    motion_buffer_size: int = 20
    motion_tracking: bool = True
    sample_interval: float = 0.1
    movement_threshold: float = 0.01
    inactivity_timeout: float = 0.5
    lost_hand_timeout: float = 1.0
    pattern_grace_period: float = 1.5
    cooldown: float = 0.3
    sequence_cooldown: float = 1.0
    motion_score: float = 0.9
    sequence_window_factor: int = 3
    failure_warning_threshold: int = 3
    motion: MotionThresholds = field(default_factory=MotionThresholds)

    def validate(self):
        """Raise ValueError for settings the engine cannot run with."""
        if self.pose_buffer_size < 1 or self.motion_buffer_size < 2:
            raise ValueError("buffer sizes must be positive (motion buffer >= 2)")
        if self.motion.min_points > self.motion_buffer_size:
            raise ValueError(
                f"motion.min_points ({self.motion.min_points}) exceeds "
                f"motion_buffer_size ({self.motion_buffer_size})"
            )
        for name in ("sample_interval", "movement_threshold", "inactivity_timeout",
                     "lost_hand_timeout", "pattern_grace_period", "cooldown",
                     "sequence_cooldown"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if not 0.0 <= self.motion_score <= 1.0:
            raise ValueError("motion_score must be in [0, 1]")
        if self.sequence_window_factor < 1:
            raise ValueError("sequence_window_factor must be at least 1")
        if self.failure_warning_threshold < 1:
            raise ValueError("failure_warning_threshold must be at least 1")
        self.motion.validate()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        data = dict(data or {})
        motion_data = data.pop("motion", None) or {}
        _check_keys(cls, data)
        _check_keys(MotionThresholds, motion_data)
        config = cls(**data, motion=MotionThresholds(**motion_data))
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Load a config file; an empty file yields the defaults."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping at the top level")
        return cls.from_dict(data.get("engine", data))

    def to_yaml(self, path: str | Path):
        with open(path, "w") as f:
            yaml.dump({"engine": self.to_dict()}, f, default_flow_style=False, sort_keys=False)


def _check_keys(cls: type, data: dict):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"unknown {cls.__name__} setting(s): {', '.join(unknown)}")
