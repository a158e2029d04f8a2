"""Tests for gesture sequence (spell) matching."""

import pytest
import yaml

from spellcast import synthetic
from spellcast.gestures import GestureDefinition, GestureRegistry, RegistrationError
from spellcast.patterns import MotionPattern
from spellcast.pose import Handedness, PoseBuffer
from spellcast.sequences import (
    GestureSequence,
    SequenceMatcher,
    load_sequences,
)


REGISTRY = GestureRegistry.with_defaults()


def make_sequence(*ids, seq_id="spell", max_duration=None):
    return GestureSequence(id=seq_id, steps=[REGISTRY.get(i) for i in ids], max_duration=max_duration)


def make_buffer(*shapes, interval=0.1, capacity=30):
    """Pose history with one hand per shape; a shape may be (shape, motion)."""
    buf = PoseBuffer(capacity)
    for i, shape in enumerate(shapes):
        motion = MotionPattern.NONE
        if isinstance(shape, tuple) and isinstance(shape[-1], MotionPattern):
            shape, motion = shape
        buf.append(synthetic.make_hand(shape, timestamp=i * interval), motion)
    return buf


class TestMatchSequence:
    def test_exact_copy_matches(self):
        matcher = SequenceMatcher()
        seq = make_sequence("fist", "open_palm")
        result = matcher.match_sequence(seq, list(make_buffer(synthetic.FIST, synthetic.OPEN_PALM)), 1.0)
        assert result.matched
        assert result.score >= 0.95
        assert len(result.step_scores) == 2
        assert result.timestamp == 1.0

    def test_corrupted_step_rejects(self):
        matcher = SequenceMatcher()
        seq = make_sequence("fist", "open_palm")
        result = matcher.match_sequence(seq, list(make_buffer(synthetic.FIST, synthetic.POINT)), 1.0)
        assert not result.matched
        assert result.score == 0.0

    def test_wrong_order_rejects(self):
        matcher = SequenceMatcher()
        seq = make_sequence("fist", "open_palm")
        result = matcher.match_sequence(seq, list(make_buffer(synthetic.OPEN_PALM, synthetic.FIST)), 1.0)
        assert not result.matched

    def test_match_inside_longer_history(self):
        matcher = SequenceMatcher()
        seq = make_sequence("point", "victory")
        history = make_buffer(synthetic.FIST, synthetic.POINT, synthetic.VICTORY, synthetic.OPEN_PALM)
        result = matcher.match_sequence(seq, list(history), 1.0)
        assert result.matched
        assert result.offset == 1

    def test_search_limited_to_recent_window(self):
        matcher = SequenceMatcher(window_factor=3)
        seq = make_sequence("fist", "open_palm")

        inside = make_buffer(synthetic.FIST, synthetic.OPEN_PALM, *[synthetic.POINT] * 4)
        assert matcher.match_sequence(seq, list(inside), 1.0).matched

        outside = make_buffer(synthetic.FIST, synthetic.OPEN_PALM, *[synthetic.POINT] * 5)
        assert not matcher.match_sequence(seq, list(outside), 1.0).matched

    def test_max_duration(self):
        matcher = SequenceMatcher()
        slow = make_buffer(synthetic.FIST, synthetic.OPEN_PALM, interval=2.0)
        assert not matcher.match_sequence(
            make_sequence("fist", "open_palm", max_duration=1.5), list(slow), 5.0,
        ).matched
        assert matcher.match_sequence(make_sequence("fist", "open_palm"), list(slow), 5.0).matched

    def test_motion_step_uses_recorded_motion(self):
        matcher = SequenceMatcher(motion_score=0.9)
        seq = make_sequence("circle_clockwise", "open_palm")
        history = make_buffer((synthetic.FIST, MotionPattern.CIRCLE_CW), synthetic.OPEN_PALM)
        result = matcher.match_sequence(seq, list(history), 1.0)
        assert result.matched
        assert result.step_scores[0] == pytest.approx(0.9)

        still = make_buffer(synthetic.FIST, synthetic.OPEN_PALM)
        assert not matcher.match_sequence(seq, list(still), 1.0).matched

    def test_handedness_step(self):
        left_fist = GestureDefinition(id="left_fist", finger_pattern=synthetic.FIST, hand=Handedness.LEFT,
                                      threshold=0.85)
        seq = GestureSequence(id="sinister", steps=[left_fist, REGISTRY.get("open_palm")])
        result = SequenceMatcher().match_sequence(seq, list(make_buffer(synthetic.FIST, synthetic.OPEN_PALM)), 1.0)
        assert not result.matched

    def test_short_history(self):
        seq = make_sequence("open_palm", "fist", "call_me")
        result = SequenceMatcher().match_sequence(seq, list(make_buffer(synthetic.OPEN_PALM)), 1.0)
        assert not result.matched


class TestMatcher:
    def test_match_returns_only_matches(self):
        matcher = SequenceMatcher.with_defaults(REGISTRY)
        results = matcher.match(make_buffer(synthetic.FIST, synthetic.OPEN_PALM), 1.0)
        assert [r.sequence_id for r in results] == ["fireball"]

    def test_empty_buffer(self):
        assert SequenceMatcher.with_defaults(REGISTRY).match(PoseBuffer(), 1.0) == []

    def test_defaults(self):
        ids = [s.id for s in SequenceMatcher.with_defaults(REGISTRY).sequences]
        assert ids == ["fireball", "lightning_bolt", "tidal_wave", "shadow_step"]

    def test_register_all_is_all_or_nothing(self):
        matcher = SequenceMatcher([make_sequence("fist", "open_palm")])
        with pytest.raises(RegistrationError):
            matcher.register_all([make_sequence("point", seq_id="ok"), GestureSequence(id="empty", steps=[])])
        assert [s.id for s in matcher.sequences] == ["spell"]

    def test_duplicate_ids_rejected(self):
        matcher = SequenceMatcher([make_sequence("fist", "open_palm")])
        with pytest.raises(RegistrationError):
            matcher.register(make_sequence("point", "victory"))

    def test_negative_duration_rejected(self):
        with pytest.raises(RegistrationError):
            SequenceMatcher([make_sequence("fist", max_duration=-1.0)])


class TestSequenceFiles:
    def test_from_dict_resolves_ids(self):
        seq = GestureSequence.from_dict({"id": "burst", "steps": ["fist", "open_palm"]}, REGISTRY)
        assert [s.id for s in seq.steps] == ["fist", "open_palm"]
        assert seq.name == "burst"

    def test_from_dict_inline_step(self):
        seq = GestureSequence.from_dict({
            "id": "wave_hello",
            "steps": [{"id": "hello", "motion_pattern": "wave"}, "open_palm"],
        }, REGISTRY)
        assert seq.steps[0].motion_pattern is MotionPattern.WAVE

    def test_unknown_step(self):
        with pytest.raises(RegistrationError):
            GestureSequence.from_dict({"id": "bad", "steps": ["fist", "jazz_hands"]}, REGISTRY)

    def test_load_sequences(self, tmp_path):
        path = tmp_path / "spells.yml"
        path.write_text(yaml.dump({
            "sequences": [
                {"id": "fireball", "name": "Fireball", "steps": ["fist", "open_palm"], "max_duration": 1.5},
            ],
        }))
        sequences = load_sequences(path, REGISTRY)
        assert len(sequences) == 1
        assert sequences[0].max_duration == 1.5
        assert sequences[0].to_dict()["steps"] == ["fist", "open_palm"]
