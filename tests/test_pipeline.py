"""Tests for the recognition pipeline, synchronous and async."""

import asyncio
import logging

import pytest

from spellcast import synthetic
from spellcast.config import EngineConfig
from spellcast.gestures import GestureDefinition, GestureRegistry, RegistrationError
from spellcast.metrics import MetricsCollector
from spellcast.patterns import MotionPattern
from spellcast.pipeline import GesturePipeline
from spellcast.sequences import GestureSequence, SequenceMatcher
from spellcast.trajectory import ActivityState


REGISTRY = GestureRegistry.with_defaults()
SEQUENCES = SequenceMatcher.with_defaults(REGISTRY).sequences


def make_pipeline(**kwargs):
    kwargs.setdefault("gestures", REGISTRY)
    return GesturePipeline(**kwargs)


def held(shape, n, start=0.0, interval=0.1):
    return [synthetic.make_hand(shape, timestamp=start + i * interval) for i in range(n)]


def run_stream(pipeline, samples):
    """Process samples at their own timestamps; returns (gesture ids, sequence ids)."""
    gestures, sequences = [], []
    for sample in samples:
        result = pipeline.process_sample(sample, now=sample.timestamp)
        gestures += [(e.gesture_id, e.timestamp) for e in result.detections]
        sequences += [(m.sequence_id, m.timestamp) for m in result.sequences]
    return gestures, sequences


class FakeSource:
    """Pose source that replays a script of samples and exceptions."""

    def __init__(self, outputs=(), delay=0.0, close_error=None):
        self.outputs = list(outputs)
        self.delay = delay
        self.close_error = close_error
        self.close_calls = 0
        self.estimate_calls = 0
        self.in_flight = 0
        self.closed_mid_call = False

    async def estimate(self, frame):
        self.estimate_calls += 1
        self.in_flight += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        item = self.outputs.pop(0) if self.outputs else None
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.close_calls += 1
        if self.in_flight:
            self.closed_mid_call = True
        if self.close_error is not None:
            raise self.close_error


def frames(n):
    it = iter(range(n))
    return lambda: next(it, None)


async def run_until_exhausted(pipeline):
    await pipeline.start()
    while pipeline.running:
        await asyncio.sleep(0.01)
    await pipeline.stop()


class TestProcessSample:
    def test_held_gesture_emits_every_tick(self):
        pipeline = make_pipeline()
        gestures, _ = run_stream(pipeline, held(synthetic.OPEN_PALM, 5))
        assert [g for g, _ in gestures] == ["open_palm"] * 5

    def test_no_hand(self):
        result = make_pipeline().process_sample(None, now=0.0)
        assert not result.hand_present
        assert result.detections == []

    def test_malformed_sample_is_no_hand(self):
        result = make_pipeline().process_sample({"landmarks": [[0.0, 0.0, 0.0]] * 20}, now=0.0)
        assert not result.hand_present
        assert result.detections == []

    def test_mapping_sample(self):
        result = make_pipeline().process_sample(synthetic.make_hand(synthetic.FIST).to_dict(), now=0.0)
        assert result.hand_present
        assert result.detections[0].gesture_id == "fist"

    def test_sequence_reported_once(self):
        pipeline = make_pipeline(sequences=SEQUENCES)
        samples = held(synthetic.FIST, 3) + held(synthetic.OPEN_PALM, 3, start=0.3)
        _, sequences = run_stream(pipeline, samples)
        assert [s for s, _ in sequences] == ["fireball"]
        assert sequences[0][1] == pytest.approx(0.3)

    def test_sequence_cooldown_elapses(self):
        pipeline = make_pipeline(sequences=SEQUENCES, config=EngineConfig(sequence_cooldown=0.15))
        samples = held(synthetic.FIST, 2) + held(synthetic.OPEN_PALM, 3, start=0.2)
        _, sequences = run_stream(pipeline, samples)
        # The fist→open window stays in the history, so it repeats once cooled down
        assert [s for s, _ in sequences] == ["fireball", "fireball"]

    def test_invalid_registration_keeps_old_set(self):
        pipeline = make_pipeline()
        with pytest.raises(RegistrationError):
            pipeline.register_gestures([GestureDefinition(id="broken")])
        assert len(pipeline.gestures) == len(REGISTRY)


class TestMotion:
    def test_circle_emits_motion_gesture(self):
        gestures = [REGISTRY.get("circle_clockwise"), REGISTRY.get("circle_counterclockwise")]
        pipeline = make_pipeline(gestures=gestures)
        events = []
        for sample in synthetic.hand_stream(synthetic.circle_path(n=20)):
            result = pipeline.process_sample(sample, now=sample.timestamp)
            if result.detections and not events:
                # Emitting a motion gesture restarts tracking
                assert result.motion is MotionPattern.CIRCLE_CW
                assert pipeline.active_motion_pattern is MotionPattern.NONE
                assert pipeline.motion_state is ActivityState.IDLE
            events += result.detections

        assert events
        assert all(e.gesture_id == "circle_clockwise" and e.motion for e in events)

    def test_motion_tracking_disabled(self):
        pipeline = make_pipeline(config=EngineConfig(motion_tracking=False))
        for sample in synthetic.hand_stream(synthetic.circle_path(n=20), extensions=synthetic.FIST):
            result = pipeline.process_sample(sample, now=sample.timestamp)
            assert result.motion is MotionPattern.NONE
            assert all(not e.motion for e in result.detections)
        assert pipeline.stats.classifications == 0

    def test_too_few_points_never_classified(self):
        pipeline = make_pipeline()
        for sample in synthetic.hand_stream(synthetic.line_path(n=4)):
            pipeline.process_sample(sample, now=sample.timestamp)
        assert pipeline.stats.classifications == 0
        assert pipeline.active_motion_pattern is MotionPattern.NONE

    def test_motion_recorded_in_pose_history(self):
        swirl = GestureSequence(
            id="swirl_then_fist",
            steps=[REGISTRY.get("circle_clockwise"), REGISTRY.get("fist")],
        )
        pipeline = make_pipeline(sequences=[swirl])
        samples = synthetic.hand_stream(synthetic.circle_path(n=20), extensions=synthetic.FIST)
        last = samples[-1]
        samples.append(synthetic.make_hand(synthetic.FIST, wrist=last.wrist, timestamp=last.timestamp + 0.1))
        _, sequences = run_stream(pipeline, samples)
        assert "swirl_then_fist" in [s for s, _ in sequences]


class TestReplay:
    def stream(self):
        samples = held(synthetic.FIST, 3) + held(synthetic.OPEN_PALM, 3, start=0.3)
        samples += synthetic.hand_stream(synthetic.circle_path(n=20), start=0.6)
        samples += held(synthetic.VICTORY, 4, start=2.6)
        return samples

    def test_replay_after_reset_is_identical(self):
        pipeline = make_pipeline(sequences=SEQUENCES)
        first = run_stream(pipeline, self.stream())
        pipeline.reset()
        second = run_stream(pipeline, self.stream())
        assert first == second
        assert first[0]

    def test_fresh_pipeline_matches(self):
        a = run_stream(make_pipeline(sequences=SEQUENCES), self.stream())
        b = run_stream(make_pipeline(sequences=SEQUENCES), self.stream())
        assert a == b


class TestListeners:
    def test_order(self):
        pipeline = make_pipeline()
        calls = []
        pipeline.on_gesture(lambda e: calls.append(("a", e.gesture_id)))
        pipeline.on_gesture(lambda e: calls.append(("b", e.gesture_id)))
        pipeline.process_sample(synthetic.make_hand(synthetic.FIST), now=0.0)
        assert calls == [("a", "fist"), ("b", "fist")]

    def test_failing_listener_does_not_stop_others(self, caplog):
        pipeline = make_pipeline()
        calls = []

        def broken(event):
            raise RuntimeError("boom")

        pipeline.on_gesture(broken)
        pipeline.on_gesture(calls.append)
        result = pipeline.process_sample(synthetic.make_hand(), now=0.0)
        assert calls == result.detections
        assert "boom" in caplog.text

    def test_sequence_listener(self):
        pipeline = make_pipeline(sequences=SEQUENCES)
        spells = []
        pipeline.on_sequence(spells.append)
        run_stream(pipeline, held(synthetic.FIST, 2) + held(synthetic.OPEN_PALM, 2, start=0.2))
        assert [s.sequence_id for s in spells] == ["fireball"]


    def test_hand_pose_listener(self):
        pipeline = make_pipeline()
        poses = []
        pipeline.on_hand_pose(poses.append)
        samples = held(synthetic.FIST, 2)
        pipeline.process_sample(samples[0], now=0.0)
        pipeline.process_sample(None, now=0.1)
        pipeline.process_sample(samples[1], now=0.2)
        assert poses == samples
        assert pipeline.last_sample is samples[1]

    def test_motion_pattern_listener(self):
        pipeline = make_pipeline(gestures=[REGISTRY.get("fist")])
        patterns = []
        pipeline.on_motion_pattern(patterns.append)
        results = [
            pipeline.process_sample(sample, now=sample.timestamp)
            for sample in synthetic.hand_stream(synthetic.circle_path(n=20))
        ]
        # Reported when a pattern becomes active, not on every tick it stays active
        assert patterns == [r.motion for r in results if r.new_motion]
        assert patterns[-1] is MotionPattern.CIRCLE_CW
        assert pipeline.active_motion_pattern is MotionPattern.CIRCLE_CW

    def test_failing_motion_listener_is_isolated(self, caplog):
        pipeline = make_pipeline(gestures=[REGISTRY.get("fist")])
        patterns = []

        def broken(pattern):
            raise RuntimeError("overlay crashed")

        pipeline.on_motion_pattern(broken)
        pipeline.on_motion_pattern(patterns.append)
        for sample in synthetic.hand_stream(synthetic.circle_path(n=20)):
            pipeline.process_sample(sample, now=sample.timestamp)
        assert MotionPattern.CIRCLE_CW in patterns
        assert "overlay crashed" in caplog.text


class TestStats:
    def test_empty(self):
        stats = make_pipeline().stats
        assert stats.total_frames == 0
        assert stats.fps == 0.0
        assert stats.classifications == 0

    def test_counts_and_fps(self):
        pipeline = make_pipeline()
        run_stream(pipeline, held(synthetic.OPEN_PALM, 11))
        stats = pipeline.stats
        assert stats.total_frames == 11
        assert stats.total_detections == 11
        assert stats.fps == pytest.approx(10.0)
        assert stats.motion_state == "idle"
        assert set(stats.profiler_summary) == {"extraction", "motion", "emission", "sequence_scan", "total"}

    def test_metrics(self):
        metrics = MetricsCollector()
        pipeline = make_pipeline(metrics=metrics)
        run_stream(pipeline, held(synthetic.OPEN_PALM, 3))
        pipeline.process_sample(None, now=0.3)
        assert metrics.detection_counts == {"open_palm": 3}
        assert metrics.frames_total == 4

    def test_reset_clears_stats(self):
        pipeline = make_pipeline()
        run_stream(pipeline, held(synthetic.OPEN_PALM, 3))
        pipeline.reset()
        assert pipeline.stats.total_frames == 0
        assert pipeline.last_sample is None
        assert pipeline.stats.profiler_summary == {}


class TestAsyncLoop:
    def test_runs_until_frames_run_out(self):
        source = FakeSource(held(synthetic.OPEN_PALM, 5))
        pipeline = make_pipeline(source=source, frame_provider=frames(5))
        events = []
        pipeline.on_gesture(events.append)

        asyncio.run(run_until_exhausted(pipeline))

        assert pipeline.stats.total_frames == 5
        assert len(events) == 5
        assert source.close_calls == 1
        assert not pipeline.running

    def test_stop_is_idempotent(self):
        source = FakeSource()
        pipeline = make_pipeline(source=source, frame_provider=lambda: "frame")

        async def main():
            await pipeline.start()
            await asyncio.sleep(0.02)
            await pipeline.stop()
            await pipeline.stop()

        asyncio.run(main())
        assert source.close_calls == 1
        assert not pipeline.running

    def test_repeated_failures_warn_once(self):
        errors = [RuntimeError(f"camera glitch {i}") for i in range(4)]
        source = FakeSource([*errors, synthetic.make_hand()])
        pipeline = make_pipeline(source=source, frame_provider=frames(5))
        warnings = []
        pipeline.on_source_warning(lambda count, error: warnings.append((count, error)))

        asyncio.run(run_until_exhausted(pipeline))

        assert len(warnings) == 1
        assert warnings[0][0] == 3
        assert warnings[0][1] is errors[2]
        stats = pipeline.stats
        assert stats.source_failures == 4
        assert stats.total_frames == 5
        assert stats.total_detections == 1

    def test_close_failure_is_logged(self, caplog):
        source = FakeSource(close_error=RuntimeError("device busy"))
        pipeline = make_pipeline(source=source, frame_provider=frames(2))

        with caplog.at_level(logging.ERROR, logger="spellcast.pipeline"):
            asyncio.run(run_until_exhausted(pipeline))

        assert source.close_calls == 1
        assert "Failed to close pose source" in caplog.text

    def test_result_after_stop_is_discarded(self):
        source = FakeSource([synthetic.make_hand()], delay=0.05)
        pipeline = make_pipeline(source=source, frame_provider=lambda: "frame")

        async def main():
            await pipeline.start()
            await asyncio.sleep(0.01)
            await pipeline.stop()

        asyncio.run(main())
        assert pipeline.stats.total_frames == 0

    def test_stop_waits_for_directly_driven_loop(self):
        source = FakeSource([synthetic.make_hand()], delay=0.05)
        pipeline = make_pipeline(source=source, frame_provider=lambda: "frame")

        async def main():
            task = asyncio.create_task(pipeline.run())
            await asyncio.sleep(0.01)
            await pipeline.stop()
            await task

        asyncio.run(main())
        assert source.close_calls == 1
        assert not source.closed_mid_call
        assert pipeline.stats.total_frames == 0

    def test_run_scheduled_before_stop_never_ticks(self):
        source = FakeSource(held(synthetic.FIST, 3))
        pipeline = make_pipeline(source=source, frame_provider=lambda: "frame")

        async def main():
            task = asyncio.create_task(pipeline.run())
            await pipeline.stop()
            await task

        asyncio.run(main())
        assert source.close_calls == 1
        assert source.estimate_calls == 0
        assert not pipeline.running

    def test_start_without_source(self):
        with pytest.raises(RuntimeError):
            asyncio.run(make_pipeline().start())

    def test_cannot_restart_closed_source(self):
        source = FakeSource()
        pipeline = make_pipeline(source=source, frame_provider=frames(1))
        asyncio.run(run_until_exhausted(pipeline))
        with pytest.raises(RuntimeError):
            asyncio.run(pipeline.start())

    def test_async_context_manager(self):
        source = FakeSource(held(synthetic.FIST, 3))
        pipeline = make_pipeline(source=source, frame_provider=frames(3))

        async def main():
            async with pipeline:
                while pipeline.running:
                    await asyncio.sleep(0.01)

        asyncio.run(main())
        assert pipeline.stats.total_frames == 3
        assert source.close_calls == 1
