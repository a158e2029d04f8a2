"""Tick-driven recognition pipeline: pose sample → gestures, motion, spells."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Protocol

from spellcast.config import EngineConfig
from spellcast.emitter import DetectionEvent, GestureEmitter
from spellcast.gestures import GestureDefinition, GestureRegistry, finger_extensions
from spellcast.metrics import MetricsCollector
from spellcast.patterns import MotionPattern
from spellcast.pose import HandPoseSample, PoseBuffer, validate_sample
from spellcast.profiler import PipelineProfiler
from spellcast.sequences import GestureSequence, SequenceMatcher, SequenceMatchResult
from spellcast.trajectory import ActivityState, TrajectoryTracker

logger = logging.getLogger("spellcast.pipeline")


class PoseSource(Protocol):
    """Anything that turns a frame into at most one hand sample."""

    async def estimate(self, frame: Any) -> Optional[HandPoseSample]: ...

    def close(self) -> None: ...


GestureListener = Callable[[DetectionEvent], None]
SequenceListener = Callable[[SequenceMatchResult], None]
HandPoseListener = Callable[[HandPoseSample], None]
MotionPatternListener = Callable[[MotionPattern], None]
SourceWarningListener = Callable[[int, BaseException], None]


@dataclass
class TickResult:
    """Everything one tick produced."""
    timestamp: float
    detections: list[DetectionEvent] = field(default_factory=list)
    sequences: list[SequenceMatchResult] = field(default_factory=list)
    motion: MotionPattern = MotionPattern.NONE
    new_motion: bool = False  # motion became active on this tick
    hand_present: bool = False


@dataclass
class PipelineStats:
    """Runtime statistics."""
    fps: float
    avg_latency_ms: float
    total_frames: int
    total_detections: int
    total_sequences: int
    source_failures: int
    motion_state: str
    active_motion_pattern: str
    classifications: int
    profiler_summary: dict = field(default_factory=dict)


class GesturePipeline:
    """End-to-end engine: sample → extraction → motion → emission → sequences.

    Drive it synchronously with ``process_sample`` (replay, tests), or give
    it a pose source and run the async loop with ``start``/``stop``.

    Args:
        gestures: Initial gesture set (validated all-or-nothing).
        sequences: Initial sequence set (validated all-or-nothing).
        config: Engine settings; defaults when omitted.
        source: Async pose source used by the tick loop.
        frame_provider: Returns the next frame for ``source``; returning
            None ends the loop.
        clock: Monotonic time function.
        profiler: Stage timer; a fresh one when omitted.
        metrics: Optional Prometheus metrics collector.
    """

    def __init__(
        self,
        gestures: Optional[Iterable[GestureDefinition]] = None,
        sequences: Optional[Iterable[GestureSequence]] = None,
        config: Optional[EngineConfig] = None,
        source: Optional[PoseSource] = None,
        frame_provider: Optional[Callable[[], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
        profiler: Optional[PipelineProfiler] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or EngineConfig()
        self.config.validate()
        self.source = source
        self.frame_provider = frame_provider
        self.profiler = profiler or PipelineProfiler()
        self.metrics = metrics
        self._clock = clock

        self._registry = GestureRegistry()
        self._matcher = SequenceMatcher(
            window_factor=self.config.sequence_window_factor,
            motion_score=self.config.motion_score,
        )
        self._emitter = GestureEmitter(
            self._registry, cooldown=self.config.cooldown, motion_score=self.config.motion_score,
        )
        self._tracker = TrajectoryTracker(self.config)
        self._poses = PoseBuffer(self.config.pose_buffer_size)

        self._gesture_listeners: list[GestureListener] = []
        self._sequence_listeners: list[SequenceListener] = []
        self._warning_listeners: list[SourceWarningListener] = []
        self._pose_listeners: list[HandPoseListener] = []
        self._motion_listeners: list[MotionPatternListener] = []

        self._last_sequence_time: dict[str, float] = {}
        self._last_sample: Optional[HandPoseSample] = None
        self._tick_times: deque[float] = deque(maxlen=60)
        self._latencies: deque[float] = deque(maxlen=60)
        self._total_frames = 0
        self._total_detections = 0
        self._total_sequences = 0
        self._source_failures = 0
        self._consecutive_failures = 0

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._loop_exited: Optional[asyncio.Event] = None
        self._source_closed = False

        if gestures is not None:
            self.register_gestures(gestures)
        if sequences is not None:
            self.register_sequences(sequences)

    # --- Registration ---

    def register_gestures(self, gestures: Iterable[GestureDefinition]):
        """Replace the gesture set; raises RegistrationError and keeps the old set if invalid."""
        self._registry.replace(gestures)
        logger.info("Registered %d gestures", len(self._registry))

    def register_sequences(self, sequences: Iterable[GestureSequence]):
        """Replace the sequence set; raises RegistrationError and keeps the old set if invalid."""
        self._matcher.register_all(sequences)
        self._last_sequence_time.clear()
        logger.info("Registered %d sequences", len(self._matcher.sequences))

    @property
    def gestures(self) -> GestureRegistry:
        return self._registry

    @property
    def sequences(self) -> list[GestureSequence]:
        return self._matcher.sequences

    # --- Listeners ---

    def on_gesture(self, callback: GestureListener):
        """Register a callback for gesture detections."""
        self._gesture_listeners.append(callback)

    def on_sequence(self, callback: SequenceListener):
        """Register a callback for sequence matches."""
        self._sequence_listeners.append(callback)

    def on_hand_pose(self, callback: HandPoseListener):
        """Register a callback for every tick that carries a usable hand sample."""
        self._pose_listeners.append(callback)

    def on_motion_pattern(self, callback: MotionPatternListener):
        """Register a callback for newly recognized motion patterns."""
        self._motion_listeners.append(callback)

    def on_source_warning(self, callback: SourceWarningListener):
        """Register a callback for repeated pose-source failures.

        Called with (consecutive_failures, last_error).
        """
        self._warning_listeners.append(callback)

    def _notify(self, listeners: list, kind: str, *args):
        for cb in list(listeners):
            try:
                cb(*args)
            except Exception as e:
                logger.error("%s listener %r failed: %s", kind, cb, e)

    # --- Tick processing ---

    def process_sample(self, sample: Any, now: Optional[float] = None) -> TickResult:
        """Run one tick. ``sample`` may be a HandPoseSample, a mapping, or None (no hand).

        Malformed samples are treated as no hand.
        """
        now = self._clock() if now is None else float(now)
        t0 = time.perf_counter()
        sample = validate_sample(sample)
        result = TickResult(timestamp=now, hand_present=sample is not None)

        with self.profiler.stage("total"):
            extensions = None
            if sample is not None and self._registry.static_gestures:
                with self.profiler.stage("extraction"):
                    extensions = finger_extensions(sample.landmarks)

            with self.profiler.stage("motion"):
                result.motion, result.new_motion = self._track_motion(sample, now)

            if sample is not None:
                self._last_sample = sample
                self._poses.append(sample, result.motion)

            with self.profiler.stage("emission"):
                event = self._emitter.process(sample, result.motion, now, extensions)
            if event is not None:
                if event.motion:
                    self._tracker.reset()
                self._total_detections += 1
                result.detections.append(event)

            if sample is not None:
                with self.profiler.stage("sequence_scan"):
                    result.sequences = self._due_sequences(self._matcher.match(self._poses, now), now)
                self._total_sequences += len(result.sequences)

        latency = time.perf_counter() - t0
        self._total_frames += 1
        self._tick_times.append(now)
        self._latencies.append(latency)
        if self.metrics is not None:
            self.metrics.record_frame(latency, sample is not None)
            for event in result.detections:
                self.metrics.record_detection(event.gesture_id)
            for match in result.sequences:
                self.metrics.record_sequence(match.sequence_id)

        if sample is not None:
            self._notify(self._pose_listeners, "Hand pose", sample)
        if result.new_motion:
            self._notify(self._motion_listeners, "Motion pattern", result.motion)
        for event in result.detections:
            logger.debug("Detected %s (%.2f)", event.gesture_id, event.score)
            self._notify(self._gesture_listeners, "Gesture", event)
        for match in result.sequences:
            logger.debug("Sequence %s matched (%.2f)", match.sequence_id, match.score)
            self._notify(self._sequence_listeners, "Sequence", match)

        return result

    def _track_motion(self, sample: Optional[HandPoseSample], now: float) -> tuple[MotionPattern, bool]:
        """Update the tracker; returns the active pattern and whether it is new."""
        if not self.config.motion_tracking:
            return MotionPattern.NONE, False
        before = self._tracker.active_pattern
        pattern = self._tracker.update(sample.wrist if sample is not None else None, now)
        new = pattern is not before and pattern is not MotionPattern.NONE
        if new:
            logger.debug("Motion pattern %s", pattern.value)
            if self.metrics is not None:
                self.metrics.record_motion_pattern(pattern.value)
        return pattern, new

    def _due_sequences(self, matches: list[SequenceMatchResult], now: float) -> list[SequenceMatchResult]:
        """Drop matches of a sequence already reported within the sequence cooldown."""
        due = []
        for match in matches:
            last = self._last_sequence_time.get(match.sequence_id)
            if last is not None and now - last < self.config.sequence_cooldown:
                continue
            self._last_sequence_time[match.sequence_id] = now
            due.append(match)
        return due

    # --- Async loop ---

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the tick loop as a background task."""
        if self.source is None:
            raise RuntimeError("no pose source configured")
        if self._source_closed:
            raise RuntimeError("pose source already closed")
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self.run())
        logger.info("Pipeline started")

    async def run(self):
        """Tick until stopped or the frame provider runs dry."""
        if self.source is None:
            raise RuntimeError("no pose source configured")
        if self._source_closed:
            logger.info("Pose source already closed, not ticking")
            return
        self._running = True
        self._loop_task = asyncio.current_task()
        self._loop_exited = asyncio.Event()
        try:
            while self._running:
                try:
                    frame = self.frame_provider() if self.frame_provider is not None else None
                    if frame is None and self.frame_provider is not None:
                        logger.info("Frame provider exhausted")
                        break
                    sample = await self.source.estimate(frame)
                except Exception as e:
                    sample = None
                    self._on_source_failure(e)
                else:
                    self._consecutive_failures = 0

                # A result that arrives after stop() is discarded
                if not self._running:
                    break
                self.process_sample(sample)
                await asyncio.sleep(0)
        finally:
            self._running = False
            self._loop_exited.set()

    def _on_source_failure(self, error: Exception):
        self._consecutive_failures += 1
        self._source_failures += 1
        if self.metrics is not None:
            self.metrics.record_source_failure()
        logger.warning("Pose source failed (%d in a row): %s", self._consecutive_failures, error)
        if self._consecutive_failures == self.config.failure_warning_threshold:
            logger.warning("Pose source has failed %d consecutive times", self._consecutive_failures)
            self._notify(self._warning_listeners, "Source warning", self._consecutive_failures, error)

    async def stop(self):
        """Stop the loop and release the pose source. Safe to call repeatedly."""
        self._running = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            await task
        # run() may be driven directly, without start()
        if self._loop_exited is not None and self._loop_task is not asyncio.current_task():
            await self._loop_exited.wait()
        if self.source is not None and not self._source_closed:
            self._source_closed = True
            self._clear_state()
            try:
                self.source.close()
            except Exception:
                logger.exception("Failed to close pose source")
            logger.info("Pipeline stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.stop()

    # --- Introspection ---

    @property
    def active_motion_pattern(self) -> MotionPattern:
        return self._tracker.active_pattern

    @property
    def last_sample(self) -> Optional[HandPoseSample]:
        """Most recent usable hand sample, or None."""
        return self._last_sample

    @property
    def motion_state(self) -> ActivityState:
        return self._tracker.state

    @property
    def fps(self) -> float:
        """Tick rate over the recent window, from tick timestamps."""
        if len(self._tick_times) < 2:
            return 0.0
        span = self._tick_times[-1] - self._tick_times[0]
        if span <= 0:
            return 0.0
        return (len(self._tick_times) - 1) / span

    @property
    def stats(self) -> PipelineStats:
        avg_latency = sum(self._latencies) / len(self._latencies) if self._latencies else 0.0
        return PipelineStats(
            fps=self.fps,
            avg_latency_ms=avg_latency * 1000,
            total_frames=self._total_frames,
            total_detections=self._total_detections,
            total_sequences=self._total_sequences,
            source_failures=self._source_failures,
            motion_state=self._tracker.state.value,
            active_motion_pattern=self._tracker.active_pattern.value,
            classifications=self._tracker.classifications,
            profiler_summary=self.profiler.summary(),
        )

    def _clear_state(self):
        self._tracker.reset()
        self._poses.clear()
        self._emitter.reset()
        self._last_sequence_time.clear()
        self._consecutive_failures = 0
        self._last_sample = None

    def reset(self):
        """Clear buffers, debounce state and statistics."""
        self._clear_state()
        self._tick_times.clear()
        self._latencies.clear()
        self._total_frames = 0
        self._total_detections = 0
        self._total_sequences = 0
        self._source_failures = 0
        self.profiler.reset()
