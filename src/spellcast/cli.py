"""spellcast CLI: run, replay and inspect the recognition engine.

Usage:
    spellcast run         Recognize gestures and spells from the webcam
    spellcast record      Record a pose stream from the webcam
    spellcast replay      Replay a recording through the pipeline
    spellcast benchmark   Measure tick latency on synthetic input
    spellcast validate    Check a gesture/sequence definitions file
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

import typer
import yaml

from spellcast.config import EngineConfig
from spellcast.emitter import DetectionEvent
from spellcast.gestures import GestureRegistry
from spellcast.pipeline import GesturePipeline
from spellcast.sequences import GestureSequence, SequenceMatcher, SequenceMatchResult, load_sequences

app = typer.Typer(
    name="spellcast",
    help="🪄 Hand-gesture and spell recognition from hand-pose streams.",
    add_completion=False,
)


@app.callback()
def main_options(
    log_level: str = typer.Option("warning", "--log-level", help="Log level (debug, info, warning, error)"),
):
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_definitions(gestures_file: Optional[Path]) -> tuple[GestureRegistry, list[GestureSequence]]:
    if gestures_file is None:
        registry = GestureRegistry.with_defaults()
        return registry, SequenceMatcher.with_defaults(registry).sequences
    registry = GestureRegistry()
    registry.load_from_file(gestures_file)
    return registry, load_sequences(gestures_file, registry)


def _build_pipeline(
    gestures_file: Optional[Path],
    config_file: Optional[Path],
    **kwargs,
) -> GesturePipeline:
    try:
        config = EngineConfig.from_yaml(config_file) if config_file else EngineConfig()
        registry, sequences = _load_definitions(gestures_file)
    except (OSError, ValueError, yaml.YAMLError) as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)
    return GesturePipeline(gestures=registry, sequences=sequences, config=config, **kwargs)


def _print_gesture(event: DetectionEvent):
    kind = "🌀" if event.motion else "🤚"
    typer.echo(f"   {kind} {event.name} ({event.score:.2f}, {event.handedness.value} hand)")


def _print_sequence(match: SequenceMatchResult):
    typer.echo(f"   ✨ {match.name} cast! (score {match.score:.2f})")


def _pose_source():
    from spellcast.detector import HandPoseSource

    try:
        return HandPoseSource()
    except ImportError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)


def _open_camera(camera: int):
    try:
        import cv2
    except ImportError:
        typer.echo("❌ opencv-python is required. Install with: pip install spellcast[camera]", err=True)
        raise typer.Exit(1)

    cap = cv2.VideoCapture(camera)
    if not cap.isOpened():
        typer.echo(f"❌ Could not open camera {camera}", err=True)
        raise typer.Exit(1)

    def next_frame():
        ok, frame = cap.read()
        if not ok:
            return None
        return cv2.cvtColor(cv2.flip(frame, 1), cv2.COLOR_BGR2RGB)

    return cap, next_frame


@app.command()
def run(
    gestures: Optional[Path] = typer.Option(None, "--gestures", "-g", help="Gesture/sequence definitions (YAML or JSON)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Engine config YAML"),
    camera: int = typer.Option(0, help="Camera device index"),
    duration: float = typer.Option(0, help="Seconds to run (0 = until Ctrl+C)"),
    metrics_out: Optional[Path] = typer.Option(None, help="Write Prometheus metrics here on exit"),
):
    """Recognize gestures and spells live from the webcam."""
    from spellcast.metrics import MetricsCollector

    cap, next_frame = _open_camera(camera)
    metrics = MetricsCollector()
    pipeline = _build_pipeline(
        gestures, config, source=_pose_source(), frame_provider=next_frame, metrics=metrics,
    )
    pipeline.on_gesture(_print_gesture)
    pipeline.on_sequence(_print_sequence)
    pipeline.on_source_warning(
        lambda count, error: typer.echo(f"⚠️  Pose source failed {count} times in a row: {error}", err=True)
    )

    async def session():
        await pipeline.start()
        try:
            start = time.monotonic()
            while pipeline.running:
                if duration > 0 and time.monotonic() - start >= duration:
                    break
                await asyncio.sleep(0.05)
        finally:
            await pipeline.stop()

    typer.echo(f"🎥 Watching camera {camera} ({len(pipeline.gestures)} gestures, "
               f"{len(pipeline.sequences)} sequences). Press Ctrl+C to stop")
    try:
        asyncio.run(session())
    except KeyboardInterrupt:
        pass
    finally:
        cap.release()

    stats = pipeline.stats
    typer.echo(f"\n📊 {stats.total_frames} frames, {stats.fps:.1f} FPS, "
               f"{stats.total_detections} gestures, {stats.total_sequences} spells")
    if metrics_out:
        metrics_out.write_text(metrics.render())
        typer.echo(f"💾 Metrics written to {metrics_out}")


@app.command()
def record(
    output: Path = typer.Option(Path("recording.json"), "-o", help="Output file path"),
    duration: float = typer.Option(0, help="Recording duration in seconds (0 = until Ctrl+C)"),
    compact: bool = typer.Option(False, help="Save in compact .npz format"),
    camera: int = typer.Option(0, help="Camera device index"),
):
    """Record a hand-pose stream from the camera."""
    from spellcast.recorder import SampleRecorder

    cap, next_frame = _open_camera(camera)
    source = _pose_source()
    recorder = SampleRecorder()

    typer.echo(f"🎥 Recording from camera {camera}...")
    typer.echo("   Press Ctrl+C to stop")
    recorder.start()
    start = time.monotonic()

    try:
        while duration <= 0 or time.monotonic() - start < duration:
            frame = next_frame()
            if frame is None:
                continue
            sample = source.detect(frame)
            recorder.add(sample, time.monotonic())
            if recorder.tick_count % 30 == 0:
                typer.echo(f"\r   Ticks: {recorder.tick_count} | Duration: {recorder.duration:.1f}s", nl=False)
    except KeyboardInterrupt:
        pass
    finally:
        recorder.stop()
        cap.release()
        source.close()

    typer.echo(f"\n\n📼 Recorded {recorder.tick_count} ticks ({recorder.duration:.1f}s)")
    if compact:
        path = recorder.save_compact(output)
    else:
        recorder.save(output)
        path = output
    typer.echo(f"💾 Saved to: {path}")


@app.command()
def replay(
    recording: Path = typer.Argument(..., help="Path to recording file"),
    gestures: Optional[Path] = typer.Option(None, "--gestures", "-g", help="Gesture/sequence definitions"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Engine config YAML"),
    speed: float = typer.Option(1.0, help="Playback speed multiplier"),
    realtime: bool = typer.Option(False, help="Play at the recorded pace"),
):
    """Replay a recorded session through the pipeline."""
    from spellcast.recorder import SamplePlayer

    if not recording.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    player = SamplePlayer.load(recording)
    typer.echo(f"▶️  Replaying {recording.name} ({player.tick_count} ticks, {player.duration:.1f}s)")

    pipeline = _build_pipeline(gestures, config)
    pipeline.on_gesture(_print_gesture)
    pipeline.on_sequence(_print_sequence)

    ticks = player.play_realtime(speed=speed) if realtime else player.play()
    for tick in ticks:
        pipeline.process_sample(tick.sample, now=tick.timestamp)

    stats = pipeline.stats
    typer.echo(f"\n✅ Replay complete. {stats.total_detections} gestures, {stats.total_sequences} spells.")


@app.command()
def benchmark(
    iterations: int = typer.Option(1000, help="Number of ticks"),
):
    """Measure per-tick latency on a synthetic hand stream."""
    from spellcast import synthetic

    typer.echo(f"⚡ Running benchmark: {iterations} ticks")

    registry = GestureRegistry.with_defaults()
    pipeline = GesturePipeline(gestures=registry, sequences=SequenceMatcher.with_defaults(registry).sequences)

    shapes = [synthetic.FIST, synthetic.OPEN_PALM, synthetic.POINT, synthetic.VICTORY]
    path = synthetic.circle_path(n=40, radius=0.15)
    samples = [
        synthetic.make_hand(shapes[(i // 10) % len(shapes)], wrist=path[i % len(path)], timestamp=i * 0.05)
        for i in range(iterations)
    ]

    times = []
    for sample in samples:
        t0 = time.perf_counter()
        pipeline.process_sample(sample, now=sample.timestamp)
        times.append(time.perf_counter() - t0)

    avg_ms = sum(times) / len(times) * 1000
    p95_ms = sorted(times)[int(len(times) * 0.95)] * 1000
    fps = 1000 / avg_ms if avg_ms > 0 else 0

    stats = pipeline.stats
    typer.echo(f"\n📊 Results:")
    typer.echo(f"   Average latency: {avg_ms:.3f} ms")
    typer.echo(f"   P95 latency:     {p95_ms:.3f} ms")
    typer.echo(f"   Throughput:      {fps:.0f} ticks/s")
    typer.echo(f"   Detections:      {stats.total_detections} gestures, {stats.total_sequences} spells")

    typer.echo(f"\n📈 Stage breakdown:")
    for name, stage in stats.profiler_summary.items():
        typer.echo(f"   {name:15s} avg={stage['avg_ms']:.3f}ms  p95={stage['p95_ms']:.3f}ms")


@app.command()
def validate(
    definitions: Path = typer.Argument(..., help="Gesture/sequence definitions (YAML or JSON)"),
):
    """Check that a definitions file registers cleanly."""
    try:
        registry, sequences = _load_definitions(definitions)
        SequenceMatcher(sequences)
    except (OSError, ValueError, yaml.YAMLError) as e:
        typer.echo(f"❌ {definitions}: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"✅ {definitions}: {len(registry)} gestures, {len(sequences)} sequences")
    for gesture in registry:
        kind = gesture.motion_pattern.value if gesture.is_motion else "static"
        typer.echo(f"   🤚 {gesture.id:25s} {kind:15s} hand={gesture.hand.value}")
    for seq in sequences:
        typer.echo(f"   ✨ {seq.id:25s} {' → '.join(step.id for step in seq.steps)}")


def main():
    app()


if __name__ == "__main__":
    main()
