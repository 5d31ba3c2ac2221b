"""signseq CLI.

Usage:
    signseq capture    — Record labeled template sequences from the camera
    signseq train      — Build a DTW model artifact from captured sequences
    signseq recognize  — Live recognition from the camera
    signseq record     — Record raw landmarks for later replay
    signseq replay     — Run a recorded landmark session through the recognizer
    signseq inspect    — Show model or dataset statistics
    signseq benchmark  — Measure classification latency against a model
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="signseq",
    help="🤟 Dynamic sign gesture recognition with DTW templates.",
    add_completion=False,
)


def _setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(path: Optional[str]):
    from signseq.config import RecognitionConfig

    if path is None:
        return RecognitionConfig()
    try:
        return RecognitionConfig.from_yaml(path)
    except (OSError, ValueError) as e:
        typer.echo(f"❌ Invalid config {path}: {e}", err=True)
        raise typer.Exit(1)


def _open_camera(camera: int):
    import cv2

    cap = cv2.VideoCapture(camera)
    if not cap.isOpened():
        typer.echo(f"❌ Could not open camera {camera}", err=True)
        raise typer.Exit(1)
    return cap


def _camera_frames(cap):
    """Yield RGB frames until the camera stops delivering."""
    import cv2

    while True:
        ret, frame = cap.read()
        if not ret:
            break
        yield cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)


@app.command()
def capture(
    label: str = typer.Argument(..., help="Gesture label to capture"),
    dataset: str = typer.Option("data/sequences.json", help="Dataset file to append to"),
    samples: int = typer.Option(5, help="Number of sequences to capture"),
    pause_ms: float = typer.Option(1000, help="Pause between captures (ms)"),
    camera: int = typer.Option(0, help="Camera device index"),
    config: Optional[str] = typer.Option(None, help="Recognition config YAML"),
    log_level: str = typer.Option("info", help="Log level"),
):
    """Capture template sequences for one label."""
    from signseq.detector import HandDetector
    from signseq.session import RecognitionSession
    from signseq.store import SequenceDataset

    _setup_logging(log_level)
    cfg = _load_config(config)
    # Each capture starts automatically once hands are visible after the pause
    cfg.auto_record_interval_ms = cfg.recording_duration_ms + pause_ms

    data = SequenceDataset.load(dataset)
    start_count = data.counts().get(label, 0)

    session = RecognitionSession(HandDetector(), config=cfg)
    session.begin_capture(label, data)
    session.initialize()
    if not session.is_source_ready:
        typer.echo(f"❌ {session.error}", err=True)
        raise typer.Exit(1)

    cap = _open_camera(camera)
    typer.echo(f"🎥 Capturing {samples} '{label}' sequences ({cfg.recording_duration_ms:.0f} ms each)")
    typer.echo("   Show the sign when hands are detected. Press Ctrl+C to stop early")

    try:
        for frame in _camera_frames(cap):
            session.tick(frame)
            if data.counts().get(label, 0) - start_count >= samples:
                break
    except KeyboardInterrupt:
        pass
    finally:
        cap.release()
        session.close()

    captured = data.counts().get(label, 0) - start_count
    data.save(dataset)
    typer.echo(f"\n💾 Captured {captured} sequences → {dataset}")
    typer.echo(f"   Counts: {json.dumps(data.counts())}")


@app.command()
def train(
    dataset: str = typer.Argument(..., help="Captured sequence dataset (.json)"),
    output: str = typer.Option("model.json", help="Output model artifact"),
    config: Optional[str] = typer.Option(None, help="Recognition config YAML"),
):
    """Build a DTW template model from a captured dataset."""
    from signseq.classifier import create_classifier
    from signseq.features import feature_dimension
    from signseq.store import ModelStore, SequenceDataset

    cfg = _load_config(config)
    path = Path(dataset)
    if not path.exists():
        typer.echo(f"❌ Dataset not found: {dataset}", err=True)
        raise typer.Exit(1)

    data = SequenceDataset.load(path)
    if not data.samples:
        typer.echo("❌ Dataset has no samples.", err=True)
        raise typer.Exit(1)

    classifier = create_classifier(
        "dtw", window=cfg.dtw_window, confidence_mapping=cfg.confidence_mapping,
    )
    try:
        model = data.build_model(
            feature_dim=feature_dimension(cfg.max_hands), params=classifier.params,
        )
    except ValueError as e:
        typer.echo(f"❌ Could not build model: {e}", err=True)
        raise typer.Exit(1)

    ModelStore(output).save(model)

    typer.echo(f"✅ Model built: {model.template_count} templates, {len(model.labels)} classes")
    for label, count in model.counts().items():
        typer.echo(f"   {label:20s} {count}")
    typer.echo(f"   Saved to: {output}")


@app.command()
def recognize(
    model: str = typer.Option("model.json", help="Model artifact"),
    camera: int = typer.Option(0, help="Camera device index"),
    interval_ms: Optional[float] = typer.Option(None, help="Auto-record interval (ms), overrides config"),
    config: Optional[str] = typer.Option(None, help="Recognition config YAML"),
    log_level: str = typer.Option("warning", help="Log level"),
):
    """Recognize dynamic signs live from the camera."""
    from signseq.detector import HandDetector
    from signseq.session import NO_MODEL_MESSAGE, RecognitionSession
    from signseq.store import ModelStore

    _setup_logging(log_level)
    cfg = _load_config(config)
    if interval_ms is not None:
        cfg.auto_record_interval_ms = interval_ms
    if cfg.auto_record_interval_ms <= 0:
        cfg.auto_record_interval_ms = cfg.recording_duration_ms + 500

    def on_gesture(label: str, confidence: float):
        typer.echo(f"   🤟 {label} (confidence: {confidence:.2f})")

    def on_error(message: str):
        typer.echo(f"❌ {message}", err=True)

    session = RecognitionSession(
        HandDetector(), config=cfg, on_gesture_detected=on_gesture, on_error=on_error,
    )
    if not session.initialize(ModelStore(model)):
        if session.error == NO_MODEL_MESSAGE:
            typer.echo(f"❌ {session.error}", err=True)
        session.close()
        raise typer.Exit(1)

    cap = _open_camera(camera)
    typer.echo(f"🎥 Recognizing {', '.join(session.classifier.classes)}. Press Ctrl+C to stop")

    try:
        for frame in _camera_frames(cap):
            session.tick(frame)
    except KeyboardInterrupt:
        pass
    finally:
        cap.release()
        session.close()

    stats = session.stats
    typer.echo(f"\n✅ {stats.total_gestures} gestures in {stats.total_recordings} recordings")


@app.command()
def record(
    output: str = typer.Option("session.json", "-o", help="Output file path"),
    duration: float = typer.Option(0, help="Recording duration in seconds (0 = until Ctrl+C)"),
    camera: int = typer.Option(0, help="Camera device index"),
    max_hands: int = typer.Option(2, help="Maximum hands to detect"),
):
    """Record raw hand landmarks for replay."""
    from signseq.detector import HandDetector
    from signseq.replay import LandmarkRecorder

    detector = HandDetector(max_hands=max_hands)
    detector.initialize()
    recorder = LandmarkRecorder()
    cap = _open_camera(camera)

    typer.echo(f"🎥 Recording from camera {camera}... Press Ctrl+C to stop")
    recorder.start()
    start = time.monotonic()

    try:
        for frame in _camera_frames(cap):
            elapsed_ms = (time.monotonic() - start) * 1000.0
            hands = detector.detect(frame, elapsed_ms)
            recorder.add_frame(hands, elapsed_ms)

            if recorder.frame_count % 30 == 0:
                typer.echo(
                    f"\r   Frames: {recorder.frame_count} | Duration: {elapsed_ms / 1000:.1f}s | Hands: {len(hands)}",
                    nl=False,
                )
            if duration > 0 and elapsed_ms >= duration * 1000:
                break
    except KeyboardInterrupt:
        pass
    finally:
        recorder.stop()
        cap.release()
        detector.close()

    recorder.save(output)
    typer.echo(f"\n\n📼 Recorded {recorder.frame_count} frames ({recorder.duration_ms / 1000:.1f}s) → {output}")


@app.command()
def replay(
    recording: str = typer.Argument(..., help="Landmark recording (.json)"),
    model: str = typer.Option("model.json", help="Model artifact"),
    realtime: bool = typer.Option(False, help="Play at original timing"),
    speed: float = typer.Option(1.0, help="Playback speed multiplier"),
    config: Optional[str] = typer.Option(None, help="Recognition config YAML"),
    log_level: str = typer.Option("warning", help="Log level"),
):
    """Replay a recorded landmark session through the recognizer."""
    from signseq.replay import ReplaySource
    from signseq.session import RecognitionSession
    from signseq.store import ModelStore

    _setup_logging(log_level)
    cfg = _load_config(config)
    if cfg.auto_record_interval_ms <= 0:
        cfg.auto_record_interval_ms = cfg.recording_duration_ms

    path = Path(recording)
    if not path.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    source = ReplaySource.load(path)
    typer.echo(f"▶️  Replaying {path.name} ({source.frame_count} frames, {source.duration_ms / 1000:.1f}s)")

    def on_gesture(label: str, confidence: float):
        typer.echo(f"   🤟 {label} (confidence: {confidence:.2f})")

    session = RecognitionSession(source, config=cfg, on_gesture_detected=on_gesture)
    if not session.initialize(ModelStore(model)):
        typer.echo(f"❌ {session.error}", err=True)
        raise typer.Exit(1)

    frames = source.play_realtime(speed=speed) if realtime else source.play()
    for frame in frames:
        status = session.tick(frame, frame.timestamp_ms)
        if status.result is not None and not status.accepted:
            typer.echo(f"   · {status.result.label} below threshold ({status.result.confidence:.2f})")

    stats = session.stats
    typer.echo(f"\n✅ Replay complete. {stats.total_gestures} gestures in {stats.total_recordings} recordings.")


@app.command()
def inspect(
    path: str = typer.Argument(..., help="Model artifact or sequence dataset (.json)"),
):
    """Show statistics for a model artifact or a captured dataset."""
    from signseq.classifier import GestureModel, ModelFormatError
    from signseq.store import SequenceDataset

    file_path = Path(path)
    if not file_path.exists():
        typer.echo(f"❌ File not found: {path}", err=True)
        raise typer.Exit(1)

    try:
        with open(file_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        typer.echo(f"❌ Not a valid JSON file: {e}", err=True)
        raise typer.Exit(1)
    if not isinstance(data, dict):
        typer.echo(f"❌ Expected a JSON object in {path}", err=True)
        raise typer.Exit(1)

    if "formatVersion" in data:
        try:
            model = GestureModel.from_dict(data)
        except ModelFormatError as e:
            typer.echo(f"❌ Invalid model: {e}", err=True)
            raise typer.Exit(1)
        typer.echo(f"📦 Model ({model.kind.value}, format v{model.format_version})")
        typer.echo(f"   Feature dimension: {model.feature_dim}")
        typer.echo(f"   Params: {json.dumps(dict(model.params))}")
        typer.echo(f"   Templates: {model.template_count}")
        for label, count in model.counts().items():
            lengths = [len(seq) for seq in model.templates[label]]
            typer.echo(f"   {label:20s} {count} (frames {min(lengths)}–{max(lengths)})")
    else:
        try:
            dataset = SequenceDataset.load(file_path)
        except ValueError as e:
            typer.echo(f"❌ Invalid dataset: {e}", err=True)
            raise typer.Exit(1)
        stats = dataset.stats()
        typer.echo(f"📂 Dataset: {stats['sample_count']} samples, {stats['label_count']} labels")
        typer.echo(f"   Average sequence length: {stats['avg_sequence_length']} frames")
        for label, count in sorted(dataset.counts().items()):
            typer.echo(f"   {label:20s} {count}")


@app.command()
def benchmark(
    model: str = typer.Option("model.json", help="Model artifact"),
    iterations: int = typer.Option(50, help="Number of classifications"),
    frames: int = typer.Option(60, help="Frames per query sequence"),
    window: Optional[int] = typer.Option(None, help="Override the DTW window"),
):
    """Measure classification latency against a model."""
    import numpy as np

    from signseq.classifier import classifier_from_artifact
    from signseq.profiler import PipelineProfiler
    from signseq.store import ModelStore

    data = ModelStore(model).load()
    if data is None:
        typer.echo(f"❌ Model not found: {model}", err=True)
        raise typer.Exit(1)

    classifier = classifier_from_artifact(data)
    if window is not None:
        classifier.window = window

    rng = np.random.default_rng(42)
    dim = classifier.model.feature_dim
    profiler = PipelineProfiler(window_size=iterations)

    typer.echo(
        f"⚡ {iterations} classifications of {frames}-frame sequences against "
        f"{classifier.model.template_count} templates (window={classifier.window})"
    )
    for _ in range(iterations):
        query = rng.standard_normal((frames, dim)).astype(np.float32) * 0.1
        with profiler.stage("classification"):
            classifier.predict(query)

    stats = profiler.get_stage_stats("classification")
    typer.echo(f"\n📊 Results:")
    typer.echo(f"   Average latency: {stats.avg_ms:.2f} ms")
    typer.echo(f"   P95 latency:     {stats.p95_ms:.2f} ms")
    typer.echo(f"   Max latency:     {stats.max_ms:.2f} ms")


def main():
    app()


if __name__ == "__main__":
    main()
