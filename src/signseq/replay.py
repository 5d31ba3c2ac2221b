"""Landmark session recording and replay.

Record the raw hand observations of a live session so it can be fed back
through the recognizer later without a camera:
- reproducible tests and CI on headless machines
- tuning thresholds and DTW windows against the same input
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Sequence

from signseq.detector import HandObservation

RECORDING_VERSION = 1


@dataclass
class RecordedFrame:
    """Hands observed at one timestamp (ms from recording start)."""
    timestamp_ms: float
    hands: list[HandObservation] = field(default_factory=list)


class LandmarkRecorder:
    """Captures per-frame hand observations to a JSON file.

    Usage:
        recorder = LandmarkRecorder()
        recorder.start()
        # In your frame loop:
        recorder.add_frame(hands)
        recorder.stop()
        recorder.save("session.json")
    """

    def __init__(self):
        self._frames: list[RecordedFrame] = []
        self._start_time: Optional[float] = None
        self._recording = False

    def start(self):
        self._frames = []
        self._start_time = time.monotonic()
        self._recording = True

    def stop(self) -> int:
        """Stop recording. Returns number of frames captured."""
        self._recording = False
        return len(self._frames)

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration_ms(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp_ms

    def add_frame(self, hands: Sequence[HandObservation], timestamp_ms: Optional[float] = None):
        """Append a frame; frames with no hands are kept to preserve timing."""
        if not self._recording:
            return
        if timestamp_ms is None:
            timestamp_ms = (time.monotonic() - self._start_time) * 1000.0
        self._frames.append(RecordedFrame(timestamp_ms=timestamp_ms, hands=list(hands)))

    def save(self, path: str | Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": RECORDING_VERSION,
            "frameCount": len(self._frames),
            "durationMs": self.duration_ms,
            "frames": [
                {
                    "timestampMs": f.timestamp_ms,
                    "hands": [h.to_dict() for h in f.hands],
                }
                for f in self._frames
            ],
        }
        with open(path, "w") as f:
            json.dump(data, f)


class ReplaySource:
    """Landmark source that serves recorded frames.

    Implements the same initialize / detect / close surface as HandDetector;
    `detect` receives a RecordedFrame as its frame argument.

    Usage:
        source = ReplaySource.load("session.json")
        session = RecognitionSession(source)
        for frame in source.play():
            session.tick(frame, frame.timestamp_ms)
    """

    def __init__(self, frames: list[RecordedFrame]):
        self._frames = frames

    @classmethod
    def load(cls, path: str | Path) -> ReplaySource:
        with open(path) as f:
            data = json.load(f)

        version = data.get("version")
        if version != RECORDING_VERSION:
            raise ValueError(f"Unsupported recording version {version!r}")

        frames = [
            RecordedFrame(
                timestamp_ms=frame["timestampMs"],
                hands=[HandObservation.from_dict(h) for h in frame.get("hands", [])],
            )
            for frame in data["frames"]
        ]
        return cls(frames)

    def initialize(self, max_hands: Optional[int] = None, min_detection_confidence: Optional[float] = None):
        """Nothing to set up; recorded frames already hold the detections."""

    def detect(self, frame: RecordedFrame, timestamp_ms: float = 0.0) -> list[HandObservation]:
        # Every recorded hand; feature extraction picks the slots
        return list(frame.hands)

    def close(self):
        pass

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration_ms(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp_ms

    def play(self) -> Iterator[RecordedFrame]:
        """Iterate through all frames instantly (no timing)."""
        yield from self._frames

    def play_realtime(self, speed: float = 1.0) -> Iterator[RecordedFrame]:
        """Replay at the original timing, scaled by `speed`."""
        start = time.monotonic()
        for frame in self._frames:
            target = frame.timestamp_ms / 1000.0 / speed
            elapsed = time.monotonic() - start
            if target > elapsed:
                time.sleep(target - elapsed)
            yield frame
