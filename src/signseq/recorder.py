"""Recording state machine for variable-length gesture windows.

The controller buffers one feature vector per frame while recording. A
recording ends when it is stopped explicitly or when `recording_duration_ms`
has elapsed; the buffered sequence is then handed back to the caller for
classification. Optionally a new recording starts automatically every
`auto_record_interval_ms` while hands are in view.

Usage:
    controller = RecordingController(recording_duration_ms=2000)
    controller.armed = True          # a model is loaded
    controller.start_recording()
    # In your frame loop:
    completed = controller.update(features_or_none)
    if completed:
        classifier.predict(completed)
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Optional

import numpy as np

logger = logging.getLogger("signseq.recorder")


def _now_ms() -> float:
    return time.monotonic() * 1000.0


class RecordingState(Enum):
    IDLE = "idle"
    RECORDING = "recording"


class RecordingController:
    """Buffers feature vectors between a start and a stop.

    All timestamps are milliseconds on a monotonic clock; pass them in
    explicitly for deterministic replay and tests.
    """

    def __init__(
        self,
        recording_duration_ms: float = 2000.0,
        auto_record_interval_ms: float = 0.0,
    ):
        self.recording_duration_ms = recording_duration_ms
        self.auto_record_interval_ms = auto_record_interval_ms
        self.armed = False  # set once a model is available

        self._state = RecordingState.IDLE
        self._buffer: list[np.ndarray] = []
        self._start_ms: Optional[float] = None
        self._last_auto_start_ms: Optional[float] = None
        self._explicit_call = False  # start/stop requested since last update()
        self.last_duration_ms = 0.0

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is RecordingState.RECORDING

    @property
    def recorded_frames(self) -> int:
        return len(self._buffer)

    def elapsed_ms(self, now_ms: Optional[float] = None) -> float:
        if not self.is_recording or self._start_ms is None:
            return 0.0
        now = now_ms if now_ms is not None else _now_ms()
        return now - self._start_ms

    def start_recording(self, now_ms: Optional[float] = None) -> bool:
        """Begin a new recording. Returns True if one was started.

        Ignored while a recording is already running or before a model has
        been loaded.
        """
        self._explicit_call = True

        if not self.armed:
            logger.warning("Model not loaded yet, ignoring start request")
            return False
        if self.is_recording:
            logger.debug("Already recording, ignoring duplicate start")
            return False

        self._begin(now_ms if now_ms is not None else _now_ms())
        return True

    def stop_recording(self, now_ms: Optional[float] = None) -> Optional[list[np.ndarray]]:
        """End the current recording.

        Returns the buffered sequence, or None when nothing was recording or
        the buffer is empty. The buffer is always cleared.
        """
        self._explicit_call = True
        return self._finish(now_ms if now_ms is not None else _now_ms())

    def cancel(self):
        """Abort the current recording and discard its frames."""
        if self.is_recording:
            logger.info("Recording cancelled (%d frames discarded)", len(self._buffer))
        self._state = RecordingState.IDLE
        self._buffer = []
        self._start_ms = None

    def update(
        self,
        features: Optional[np.ndarray],
        now_ms: Optional[float] = None,
    ) -> Optional[list[np.ndarray]]:
        """Advance the controller by one frame.

        Args:
            features: This frame's feature vector, or None if no hands were
                detected.
            now_ms: Frame timestamp.

        Returns:
            The completed sequence when the recording window closed on this
            frame and captured at least one frame, otherwise None.
        """
        now = now_ms if now_ms is not None else _now_ms()
        explicit = self._explicit_call
        self._explicit_call = False

        if self.is_recording:
            if features is not None:
                self._buffer.append(features)

            if now - self._start_ms >= self.recording_duration_ms:
                logger.debug("Recording window of %.0f ms elapsed", self.recording_duration_ms)
                return self._finish(now)
            return None

        # Explicit start/stop calls win over the auto trigger for this frame
        if (
            not explicit
            and self.armed
            and self.auto_record_interval_ms > 0
            and features is not None
            and (
                self._last_auto_start_ms is None
                or now - self._last_auto_start_ms >= self.auto_record_interval_ms
            )
        ):
            self._last_auto_start_ms = now
            logger.debug("Auto-record interval elapsed, starting recording")
            self._begin(now)

        return None

    def _begin(self, now_ms: float):
        self._buffer = []
        self._start_ms = now_ms
        self._state = RecordingState.RECORDING
        logger.info("Recording started")

    def _finish(self, now_ms: float) -> Optional[list[np.ndarray]]:
        if not self.is_recording:
            return None

        self.last_duration_ms = now_ms - self._start_ms
        sequence = self._buffer
        self._state = RecordingState.IDLE
        self._buffer = []
        self._start_ms = None

        if not sequence:
            logger.warning("No frames recorded, nothing to classify")
            return None

        logger.info("Recording stopped with %d frames", len(sequence))
        return sequence
