"""Frame-loop driver tying the landmark source, recorder and classifier together.

A RecognitionSession owns every piece of state that lives across frames:
the landmark source handle, the recording buffer, the loaded classifier and
the caller's callbacks. It is driven by calling `tick()` once per display
frame from a single thread.

Usage:
    session = RecognitionSession(
        HandDetector(),
        config=RecognitionConfig(recording_duration_ms=2000),
        on_gesture_detected=lambda label, conf: print(label, conf),
        on_error=print,
    )
    session.initialize(ModelStore("model.json"))
    session.start_recording()
    while running:
        status = session.tick(frame_rgb)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import numpy as np

from signseq.classifier import (
    ClassificationResult,
    DTWSequenceClassifier,
    GestureModel,
    ModelFormatError,
    classifier_from_artifact,
    create_classifier,
)
from signseq.config import RecognitionConfig
from signseq.features import FeatureExtractor, is_valid_feature
from signseq.profiler import PipelineProfiler
from signseq.recorder import RecordingController
from signseq.store import ModelStore, SequenceDataset

logger = logging.getLogger("signseq.session")

NO_MODEL_MESSAGE = "No trained sequence model found. Capture templates and run `signseq train`."


@dataclass
class FrameStatus:
    """What happened during one tick."""
    hands_detected: bool
    is_recording: bool
    recorded_frames: int
    result: Optional[ClassificationResult] = None  # set when a recording closed this tick
    accepted: bool = False


@dataclass
class SessionStats:
    total_frames: int
    total_recordings: int
    total_gestures: int
    detection_errors: int
    profiler_summary: dict = field(default_factory=dict)


class RecognitionSession:
    """Single-writer owner of all recognition state.

    Args:
        source: Landmark source with `initialize(max_hands, min_detection_confidence)`,
            `detect(frame, timestamp_ms)` and `close()`.
        config: Recognition settings.
        on_gesture_detected: Called with (label, confidence) for accepted results.
        on_error: Called with a message when initialization fails.
    """

    def __init__(
        self,
        source: Any,
        config: Optional[RecognitionConfig] = None,
        on_gesture_detected: Optional[Callable[[str, float], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        profiler: Optional[PipelineProfiler] = None,
    ):
        self.config = (config or RecognitionConfig()).validate()
        self.source = source
        self.on_gesture_detected = on_gesture_detected
        self.on_error = on_error
        self.profiler = profiler or PipelineProfiler()

        self.extractor = FeatureExtractor(
            max_hands=self.config.max_hands,
            align_rotation=self.config.align_rotation,
        )
        self.controller = RecordingController(
            recording_duration_ms=self.config.recording_duration_ms,
            auto_record_interval_ms=self.config.auto_record_interval_ms,
        )
        self.classifier: Optional[DTWSequenceClassifier] = None

        self.enabled = True
        self.is_initialized = False
        self.error: Optional[str] = None
        self.hands_detected = False
        self.current_label: Optional[str] = None
        self.confidence = 0.0
        self.last_result: Optional[ClassificationResult] = None

        self._source_ready = False
        self._capture_label: Optional[str] = None
        self._capture_dataset: Optional[SequenceDataset] = None

        self._total_frames = 0
        self._total_recordings = 0
        self._total_gestures = 0
        self._detection_errors = 0

    def initialize(self, model_store: Optional[ModelStore] = None) -> bool:
        """Start the landmark source and load the model, once.

        Failures are reported through `on_error` and leave recognition
        disabled; they never raise. Returns True when a model is loaded.
        """
        if self.is_initialized:
            return self.is_model_loaded

        try:
            self.source.initialize(
                max_hands=self.config.max_hands,
                min_detection_confidence=self.config.min_detection_confidence,
            )
            self._source_ready = True

            data = model_store.load() if model_store is not None else None
            if data is None:
                if self.is_capturing:
                    logger.debug("No model loaded, capturing templates only")
                else:
                    self.error = NO_MODEL_MESSAGE
                    logger.warning(NO_MODEL_MESSAGE)
            else:
                self.load_classifier(
                    classifier_from_artifact(data, expected_dim=self.extractor.dimension)
                )
                logger.info("Initialized with classes: %s", ", ".join(self.classifier.classes))
        except Exception as e:
            self._report_error(f"Initialization failed: {e}")
        finally:
            self.is_initialized = True

        return self.is_model_loaded

    def load_model(self, model: GestureModel):
        """Install a freshly built model, replacing the current one."""
        classifier = create_classifier(model.kind)
        classifier.load(model)
        self.load_classifier(classifier)

    def load_classifier(self, classifier: DTWSequenceClassifier):
        """Install a loaded classifier. A configured `dtw_window` overrides the model's."""
        model = classifier.model
        if model is None:
            raise ValueError("Classifier has no model loaded")
        if model.template_count == 0:
            raise ModelFormatError("Model has no templates")
        if model.feature_dim != self.extractor.dimension:
            raise ModelFormatError(
                f"Model feature dimension {model.feature_dim} does not match "
                f"extractor dimension {self.extractor.dimension} (max_hands={self.config.max_hands})"
            )
        if self.config.dtw_window is not None:
            classifier.window = self.config.dtw_window
        self.classifier = classifier
        self.error = None
        self._update_armed()

    def close(self):
        """Release the landmark source."""
        self.controller.cancel()
        if self._source_ready:
            self.source.close()
            self._source_ready = False

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    @property
    def is_source_ready(self) -> bool:
        return self._source_ready

    @property
    def is_model_loaded(self) -> bool:
        return self.classifier is not None and self.classifier.is_trained

    @property
    def is_recording(self) -> bool:
        return self.controller.is_recording

    @property
    def recorded_frames(self) -> int:
        return self.controller.recorded_frames

    @property
    def is_capturing(self) -> bool:
        return self._capture_label is not None

    def set_enabled(self, enabled: bool):
        """Pause or resume processing. Pausing drops any transient state."""
        self.enabled = enabled
        if not enabled:
            self.controller.cancel()
            self.hands_detected = False
            self.current_label = None
            self.confidence = 0.0

    def begin_capture(self, label: str, dataset: SequenceDataset):
        """Store completed recordings under `label` instead of classifying them."""
        if not label:
            raise ValueError("Capture label must be non-empty")
        self._capture_label = label
        self._capture_dataset = dataset
        self._update_armed()
        logger.info("Capturing templates for '%s'", label)

    def end_capture(self):
        self._capture_label = None
        self._capture_dataset = None
        self._update_armed()

    def _update_armed(self):
        self.controller.armed = self.is_model_loaded or self.is_capturing

    def start_recording(self, now_ms: Optional[float] = None) -> bool:
        return self.controller.start_recording(now_ms)

    def stop_recording(self, now_ms: Optional[float] = None) -> Optional[ClassificationResult]:
        """Stop now and classify whatever was buffered."""
        sequence = self.controller.stop_recording(now_ms)
        if sequence is None:
            return None
        return self._complete(sequence)

    def tick(self, frame: Any, now_ms: Optional[float] = None) -> FrameStatus:
        """Process one frame: detect, extract, record, and classify on window close."""
        now = now_ms if now_ms is not None else time.monotonic() * 1000.0

        if not self.enabled or not self._source_ready:
            return self._status()

        self._total_frames += 1

        try:
            with self.profiler.stage("detection"):
                observations = self.source.detect(frame, now)
            features = None
            if observations:
                with self.profiler.stage("feature_extraction"):
                    features = self.extractor(observations)
        except Exception as e:
            self._detection_errors += 1
            self.hands_detected = False
            logger.error("Detection error: %s", e)
            return self._status()

        self.hands_detected = bool(observations)
        if features is not None and not is_valid_feature(features, self.extractor.max_hands):
            logger.warning("Dropping frame with non-finite features")
            features = None

        sequence = self.controller.update(features, now)
        if sequence is None:
            return self._status()

        result = self._complete(sequence)
        return self._status(
            result=result,
            accepted=result is not None and result.accepted(self.config.min_confidence),
        )

    def run(self, frames: Sequence[tuple[Any, float]]) -> list[ClassificationResult]:
        """Drive the session over (frame, timestamp_ms) pairs; returns closed-window results."""
        results = []
        for frame, timestamp_ms in frames:
            status = self.tick(frame, timestamp_ms)
            if status.result is not None:
                results.append(status.result)
        return results

    def _complete(self, sequence: list[np.ndarray]) -> Optional[ClassificationResult]:
        self._total_recordings += 1

        if self.is_capturing:
            self._capture_dataset.add(
                self._capture_label, sequence, duration_ms=self.controller.last_duration_ms,
            )
            logger.info(
                "Captured '%s' sample with %d frames (%d total)",
                self._capture_label, len(sequence),
                self._capture_dataset.counts().get(self._capture_label, 0),
            )
            return None

        if self.classifier is None:
            return None

        try:
            with self.profiler.stage("classification"):
                result = self.classifier.predict(sequence)
        except Exception as e:
            logger.error("Classification error: %s", e)
            result = None

        elapsed = self.profiler.last_ms("classification")
        if elapsed is not None and elapsed > self.config.frame_budget_ms:
            logger.warning(
                "Classification took %.1f ms (budget %.1f ms); shrink templates or set dtw_window",
                elapsed, self.config.frame_budget_ms,
            )

        self.last_result = result
        if result is not None and result.accepted(self.config.min_confidence):
            self.current_label = result.label
            self.confidence = result.confidence
            self._total_gestures += 1
            logger.info("Detected: %s (conf: %.2f)", result.label, result.confidence)
            if self.on_gesture_detected is not None:
                try:
                    self.on_gesture_detected(result.label, result.confidence)
                except Exception as e:
                    logger.error("on_gesture_detected callback error: %s", e)
        else:
            if result is not None:
                logger.info(
                    "Low confidence for %s (%.2f < %.2f), ignoring",
                    result.label, result.confidence, self.config.min_confidence,
                )
            self.current_label = None
            self.confidence = 0.0

        return result

    def _status(self, result: Optional[ClassificationResult] = None, accepted: bool = False) -> FrameStatus:
        return FrameStatus(
            hands_detected=self.hands_detected,
            is_recording=self.controller.is_recording,
            recorded_frames=self.controller.recorded_frames,
            result=result,
            accepted=accepted,
        )

    def _report_error(self, message: str):
        self.error = message
        logger.error(message)
        if self.on_error is not None:
            try:
                self.on_error(message)
            except Exception as e:
                logger.error("on_error callback error: %s", e)

    @property
    def stats(self) -> SessionStats:
        return SessionStats(
            total_frames=self._total_frames,
            total_recordings=self._total_recordings,
            total_gestures=self._total_gestures,
            detection_errors=self._detection_errors,
            profiler_summary=self.profiler.summary(),
        )
