"""Tests for the frame-loop driver."""

import numpy as np
import pytest

from signseq.classifier import DTWSequenceClassifier, GestureModel, ModelFormatError
from signseq.config import RecognitionConfig
from signseq.detector import HandObservation
from signseq.features import extract
from signseq.session import NO_MODEL_MESSAGE, RecognitionSession
from signseq.store import ModelStore, SequenceDataset

from synthetic import make_hand, wave_frames


class FakeSource:
    """Landmark source whose frames are the hand lists themselves."""

    def __init__(self, fail=False):
        self.fail = fail
        self.init_args = None
        self.detect_calls = 0
        self.closed = False

    def initialize(self, max_hands=None, min_detection_confidence=None):
        if self.fail:
            raise RuntimeError("camera unavailable")
        self.init_args = {"max_hands": max_hands, "min_detection_confidence": min_detection_confidence}

    def detect(self, frame, timestamp_ms):
        self.detect_calls += 1
        if isinstance(frame, Exception):
            raise frame
        return list(frame)

    def close(self):
        self.closed = True


def _model(max_hands=2):
    def seq(axis):
        return [extract(hands, max_hands) for hands in wave_frames(10, axis=axis)]
    return GestureModel.from_sequences([seq("sway"), seq("nod")], ["hello", "thanks"])


@pytest.fixture
def store(tmp_path):
    store = ModelStore(tmp_path / "model.json")
    store.save(_model())
    return store


class Recorder:
    """Collects callback invocations."""

    def __init__(self):
        self.gestures = []
        self.errors = []

    def on_gesture(self, label, confidence):
        self.gestures.append((label, confidence))

    def on_error(self, message):
        self.errors.append(message)


@pytest.fixture
def calls():
    return Recorder()


def _session(calls, source=None, **config):
    return RecognitionSession(
        source or FakeSource(),
        config=RecognitionConfig(**config),
        on_gesture_detected=calls.on_gesture,
        on_error=calls.on_error,
    )


def _spy_predict(session):
    seen = []
    original = session.classifier.predict

    def predict(sequence):
        seen.append(sequence)
        return original(sequence)

    session.classifier.predict = predict
    return seen


def _play(session, frames, start_ms=0.0, step_ms=100.0):
    statuses = []
    for i, hands in enumerate(frames):
        statuses.append(session.tick(hands, start_ms + i * step_ms))
    return statuses


class TestInitialize:
    def test_success(self, calls, store):
        source = FakeSource()
        session = _session(calls, source)
        assert session.initialize(store)
        assert source.init_args == {"max_hands": 2, "min_detection_confidence": 0.7}
        assert session.is_initialized
        assert session.is_model_loaded
        assert session.error is None
        assert session.classifier.classes == ["hello", "thanks"]
        assert calls.errors == []

    def test_missing_model(self, calls, tmp_path):
        session = _session(calls)
        assert not session.initialize(ModelStore(tmp_path / "missing.json"))
        assert session.error == NO_MODEL_MESSAGE
        assert session.is_source_ready
        assert calls.errors == []
        assert not session.start_recording(now_ms=0)

    def test_source_failure_reported_once(self, calls, store):
        session = _session(calls, FakeSource(fail=True))
        assert not session.initialize(store)
        assert session.initialize(store) is False
        assert len(calls.errors) == 1
        assert "camera unavailable" in calls.errors[0]
        assert session.error == calls.errors[0]

    def test_ticks_are_noops_after_failure(self, calls, store):
        source = FakeSource(fail=True)
        session = _session(calls, source)
        session.initialize(store)
        status = session.tick([make_hand()], 0)
        assert not status.hands_detected
        assert source.detect_calls == 0

    def test_dimension_mismatch(self, calls, store):
        session = _session(calls, max_hands=1)
        assert not session.initialize(store)
        assert not session.is_model_loaded
        assert len(calls.errors) == 1
        assert "dimension" in calls.errors[0]

    def test_corrupt_artifact(self, calls, tmp_path):
        path = tmp_path / "model.json"
        path.write_text("{broken")
        session = _session(calls)
        assert not session.initialize(ModelStore(path))
        assert len(calls.errors) == 1

    def test_empty_model_reported(self, calls, tmp_path):
        store = ModelStore(tmp_path / "model.json")
        store.save({"formatVersion": 1, "featureDimension": 126, "classifierKind": "dtw", "templates": []})
        session = _session(calls)
        assert not session.initialize(store)
        assert len(calls.errors) == 1
        assert "no templates" in calls.errors[0]
        assert session.error == calls.errors[0]

    def test_configured_window_applies(self, calls, store):
        session = _session(calls, dtw_window=2)
        session.initialize(store)
        assert session.classifier.window == 2
        session.start_recording(now_ms=0)
        _play(session, wave_frames(20, axis="sway"))
        assert session.tick([], 2000).result.label == "hello"

    def test_model_window_kept_without_config(self, calls, tmp_path):
        store = ModelStore(tmp_path / "model.json")
        clf = DTWSequenceClassifier(window=5)
        clf.load(_model())
        store.save(clf.export())
        session = _session(calls)
        session.initialize(store)
        assert session.classifier.window == 5

    def test_capture_without_model_is_not_an_error(self, calls, caplog):
        session = _session(calls)
        session.begin_capture("hello", SequenceDataset())
        with caplog.at_level("WARNING", logger="signseq.session"):
            assert not session.initialize()
        assert session.error is None
        assert "No trained sequence model" not in caplog.text
        assert session.start_recording(now_ms=0)

    def test_load_classifier_dimension_mismatch(self, calls):
        session = _session(calls)
        with pytest.raises(ModelFormatError):
            session.load_classifier(DTWSequenceClassifier(_model(max_hands=1)))

    def test_close(self, calls, store):
        source = FakeSource()
        with _session(calls, source) as session:
            session.initialize(store)
        assert source.closed
        assert not session.is_source_ready


class TestRecognition:
    def test_auto_stop_classifies(self, calls, store):
        session = _session(calls)
        session.initialize(store)
        seen = _spy_predict(session)

        assert session.start_recording(now_ms=0)
        statuses = _play(session, wave_frames(20, axis="sway"))
        assert statuses[-1].is_recording
        assert statuses[-1].recorded_frames == 20

        final = session.tick([], 2000)
        assert not final.is_recording
        assert final.result.label == "hello"
        assert final.accepted
        assert len(seen) == 1 and len(seen[0]) == 20
        assert len(calls.gestures) == 1
        label, confidence = calls.gestures[0]
        assert label == "hello" and confidence > 0.8
        assert session.current_label == "hello"
        assert session.confidence == confidence

    def test_manual_stop(self, calls, store):
        session = _session(calls)
        session.initialize(store)
        session.start_recording(now_ms=0)
        _play(session, wave_frames(10, axis="nod"), step_ms=50)

        result = session.stop_recording(now_ms=600)
        assert result.label == "thanks"
        assert result.confidence == pytest.approx(1.0)
        assert not session.is_recording
        assert calls.gestures == [("thanks", result.confidence)]

    def test_zero_hands_recording(self, calls, store):
        session = _session(calls)
        session.initialize(store)
        seen = _spy_predict(session)

        session.start_recording(now_ms=0)
        statuses = _play(session, [[] for _ in range(21)])
        assert all(not s.hands_detected for s in statuses)
        assert statuses[-1].result is None
        assert not session.is_recording
        assert session.recorded_frames == 0
        assert seen == []
        assert calls.gestures == []

    def test_empty_stop_skips_classifier(self, calls, store):
        session = _session(calls)
        session.initialize(store)
        seen = _spy_predict(session)
        session.start_recording(now_ms=0)
        session.tick([], 10)
        assert session.stop_recording(now_ms=20) is None
        assert seen == []
        assert not session.is_recording

    def test_below_threshold(self, calls, store):
        session = _session(calls, min_confidence=1.0)
        session.initialize(store)
        session.start_recording(now_ms=0)
        _play(session, wave_frames(20, axis="sway"))
        status = session.tick([], 2000)

        assert status.result.label == "hello"
        assert not status.accepted
        assert calls.gestures == []
        assert session.current_label is None
        assert session.confidence == 0.0
        assert session.last_result is status.result

    def test_auto_record(self, calls, store):
        session = _session(calls, recording_duration_ms=500, auto_record_interval_ms=1000)
        session.initialize(store)
        frames = [(hands, i * 50.0) for i, hands in enumerate(wave_frames(20))]

        results = session.run(frames)
        assert len(results) == 1
        assert session.stats.total_recordings == 1

    def test_callback_exception_contained(self, store):
        def explode(label, confidence):
            raise RuntimeError("ui gone")

        session = RecognitionSession(FakeSource(), on_gesture_detected=explode)
        session.initialize(store)
        session.start_recording(now_ms=0)
        _play(session, wave_frames(10))
        assert session.stop_recording(now_ms=1500).label == "hello"
        assert session.stats.total_gestures == 1

    def test_frame_budget_warning(self, calls, store, caplog):
        session = _session(calls, frame_budget_ms=0.0)
        session.initialize(store)
        session.start_recording(now_ms=0)
        _play(session, wave_frames(10))
        with caplog.at_level("WARNING", logger="signseq.session"):
            session.stop_recording(now_ms=1500)
        assert "Classification took" in caplog.text


class TestFrameHandling:
    def test_detection_error_skips_frame(self, calls, store):
        session = _session(calls)
        session.initialize(store)
        session.start_recording(now_ms=0)

        session.tick([make_hand()], 0)
        status = session.tick(RuntimeError("decoder hiccup"), 100)
        assert not status.hands_detected
        session.tick([make_hand()], 200)

        assert session.recorded_frames == 2
        assert session.stats.detection_errors == 1
        assert calls.errors == []

    def test_non_finite_features_dropped(self, calls, store):
        session = _session(calls)
        session.initialize(store)
        session.start_recording(now_ms=0)

        broken = HandObservation(landmarks=np.full((21, 3), np.nan, dtype=np.float32))
        status = session.tick([broken], 0)
        assert status.hands_detected
        assert session.recorded_frames == 0

    def test_hands_detected_surface(self, calls, store):
        session = _session(calls)
        session.initialize(store)
        assert session.tick([make_hand()], 0).hands_detected
        assert session.hands_detected
        assert not session.tick([], 10).hands_detected

    def test_disable_resets_state(self, calls, store):
        source = FakeSource()
        session = _session(calls, source)
        session.initialize(store)
        session.start_recording(now_ms=0)
        session.tick([make_hand()], 0)

        session.set_enabled(False)
        assert not session.is_recording
        assert not session.hands_detected
        calls_before = source.detect_calls
        session.tick([make_hand()], 10)
        assert source.detect_calls == calls_before

        session.set_enabled(True)
        session.tick([make_hand()], 20)
        assert source.detect_calls == calls_before + 1

    def test_stats(self, calls, store):
        session = _session(calls)
        session.initialize(store)
        _play(session, [[make_hand()], []])
        stats = session.stats
        assert stats.total_frames == 2
        assert "detection" in stats.profiler_summary


class TestCapture:
    def test_capture_then_recognize(self, calls, tmp_path):
        session = _session(calls)
        session.initialize(ModelStore(tmp_path / "missing.json"))
        dataset = SequenceDataset()

        t = 0.0
        for label, axis in (("hello", "sway"), ("thanks", "nod")):
            session.begin_capture(label, dataset)
            assert session.start_recording(now_ms=t)
            _play(session, wave_frames(10, axis=axis), start_ms=t)
            status = session.tick([], t + 2000)
            assert status.result is None
            t += 3000
        session.end_capture()

        assert dataset.counts() == {"hello": 1, "thanks": 1}
        assert dataset.samples[0].duration_ms == 2000
        assert calls.gestures == []
        assert not session.start_recording(now_ms=t)

        session.load_model(dataset.build_model(feature_dim=session.extractor.dimension))
        assert session.error is None
        session.start_recording(now_ms=t)
        _play(session, wave_frames(20, axis="nod"), start_ms=t)
        assert session.tick([], t + 2000).result.label == "thanks"

    def test_capture_requires_label(self, calls):
        with pytest.raises(ValueError):
            _session(calls).begin_capture("", SequenceDataset())
