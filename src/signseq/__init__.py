"""signseq - Dynamic sign gesture recognition from hand landmark sequences."""

__version__ = "0.1.0"

from signseq.detector import HandDetector, HandObservation
from signseq.features import FeatureExtractor, extract, feature_dimension
from signseq.dtw import dtw_distance, confidence_from_distance, resample_sequence
from signseq.classifier import (
    ClassificationResult,
    ClassifierKind,
    DTWSequenceClassifier,
    GestureModel,
    ModelFormatError,
    classifier_from_artifact,
    create_classifier,
)
from signseq.recorder import RecordingController, RecordingState
from signseq.store import ModelStore, SequenceDataset
from signseq.config import RecognitionConfig
from signseq.replay import LandmarkRecorder, ReplaySource
from signseq.session import RecognitionSession, FrameStatus
from signseq.profiler import PipelineProfiler
