"""Sequence classification against labeled gesture templates.

A GestureModel holds the reference sequences recorded for each label. The
DTW classifier compares an input sequence with every template, keeps the
nearest template per label, and reports the label with the smallest
distance together with a confidence derived from that distance.

The acceptance threshold is applied by the caller (see RecognitionSession),
so `predict` always reports its best candidate.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from signseq.dtw import (
    CONFIDENCE_MAPPINGS,
    as_sequence_array,
    confidence_from_distance,
    dtw_distance,
)

logger = logging.getLogger("signseq.classifier")

FORMAT_VERSION = 1


class ModelFormatError(ValueError):
    """Raised when a model artifact is malformed or inconsistent."""


class ClassifierKind(Enum):
    DTW = "dtw"

    @classmethod
    def parse(cls, value: str | ClassifierKind) -> ClassifierKind:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ModelFormatError(f"Unsupported classifier kind: {value!r}") from None


@dataclass(frozen=True)
class GestureModel:
    """Immutable label → template-sequences mapping plus metadata."""
    feature_dim: int
    templates: Mapping[str, tuple[np.ndarray, ...]]
    kind: ClassifierKind = ClassifierKind.DTW
    params: Mapping[str, Any] = field(default_factory=dict)
    format_version: int = FORMAT_VERSION

    def __post_init__(self):
        if self.feature_dim < 1:
            raise ModelFormatError(f"feature_dim must be positive, got {self.feature_dim}")

        frozen: dict[str, tuple[np.ndarray, ...]] = {}
        for label, sequences in self.templates.items():
            if not isinstance(label, str) or not label:
                raise ModelFormatError(f"Template label must be a non-empty string, got {label!r}")
            checked = []
            for index, seq in enumerate(sequences):
                try:
                    arr = np.array(seq, dtype=np.float32)
                except ValueError as e:
                    raise ModelFormatError(f"Template '{label}' #{index} is ragged: {e}") from e
                if arr.ndim != 2 or len(arr) == 0:
                    raise ModelFormatError(f"Template '{label}' #{index} must be a non-empty list of frames")
                if arr.shape[1] != self.feature_dim:
                    raise ModelFormatError(
                        f"Template '{label}' #{index} has feature dimension {arr.shape[1]}, "
                        f"model declares {self.feature_dim}"
                    )
                arr.setflags(write=False)
                checked.append(arr)
            if checked:
                frozen[label] = tuple(checked)

        object.__setattr__(self, "templates", MappingProxyType(frozen))
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @classmethod
    def from_sequences(
        cls,
        sequences: Sequence[Sequence[np.ndarray]],
        labels: Sequence[str],
        feature_dim: Optional[int] = None,
        kind: ClassifierKind = ClassifierKind.DTW,
        params: Optional[Mapping[str, Any]] = None,
    ) -> GestureModel:
        """Group parallel (sequence, label) lists into a model."""
        if len(sequences) != len(labels) or not sequences:
            raise ValueError("Need matching, non-empty lists of sequences and labels")

        if feature_dim is None:
            feature_dim = len(sequences[0][0])

        grouped: dict[str, list] = {}
        for seq, label in zip(sequences, labels):
            grouped.setdefault(label, []).append(seq)

        return cls(
            feature_dim=feature_dim,
            templates={label: tuple(seqs) for label, seqs in grouped.items()},
            kind=kind,
            params=params or {},
        )

    @property
    def labels(self) -> list[str]:
        return sorted(self.templates)

    @property
    def template_count(self) -> int:
        return sum(len(seqs) for seqs in self.templates.values())

    def counts(self) -> dict[str, int]:
        """Number of templates per label."""
        return {label: len(self.templates[label]) for label in self.labels}

    def to_dict(self) -> dict:
        """Serialize to the versioned artifact record."""
        return {
            "formatVersion": self.format_version,
            "featureDimension": self.feature_dim,
            "classifierKind": self.kind.value,
            "params": dict(self.params),
            "templates": [
                {
                    "label": label,
                    "sequences": [seq.tolist() for seq in self.templates[label]],
                }
                for label in self.labels
            ],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], expected_dim: Optional[int] = None) -> GestureModel:
        """Rebuild a model from an artifact record, validating it fully.

        Args:
            data: Artifact dict as produced by `to_dict`.
            expected_dim: Feature dimension of the live extractor. A model
                built for a different dimension is rejected.
        """
        if not isinstance(data, Mapping):
            raise ModelFormatError("Model artifact must be a mapping")

        version = data.get("formatVersion")
        if version != FORMAT_VERSION:
            raise ModelFormatError(
                f"Unsupported model format version {version!r} (expected {FORMAT_VERSION})"
            )

        kind = ClassifierKind.parse(data.get("classifierKind", ""))

        feature_dim = data.get("featureDimension")
        if not isinstance(feature_dim, int) or isinstance(feature_dim, bool):
            raise ModelFormatError(f"featureDimension must be an integer, got {feature_dim!r}")
        if expected_dim is not None and feature_dim != expected_dim:
            raise ModelFormatError(
                f"Model feature dimension {feature_dim} does not match extractor dimension {expected_dim}"
            )

        entries = data.get("templates")
        if not isinstance(entries, list):
            raise ModelFormatError("templates must be a list")

        templates: dict[str, list] = {}
        for entry in entries:
            if not isinstance(entry, Mapping) or "label" not in entry:
                raise ModelFormatError(f"Malformed template entry: {entry!r:.80}")
            sequences = entry.get("sequences")
            if not isinstance(sequences, list):
                raise ModelFormatError(f"Template '{entry['label']}' has no sequence list")
            templates.setdefault(entry["label"], []).extend(sequences)

        return cls(
            feature_dim=feature_dim,
            templates={label: tuple(seqs) for label, seqs in templates.items()},
            kind=kind,
            params=data.get("params") or {},
            format_version=version,
        )


@dataclass
class ClassificationResult:
    """Outcome of classifying one recorded sequence."""
    label: Optional[str]  # None = no match
    confidence: float
    distance: Optional[float] = None
    label_distances: dict[str, float] = field(default_factory=dict)

    @property
    def matched(self) -> bool:
        return self.label is not None

    def accepted(self, min_confidence: float) -> bool:
        """True when the result clears a caller-side confidence threshold."""
        return self.matched and self.confidence >= min_confidence


class DTWSequenceClassifier:
    """Nearest-template DTW classifier.

    Each label's score is the distance to its closest template; the label
    with the smallest score wins.
    """

    kind = ClassifierKind.DTW

    # TODO: offer k-nearest voting across a label's templates as an opt-in
    # aggregation once there is captured data with divergent templates.

    def __init__(
        self,
        model: Optional[GestureModel] = None,
        window: Optional[int] = None,
        normalize: bool = True,
        confidence_mapping: str = "inverse",
        confidence_scale: float = 1.0,
    ):
        if confidence_mapping not in CONFIDENCE_MAPPINGS:
            raise ValueError(
                f"Unknown confidence mapping '{confidence_mapping}', expected one of {CONFIDENCE_MAPPINGS}"
            )
        self.window = window
        self.normalize = normalize
        self.confidence_mapping = confidence_mapping
        self.confidence_scale = confidence_scale
        self._model: Optional[GestureModel] = None

        if model is not None:
            self.load(model)

    @property
    def params(self) -> dict[str, Any]:
        return {
            "window": self.window,
            "normalize": self.normalize,
            "confidenceMapping": self.confidence_mapping,
            "confidenceScale": self.confidence_scale,
        }

    @property
    def model(self) -> Optional[GestureModel]:
        return self._model

    @property
    def is_trained(self) -> bool:
        return self._model is not None and self._model.template_count > 0

    @property
    def classes(self) -> list[str]:
        return self._model.labels if self._model else []

    def load(self, model: GestureModel):
        """Replace the held model wholesale, adopting its stored params."""
        if model.kind is not self.kind:
            raise ModelFormatError(f"{type(self).__name__} cannot load a '{model.kind.value}' model")

        params = model.params
        window = params.get("window", self.window)
        normalize = params.get("normalize", self.normalize)
        mapping = params.get("confidenceMapping", self.confidence_mapping)
        scale = params.get("confidenceScale", self.confidence_scale)

        if window is not None and (not isinstance(window, int) or isinstance(window, bool) or window < 0):
            raise ModelFormatError(f"window must be null or a non-negative integer, got {window!r}")
        if not isinstance(normalize, bool):
            raise ModelFormatError(f"normalize must be a boolean, got {normalize!r}")
        if mapping not in CONFIDENCE_MAPPINGS:
            raise ModelFormatError(f"Unknown confidence mapping '{mapping}'")
        if not isinstance(scale, (int, float)) or isinstance(scale, bool) or not scale > 0:
            raise ModelFormatError(f"confidenceScale must be a positive number, got {scale!r}")

        self.window = window
        self.normalize = normalize
        self.confidence_mapping = mapping
        self.confidence_scale = float(scale)
        self._model = model

        logger.info(
            "Loaded DTW model: %d templates, %d classes, feature dim %d",
            model.template_count, len(model.labels), model.feature_dim,
        )

    def fit(self, sequences: Sequence[Sequence[np.ndarray]], labels: Sequence[str]) -> GestureModel:
        """Build and hold a model from captured (sequence, label) pairs."""
        model = GestureModel.from_sequences(
            sequences, labels, kind=self.kind, params=self.params,
        )
        self.load(model)
        return model

    def predict(self, sequence: Sequence[np.ndarray]) -> Optional[ClassificationResult]:
        """Classify a recorded sequence.

        Returns None, never raising, when there is nothing to compare: an
        empty or malformed sequence, a dimension mismatch, or no templates.
        """
        if not self.is_trained:
            logger.warning("No templates loaded, cannot classify")
            return None

        if sequence is None or len(sequence) == 0:
            logger.warning("Empty sequence, nothing to classify")
            return None

        try:
            query = as_sequence_array(sequence)
        except ValueError as e:
            logger.warning("Malformed sequence: %s", e)
            return None

        model = self._model
        if query.shape[1] != model.feature_dim:
            logger.warning(
                "Sequence feature dimension %d does not match model dimension %d",
                query.shape[1], model.feature_dim,
            )
            return None
        if not np.all(np.isfinite(query)):
            logger.warning("Sequence contains non-finite values")
            return None

        label_distances: dict[str, float] = {}
        for label in model.labels:
            label_distances[label] = min(
                dtw_distance(query, template, window=self.window, normalize=self.normalize)
                for template in model.templates[label]
            )

        best_label = None
        best_distance = math.inf
        for label in model.labels:
            if label_distances[label] < best_distance:
                best_label, best_distance = label, label_distances[label]

        if best_label is None:
            # Every template was out of reach of the warping window
            return ClassificationResult(label=None, confidence=0.0, label_distances=label_distances)

        confidence = confidence_from_distance(
            best_distance, mapping=self.confidence_mapping, scale=self.confidence_scale,
        )
        return ClassificationResult(
            label=best_label,
            confidence=confidence,
            distance=best_distance,
            label_distances=label_distances,
        )

    def export(self) -> dict:
        """Serialize the held model to the artifact record."""
        if self._model is None:
            raise ValueError("Classifier has no model to export")
        model = GestureModel(
            feature_dim=self._model.feature_dim,
            templates=self._model.templates,
            kind=self.kind,
            params=self.params,
        )
        return model.to_dict()

    def import_model(self, data: Mapping[str, Any], expected_dim: Optional[int] = None) -> GestureModel:
        """Validate an artifact record and load it."""
        model = GestureModel.from_dict(data, expected_dim=expected_dim)
        self.load(model)
        return model


_CLASSIFIERS = {
    ClassifierKind.DTW: DTWSequenceClassifier,
}


def create_classifier(kind: str | ClassifierKind = ClassifierKind.DTW, **params) -> DTWSequenceClassifier:
    """Instantiate the classifier implementation registered for `kind`."""
    return _CLASSIFIERS[ClassifierKind.parse(kind)](**params)


def classifier_from_artifact(
    data: Mapping[str, Any],
    expected_dim: Optional[int] = None,
) -> DTWSequenceClassifier:
    """Build the right classifier for an artifact and load the model into it."""
    model = GestureModel.from_dict(data, expected_dim=expected_dim)
    classifier = create_classifier(model.kind)
    classifier.load(model)
    return classifier
