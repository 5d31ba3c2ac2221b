"""On-disk persistence for gesture models and captured template sequences.

Two JSON documents:
- the model artifact (see GestureModel.to_dict), read once at startup;
- the sequence dataset, an append-only list of labeled captures from which
  models are (re)built.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from signseq.classifier import GestureModel, ModelFormatError

logger = logging.getLogger("signseq.store")

DATASET_VERSION = 1


class ModelStore:
    """Loads and saves a single model artifact as JSON.

    Usage:
        store = ModelStore("models/signs.json")
        data = store.load()          # None when nothing has been saved yet
        store.save(model)
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Optional[dict]:
        """Read the raw artifact record. Validation happens on import."""
        if not self.exists():
            logger.info("No model artifact at %s", self.path)
            return None

        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ModelFormatError(f"Model artifact {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ModelFormatError(f"Model artifact {self.path} must contain a JSON object")
        return data

    def load_model(self, expected_dim: Optional[int] = None) -> Optional[GestureModel]:
        data = self.load()
        if data is None:
            return None
        return GestureModel.from_dict(data, expected_dim=expected_dim)

    def save(self, model: GestureModel | Mapping[str, Any]):
        """Write the artifact, replacing any previous one."""
        data = model.to_dict() if isinstance(model, GestureModel) else dict(model)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f)
        tmp_path.replace(self.path)

        logger.info("Saved model artifact to %s (%.1f KB)", self.path, self.path.stat().st_size / 1024)

    def clear(self):
        self.path.unlink(missing_ok=True)


@dataclass
class SequenceSample:
    """One captured template recording."""
    label: str
    sequence: list[list[float]]  # frames × features
    timestamp: float  # wall-clock seconds at capture
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "durationMs": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SequenceSample:
        return cls(
            label=data["label"],
            sequence=data["sequence"],
            timestamp=data.get("timestamp", 0.0),
            duration_ms=data.get("durationMs", 0.0),
        )


@dataclass
class SequenceDataset:
    """Labeled sequences captured for template training."""
    samples: list[SequenceSample] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def add(self, label: str, sequence: Sequence[np.ndarray], duration_ms: float = 0.0) -> SequenceSample:
        if not label:
            raise ValueError("Sample label must be non-empty")
        if len(sequence) == 0:
            raise ValueError("Cannot store an empty sequence")

        sample = SequenceSample(
            label=label,
            sequence=[np.asarray(frame, dtype=np.float32).tolist() for frame in sequence],
            timestamp=time.time(),
            duration_ms=duration_ms,
        )
        self.samples.append(sample)
        self.updated_at = sample.timestamp
        return sample

    @property
    def labels(self) -> list[str]:
        return sorted({s.label for s in self.samples})

    def counts(self) -> dict[str, int]:
        """Number of samples per label."""
        counts: dict[str, int] = {}
        for s in self.samples:
            counts[s.label] = counts.get(s.label, 0) + 1
        return counts

    def remove_label(self, label: str) -> int:
        """Drop every sample of `label`. Returns how many were removed."""
        before = len(self.samples)
        self.samples = [s for s in self.samples if s.label != label]
        removed = before - len(self.samples)
        if removed:
            self.updated_at = time.time()
        return removed

    def clear(self):
        self.samples = []
        self.updated_at = time.time()

    def stats(self) -> dict:
        lengths = [len(s.sequence) for s in self.samples]
        return {
            "sample_count": len(self.samples),
            "label_count": len(self.labels),
            "avg_sequence_length": round(sum(lengths) / len(lengths)) if lengths else 0,
        }

    def build_model(
        self,
        feature_dim: Optional[int] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> GestureModel:
        """Turn every sample into a template of a new, immutable model."""
        if not self.samples:
            raise ValueError("Dataset is empty, capture some sequences first")

        return GestureModel.from_sequences(
            [s.sequence for s in self.samples],
            [s.label for s in self.samples],
            feature_dim=feature_dim,
            params=params,
        )

    def to_dict(self) -> dict:
        return {
            "version": DATASET_VERSION,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "samples": [s.to_dict() for s in self.samples],
        }

    def save(self, path: str | Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f)

    @classmethod
    def load(cls, path: str | Path) -> SequenceDataset:
        """Load a dataset file, or start an empty one if it does not exist."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        if not isinstance(data, dict) or not isinstance(data.get("samples"), list):
            raise ValueError(f"Invalid dataset format in {path}")

        return cls(
            samples=[SequenceSample.from_dict(s) for s in data["samples"]],
            created_at=data.get("createdAt", time.time()),
            updated_at=data.get("updatedAt", time.time()),
        )
