"""Recognition settings, loadable from YAML."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from signseq.dtw import CONFIDENCE_MAPPINGS


@dataclass
class RecognitionConfig:
    max_hands: int = 2
    min_detection_confidence: float = 0.7
    min_confidence: float = 0.6
    recording_duration_ms: float = 2000.0
    auto_record_interval_ms: float = 0.0  # 0 disables the auto trigger
    dtw_window: Optional[int] = None  # Sakoe-Chiba half-width, None = unbounded
    confidence_mapping: str = "inverse"
    align_rotation: bool = False
    frame_budget_ms: float = 16.7

    def validate(self) -> RecognitionConfig:
        if self.max_hands < 1:
            raise ValueError(f"max_hands must be >= 1, got {self.max_hands}")
        for name in ("min_detection_confidence", "min_confidence"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.recording_duration_ms <= 0:
            raise ValueError(f"recording_duration_ms must be positive, got {self.recording_duration_ms}")
        if self.auto_record_interval_ms < 0:
            raise ValueError(f"auto_record_interval_ms must be >= 0, got {self.auto_record_interval_ms}")
        if self.dtw_window is not None and self.dtw_window < 0:
            raise ValueError(f"dtw_window must be >= 0, got {self.dtw_window}")
        if self.confidence_mapping not in CONFIDENCE_MAPPINGS:
            raise ValueError(
                f"confidence_mapping must be one of {CONFIDENCE_MAPPINGS}, got {self.confidence_mapping!r}"
            )
        return self

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> RecognitionConfig:
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**data).validate()

    @classmethod
    def from_yaml(cls, path: str | Path) -> RecognitionConfig:
        """Load settings from a YAML file; a `recognition:` section is optional."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if "recognition" in data:
            data = data["recognition"] or {}
        return cls.from_dict(data)

    def to_yaml(self, path: str | Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump({"recognition": self.to_dict()}, f, sort_keys=False)
