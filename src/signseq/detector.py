"""Hand landmark source backed by MediaPipe Hands."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

try:
    import mediapipe as mp
except ImportError:
    mp = None


HANDEDNESS_ORDER = ("Left", "Right")


@dataclass
class HandObservation:
    """One detected hand: 21 ordered 3D landmarks plus a handedness tag."""
    landmarks: np.ndarray  # shape (21, 3), normalized image coordinates
    handedness: str = "Unknown"  # "Left", "Right" or "Unknown"
    score: float = 1.0

    def __post_init__(self):
        self.landmarks = np.asarray(self.landmarks, dtype=np.float32)
        if self.landmarks.ndim != 2 or self.landmarks.shape[1] != 3:
            raise ValueError(
                f"landmarks must have shape (N, 3), got {self.landmarks.shape}"
            )

    @property
    def slot_rank(self) -> int:
        """Sort key placing left hands before right hands before untagged ones."""
        try:
            return HANDEDNESS_ORDER.index(self.handedness)
        except ValueError:
            return len(HANDEDNESS_ORDER)

    def to_dict(self) -> dict:
        return {
            "landmarks": self.landmarks.tolist(),
            "handedness": self.handedness,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: dict) -> HandObservation:
        return cls(
            landmarks=np.array(data["landmarks"], dtype=np.float32),
            handedness=data.get("handedness", "Unknown"),
            score=data.get("score", 1.0),
        )


class HandDetector:
    """Detects up to `max_hands` hands per frame using MediaPipe Hands.

    Landmark ordering and count (21 per hand) are stable across calls, which
    the feature extractor relies on.

    Usage:
        detector = HandDetector()
        detector.initialize(max_hands=2, min_detection_confidence=0.7)
        hands = detector.detect(frame_rgb, timestamp_ms)
        detector.close()
    """

    # MediaPipe hand landmark indices
    WRIST = 0
    THUMB_CMC, THUMB_MCP, THUMB_IP, THUMB_TIP = 1, 2, 3, 4
    INDEX_MCP, INDEX_PIP, INDEX_DIP, INDEX_TIP = 5, 6, 7, 8
    MIDDLE_MCP, MIDDLE_PIP, MIDDLE_DIP, MIDDLE_TIP = 9, 10, 11, 12
    RING_MCP, RING_PIP, RING_DIP, RING_TIP = 13, 14, 15, 16
    PINKY_MCP, PINKY_PIP, PINKY_DIP, PINKY_TIP = 17, 18, 19, 20

    NUM_LANDMARKS = 21
    LANDMARK_DIM = 3  # x, y, z

    def __init__(
        self,
        max_hands: int = 2,
        min_detection_confidence: float = 0.7,
        min_tracking_confidence: float = 0.7,
    ):
        self.max_hands = max_hands
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self._hands = None

    def initialize(
        self,
        max_hands: Optional[int] = None,
        min_detection_confidence: Optional[float] = None,
    ):
        """Create the MediaPipe graph. Calling it twice is a no-op."""
        if self._hands is not None:
            return
        if mp is None:
            raise ImportError(
                "mediapipe is required. Install with: pip install mediapipe"
            )

        if max_hands is not None:
            self.max_hands = max_hands
        if min_detection_confidence is not None:
            self.min_detection_confidence = min_detection_confidence

        self._hands = mp.solutions.hands.Hands(
            static_image_mode=False,
            max_num_hands=self.max_hands,
            min_detection_confidence=self.min_detection_confidence,
            min_tracking_confidence=self.min_tracking_confidence,
        )

    @property
    def is_initialized(self) -> bool:
        return self._hands is not None

    def detect(self, frame_rgb: np.ndarray, timestamp_ms: float = 0.0) -> list[HandObservation]:
        """Detect hands in an RGB frame.

        Args:
            frame_rgb: RGB image as numpy array (H, W, 3), uint8.
            timestamp_ms: Frame timestamp. The solutions API tracks frames
                internally, so it is accepted for interface parity only.

        Returns:
            List of HandObservation, empty if no hands were found.
        """
        if self._hands is None:
            return []

        results = self._hands.process(frame_rgb)
        if not results.multi_hand_landmarks:
            return []

        handedness = results.multi_handedness or []
        hands = []
        for i, hand_landmarks in enumerate(results.multi_hand_landmarks):
            landmarks = np.array(
                [[lm.x, lm.y, lm.z] for lm in hand_landmarks.landmark],
                dtype=np.float32,
            )
            label, score = "Unknown", 1.0
            if i < len(handedness) and handedness[i].classification:
                label = handedness[i].classification[0].label
                score = float(handedness[i].classification[0].score)
            hands.append(HandObservation(landmarks=landmarks, handedness=label, score=score))

        return hands

    def close(self):
        """Release MediaPipe resources."""
        if self._hands is not None:
            self._hands.close()
            self._hands = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
