"""Per-frame feature extraction from hand landmarks.

Turns the hands detected in one frame into a single fixed-length vector:

- Each hand is translated so the wrist sits at the origin.
- Each hand is scaled by the wrist → middle-finger MCP distance.
- Optionally each hand is rotated in the image plane so the
  index-MCP → pinky-MCP axis points along +x.
- Hands are packed into `max_hands` slots, left hands first, then right,
  then untagged ones (detection order breaks ties). Empty slots are zeros.

The output length is `max_hands * 21 * 3` whatever the number of hands seen,
which the DTW classifier depends on.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from signseq.detector import HandDetector, HandObservation

LANDMARKS_PER_HAND = HandDetector.NUM_LANDMARKS
COORDS_PER_LANDMARK = HandDetector.LANDMARK_DIM
MIN_SCALE = 1e-6


def feature_dimension(max_hands: int, landmarks_per_hand: int = LANDMARKS_PER_HAND) -> int:
    """Length of a feature vector for the given hand-count cap."""
    return max_hands * landmarks_per_hand * COORDS_PER_LANDMARK


def normalize_hand(landmarks: np.ndarray, align_rotation: bool = False) -> np.ndarray:
    """Translate, scale and optionally rotate one hand's landmarks.

    Args:
        landmarks: Raw landmarks, shape (21, 3).
        align_rotation: Rotate about z so the knuckle line lies on +x.

    Returns:
        Normalized landmarks, shape (21, 3), float32.
    """
    if landmarks.shape != (LANDMARKS_PER_HAND, COORDS_PER_LANDMARK):
        raise ValueError(
            f"Expected landmarks of shape ({LANDMARKS_PER_HAND}, {COORDS_PER_LANDMARK}), "
            f"got {landmarks.shape}"
        )

    pts = landmarks.astype(np.float64)
    centered = pts - pts[HandDetector.WRIST]

    scale = float(np.linalg.norm(centered[HandDetector.MIDDLE_MCP]))
    scaled = centered / max(scale, MIN_SCALE)

    if align_rotation:
        knuckles = scaled[HandDetector.PINKY_MCP] - scaled[HandDetector.INDEX_MCP]
        angle = np.arctan2(knuckles[1], knuckles[0])
        cos_a, sin_a = np.cos(-angle), np.sin(-angle)
        x, y = scaled[:, 0].copy(), scaled[:, 1].copy()
        scaled[:, 0] = x * cos_a - y * sin_a
        scaled[:, 1] = x * sin_a + y * cos_a

    return scaled.astype(np.float32)


def order_hands(observations: Sequence[HandObservation]) -> list[HandObservation]:
    """Deterministic slot order: Left, Right, then untagged; stable otherwise."""
    return sorted(observations, key=lambda obs: obs.slot_rank)


def extract(
    observations: Sequence[HandObservation],
    max_hands: int,
    align_rotation: bool = False,
) -> np.ndarray:
    """Convert one frame's hand observations into a feature vector.

    Args:
        observations: Hands detected in the frame (any count).
        max_hands: Number of hand slots; extra hands are ignored.
        align_rotation: Apply in-plane rotation alignment per hand.

    Returns:
        Feature vector of shape (max_hands * 21 * 3,), float32.
    """
    if max_hands < 1:
        raise ValueError(f"max_hands must be >= 1, got {max_hands}")

    slot_size = LANDMARKS_PER_HAND * COORDS_PER_LANDMARK
    features = np.zeros(max_hands * slot_size, dtype=np.float32)

    for slot, obs in enumerate(order_hands(observations)[:max_hands]):
        hand = normalize_hand(obs.landmarks, align_rotation=align_rotation)
        features[slot * slot_size:(slot + 1) * slot_size] = hand.reshape(-1)

    return features


def is_valid_feature(features: np.ndarray, max_hands: int) -> bool:
    """True when the vector has the expected length and only finite values."""
    if features.ndim != 1 or features.shape[0] != feature_dimension(max_hands):
        return False
    return bool(np.all(np.isfinite(features)))


class FeatureExtractor:
    """Binds extraction settings for a recognition session."""

    def __init__(self, max_hands: int = 2, align_rotation: bool = False):
        if max_hands < 1:
            raise ValueError(f"max_hands must be >= 1, got {max_hands}")
        self.max_hands = max_hands
        self.align_rotation = align_rotation

    @property
    def dimension(self) -> int:
        return feature_dimension(self.max_hands)

    def __call__(self, observations: Sequence[HandObservation]) -> np.ndarray:
        return extract(observations, self.max_hands, align_rotation=self.align_rotation)
