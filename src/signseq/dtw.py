"""Dynamic Time Warping over feature-vector sequences.

Sequences are arrays of shape (N, D). The local cost between two frames is
their Euclidean distance; the accumulated cost at (i, j) adds the cheapest of
the three predecessors (i-1, j), (i, j-1) and (i-1, j-1). Paths start at the
first frame pair and end at the last one.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

CONFIDENCE_MAPPINGS = ("inverse", "exponential")


def as_sequence_array(sequence: Sequence[np.ndarray] | np.ndarray) -> np.ndarray:
    """Stack a list of feature vectors into a (N, D) float64 array."""
    arr = np.asarray(sequence, dtype=np.float64)
    if arr.ndim != 2:
        raise ValueError(f"Sequence must be 2-D (frames, features), got shape {arr.shape}")
    return arr


def pairwise_costs(s: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Euclidean distance between every frame of `s` and every frame of `t`."""
    diff = s[:, None, :] - t[None, :, :]
    return np.sqrt(np.sum(diff * diff, axis=2))


def dtw_alignment(
    s: np.ndarray,
    t: np.ndarray,
    window: Optional[int] = None,
) -> tuple[float, int]:
    """Accumulated DTW cost and length of the optimal warping path.

    Args:
        s: First sequence, shape (N, D).
        t: Second sequence, shape (M, D).
        window: Sakoe-Chiba band half-width. Widened to |N - M| so the final
            cell stays reachable. None means unbounded, O(N*M).

    Returns:
        (total_cost, path_length). (inf, 0) when either sequence is empty.
    """
    n, m = len(s), len(t)
    if n == 0 or m == 0:
        return math.inf, 0
    if s.shape[1] != t.shape[1]:
        raise ValueError(f"Feature dimension mismatch: {s.shape[1]} vs {t.shape[1]}")

    local = pairwise_costs(s, t).tolist()
    band = None if window is None else max(int(window), abs(n - m))

    # Rolling rows; ties on cost resolve to the shorter path.
    prev_cost = [0.0] + [math.inf] * m
    prev_steps = [0] * (m + 1)

    for i in range(1, n + 1):
        cur_cost = [math.inf] * (m + 1)
        cur_steps = [0] * (m + 1)
        row = local[i - 1]

        if band is None:
            j_start, j_end = 1, m
        else:
            j_start, j_end = max(1, i - band), min(m, i + band)

        for j in range(j_start, j_end + 1):
            best_cost, best_steps = min(
                (prev_cost[j - 1], prev_steps[j - 1]),
                (prev_cost[j], prev_steps[j]),
                (cur_cost[j - 1], cur_steps[j - 1]),
            )
            cur_cost[j] = row[j - 1] + best_cost
            cur_steps[j] = best_steps + 1

        prev_cost, prev_steps = cur_cost, cur_steps

    return prev_cost[m], prev_steps[m]


def dtw_distance(
    s: np.ndarray,
    t: np.ndarray,
    window: Optional[int] = None,
    normalize: bool = True,
) -> float:
    """DTW distance, by default averaged over the warping path length."""
    total, steps = dtw_alignment(s, t, window=window)
    if not normalize or steps == 0:
        return total
    return total / steps


def confidence_from_distance(
    distance: float,
    mapping: str = "inverse",
    scale: float = 1.0,
) -> float:
    """Map a DTW distance to a confidence in [0, 1].

    "inverse" is 1 / (1 + d); "exponential" is exp(-d / scale). Both are
    monotonically decreasing and map 0 to 1.
    """
    if math.isnan(distance):
        return 0.0
    d = max(0.0, distance)
    if math.isinf(d):
        return 0.0
    if mapping == "inverse":
        return 1.0 / (1.0 + d)
    if mapping == "exponential":
        return math.exp(-d / max(scale, 1e-8))
    raise ValueError(f"Unknown confidence mapping '{mapping}', expected one of {CONFIDENCE_MAPPINGS}")


def resample_sequence(sequence: np.ndarray, target_length: int) -> np.ndarray:
    """Linearly interpolate a sequence to `target_length` frames."""
    seq = as_sequence_array(sequence)
    n = len(seq)
    if target_length < 1:
        raise ValueError(f"target_length must be >= 1, got {target_length}")
    if n == target_length or n == 0:
        return seq.astype(np.float32)
    if n == 1 or target_length == 1:
        return np.repeat(seq[:1], target_length, axis=0).astype(np.float32)

    positions = np.linspace(0, n - 1, target_length)
    low = np.floor(positions).astype(int)
    high = np.minimum(low + 1, n - 1)
    weight = (positions - low)[:, None]

    resampled = seq[low] * (1.0 - weight) + seq[high] * weight
    return resampled.astype(np.float32)
