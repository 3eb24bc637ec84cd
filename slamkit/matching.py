"""Brute-force Hamming matching of binary descriptors and the usual distance-based filtering."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np

# Starting values of the distance scan; a binary descriptor never gets near the first.
_INITIAL_MIN_DISTANCE = 10000.0
_INITIAL_MAX_DISTANCE = 0.0
# Floor for the acceptance threshold, since the smallest distance can be very small.
_DISTANCE_FLOOR = 30.0


@dataclass(frozen=True)
class Match:
    """A correspondence between row ``query_idx`` of one descriptor set and ``train_idx`` of another."""

    query_idx: int
    train_idx: int
    distance: float


def _descriptor(d) -> np.ndarray:
    if isinstance(d, (bytes, bytearray, memoryview)):
        return np.frombuffer(bytes(d), dtype=np.uint8)
    a = np.asarray(d)
    if a.dtype != np.uint8:
        a = a.astype(np.uint8)
    return a.reshape(-1)


def _descriptor_set(d) -> np.ndarray:
    a = np.asarray(d)
    if a.dtype != np.uint8:
        a = a.astype(np.uint8)
    if a.ndim == 1:
        a = a.reshape(0, 0) if a.size == 0 else a.reshape(1, -1)
    if a.ndim != 2:
        raise ValueError(f"expected a 2D descriptor array, got shape {a.shape}")
    return a


def hamming_distance(a, b) -> int:
    """Number of differing bits between two binary descriptors of equal length."""
    x, y = _descriptor(a), _descriptor(b)
    if x.shape != y.shape:
        raise ValueError(f"descriptor lengths differ: {x.size} and {y.size}")
    return int(np.unpackbits(np.bitwise_xor(x, y)).sum())


def match_descriptors(query, train) -> list[Match]:
    """For every query row, the train row at the smallest Hamming distance (first on ties)."""
    q, t = _descriptor_set(query), _descriptor_set(train)
    if q.shape[0] == 0 or t.shape[0] == 0:
        return []
    if q.shape[1] != t.shape[1]:
        raise ValueError(f"descriptor widths differ: {q.shape[1]} and {t.shape[1]}")
    xor = np.bitwise_xor(q[:, None, :], t[None, :, :])
    distances = np.unpackbits(xor, axis=-1).sum(axis=-1)
    best = distances.argmin(axis=1)
    return [
        Match(i, int(j), float(distances[i, j])) for i, j in enumerate(best)
    ]


def distance_range(matches: Iterable[Match]) -> tuple[float, float]:
    """Smallest and largest match distance, scanned from (10000, 0)."""
    low, high = _INITIAL_MIN_DISTANCE, _INITIAL_MAX_DISTANCE
    for m in matches:
        low = min(low, m.distance)
        high = max(high, m.distance)
    return low, high


def filter_matches(matches: Sequence[Match]) -> list[Match]:
    """Keep matches whose distance is at most twice the smallest one, but never below 30."""
    low, _ = distance_range(matches)
    threshold = max(2 * low, _DISTANCE_FLOOR)
    return [m for m in matches if m.distance <= threshold]