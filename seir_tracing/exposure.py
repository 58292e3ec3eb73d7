"""Exposure construction from location overlaps.

Micro exposures summarise a contact as a fixed-size histogram: bucket j
holds the number of minutes spent at the j-th distance band. Until a
duration-at-distance distribution is available, overlap minutes are spread
evenly over the nearest buckets and never over-assigned.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from seir_tracing.types import SECONDS_PER_MINUTE, Exposure

N_MICRO_EXPOSURE_BUCKETS = 10

# Bucket counts are stored as uint8
_MAX_BUCKET_COUNT = np.iinfo(np.uint8).max


def generate_micro_exposures(
    overlap: float,
    n_buckets: int = N_MICRO_EXPOSURE_BUCKETS,
) -> np.ndarray:
    """Spread an overlap evenly over the first buckets.

    m = whole minutes of overlap. The first min(n_buckets, m) buckets each
    receive m // min(n_buckets, m); the remainder is dropped.

    Args:
        overlap: Overlap duration (seconds).
        n_buckets: Histogram size.

    Returns:
        (n_buckets,) uint8 array.

    Example:
        >>> generate_micro_exposures(180.0, n_buckets=5)
        array([1, 1, 1, 0, 0], dtype=uint8)
    """
    if n_buckets < 1:
        raise ValueError(f"n_buckets must be >= 1, got {n_buckets}")
    counts = np.zeros(n_buckets, dtype=np.uint8)
    total_minutes = int(max(0.0, overlap) // SECONDS_PER_MINUTE)
    if total_minutes == 0:
        return counts

    buckets_to_fill = min(n_buckets, total_minutes)
    per_bucket = min(total_minutes // buckets_to_fill, _MAX_BUCKET_COUNT)
    counts[:buckets_to_fill] = per_bucket
    return counts


class ExposureGenerator(ABC):
    """Builds an Exposure from one overlap between two visits."""

    @abstractmethod
    def generate(
        self,
        start_time: float,
        duration: float,
        infectivity: float,
    ) -> Exposure:
        ...


class MicroExposureGenerator(ExposureGenerator):
    """Attaches a uniform micro-exposure histogram to each exposure."""

    def __init__(self, n_buckets: int = N_MICRO_EXPOSURE_BUCKETS):
        self.n_buckets = n_buckets

    def generate(
        self,
        start_time: float,
        duration: float,
        infectivity: float,
    ) -> Exposure:
        return Exposure(
            start_time=start_time,
            duration=duration,
            infectivity=infectivity,
            micro_exposure_counts=generate_micro_exposures(duration, self.n_buckets),
        )
