"""Visit generators: what an agent intends to do during a timestep.

Generators return raw visits (agent uuid and health state unset) that cover
the timestep window. The agent annotates them and splits them at health
transitions.

Duration-specified generator:
  Each configured (location, sampler) pair is visited once per timestep in
  list order. Samplers receive the risk score's duration adjustment for that
  location and the sample is scaled by its frequency adjustment; the
  durations are then renormalised so they sum exactly to the timestep
  length.
  If every duration is zero, the timestep is split evenly over locations
  the risk score still permits. If none is permitted, the whole timestep
  is spent at the first scheduled location (home, by convention).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Sequence

import numpy as np

from seir_tracing.risk_score import RiskScore
from seir_tracing.types import SECONDS_PER_HOUR, Timestep, Visit

logger = logging.getLogger(__name__)

# sample_duration(adjustment) -> non-negative relative duration
DurationSampler = Callable[[float], float]


class VisitGenerator(ABC):
    """Produces the raw visits for one agent and one timestep."""

    @abstractmethod
    def generate_visits(
        self, timestep: Timestep, risk_score: RiskScore,
    ) -> List[Visit]:
        ...


@dataclass(frozen=True)
class LocationDuration:
    """A location and the sampler for time spent there.

    The adjustment is a float in [0, 1] and linearly scales the mean of the
    sample.
    """
    location_uuid: int
    sample_duration: DurationSampler


def exponential_duration_sampler(
    mean: float,
    rng: np.random.Generator,
) -> DurationSampler:
    """Exponential durations whose mean is `mean × adjustment`."""
    def sample(adjustment: float) -> float:
        scale = mean * adjustment
        if scale <= 0.0:
            return 0.0
        return float(rng.exponential(scale))
    return sample


class DurationSpecifiedVisitGenerator(VisitGenerator):
    """Round-robin over locations with durations normalised to the timestep.

    Locations may be repeated.
    """

    def __init__(self, location_durations: Sequence[LocationDuration]):
        if not location_durations:
            raise ValueError("location_durations must not be empty")
        self.location_durations = list(location_durations)

    def generate_visits(
        self, timestep: Timestep, risk_score: RiskScore,
    ) -> List[Visit]:
        adjustments = [
            risk_score.get_visit_adjustment(timestep, ld.location_uuid)
            for ld in self.location_durations
        ]
        # One visit per entry per timestep, so frequency scales expected time
        weights = np.array([
            adj.frequency_adjustment * adj.duration_adjustment
            for adj in adjustments
        ], dtype=np.float64)
        durations = np.array([
            ld.sample_duration(adj.duration_adjustment) * adj.frequency_adjustment
            for ld, adj in zip(self.location_durations, adjustments)
        ], dtype=np.float64)
        durations = np.maximum(durations, 0.0)

        total = durations.sum()
        if total <= 0.0:
            allowed = weights > 0.0
            if allowed.any():
                logger.warning(
                    "All sampled visit durations are zero; splitting timestep "
                    "evenly across %d permitted locations", int(allowed.sum()))
                durations = allowed.astype(np.float64)
            else:
                # Barred from everywhere: stay at the first scheduled location
                logger.debug("Every location restricted; staying at location %d",
                             self.location_durations[0].location_uuid)
                durations = np.zeros_like(durations)
                durations[0] = 1.0
            total = durations.sum()

        # Cumulative boundaries pinned to the timestep edges
        bounds = timestep.start_time + np.concatenate(
            ([0.0], np.cumsum(durations / total))) * timestep.duration
        bounds[-1] = timestep.end_time

        return [
            Visit(
                location_uuid=ld.location_uuid,
                start_time=float(bounds[i]),
                end_time=float(bounds[i + 1]),
            )
            for i, ld in enumerate(self.location_durations)
        ]


def make_visit_generator(
    locations: Sequence,
    rng: np.random.Generator,
) -> DurationSpecifiedVisitGenerator:
    """Build a generator from `config.LocationVisit` entries."""
    return DurationSpecifiedVisitGenerator([
        LocationDuration(
            location_uuid=loc.uuid,
            sample_duration=exponential_duration_sampler(
                loc.mean_hours * SECONDS_PER_HOUR, rng),
        )
        for loc in locations
    ])
