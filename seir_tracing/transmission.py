"""Transmission models: exposures → infection outcome.

A transmission model is shared by many agents. It holds no per-agent state,
only its parameters and a private random stream. The stream is guarded by a
lock so agents may be evaluated on several threads; a driver wanting
bit-exact parallel replay gives each agent its own model instance instead.

Aggregated model:
  p_i  = clip(β × infectivity_i × dose_i, 0, 1)
  H    = −Σ log(1 − p_i)           (aggregate hazard over all exposures)
  P    = 1 − exp(−H)                (= 1 − Π(1 − p_i))
  dose_i = contact hours from the micro-exposure histogram, else 1
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import numpy as np

from seir_tracing.types import (
    INFINITE_FUTURE,
    SECONDS_PER_HOUR,
    SECONDS_PER_MINUTE,
    Exposure,
    HealthState,
    HealthTransition,
)

SUSCEPTIBLE_OUTCOME = HealthTransition(INFINITE_FUTURE, HealthState.SUSCEPTIBLE)


class TransmissionModel(ABC):
    """Decides whether and when a set of exposures infects an agent."""

    @abstractmethod
    def get_infection_outcome(
        self, exposures: Sequence[Exposure],
    ) -> HealthTransition:
        """Resolve all exposures of one timestep into a single outcome.

        Returns an EXPOSED transition on infection, else SUSCEPTIBLE.
        """


def exposure_dose(exposure: Exposure) -> float:
    """Contact hours encoded in the micro-exposure histogram (1 if absent)."""
    if exposure.micro_exposure_counts is None:
        return 1.0
    minutes = float(np.sum(exposure.micro_exposure_counts, dtype=np.int64))
    return minutes * SECONDS_PER_MINUTE / SECONDS_PER_HOUR


def infection_probability(
    exposures: Sequence[Exposure],
    transmissibility: float,
) -> float:
    """Probability that at least one exposure infects.

    Computed as 1 − exp(−H) with H the summed per-exposure log terms.
    """
    if not exposures:
        return 0.0
    p = np.array([
        transmissibility * e.infectivity * exposure_dose(e) for e in exposures
    ], dtype=np.float64)
    p = np.clip(p, 0.0, 1.0)
    if np.any(p >= 1.0):
        return 1.0
    hazard = -np.sum(np.log1p(-p))
    return float(-np.expm1(-hazard))


class AggregatedTransmissionModel(TransmissionModel):
    """Exponential of summed log non-infection probabilities.

    On infection the EXPOSED transition is anchored at the earliest exposure
    start time.
    """

    def __init__(
        self,
        transmissibility: float,
        rng: Optional[np.random.Generator] = None,
    ):
        if transmissibility < 0:
            raise ValueError(
                f"transmissibility must be >= 0, got {transmissibility}"
            )
        self.transmissibility = transmissibility
        self._rng = rng if rng is not None else np.random.default_rng()
        self._lock = threading.Lock()

    def get_infection_outcome(
        self, exposures: Sequence[Exposure],
    ) -> HealthTransition:
        if not exposures:
            return SUSCEPTIBLE_OUTCOME

        prob = infection_probability(exposures, self.transmissibility)
        with self._lock:
            infected = self._rng.random() < prob

        if not infected:
            return SUSCEPTIBLE_OUTCOME
        onset = min(e.start_time for e in exposures)
        return HealthTransition(onset, HealthState.EXPOSED)
