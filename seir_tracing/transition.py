"""Health-state transition models.

Given the transition an agent most recently entered, a transition model
samples the next one. Each agent owns its model instance (and, through it,
its random stream).

Erlang model:
  E → I after Erlang(k_E, mean = latent period)
  I → R after Erlang(k_I, mean = infectious period)
  R → S after Erlang(k_R, mean = immunity period), only if immunity wanes;
        otherwise R is absorbing.
Erlang(k, k/mean) has mean = mean, CV = 1/√k.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from seir_tracing.types import (
    INFINITE_FUTURE,
    SECONDS_PER_DAY,
    HealthState,
    HealthTransition,
)

# Erlang shape parameters for stage durations
K_SHAPE_LATENT = 3       # Incubation fairly regular (CV = 0.58)
K_SHAPE_INFECTIOUS = 2   # More variable (CV = 0.71)
K_SHAPE_IMMUNITY = 1     # Memoryless waning


class TransitionModel(ABC):
    """Samples the transition that follows `latest_transition`."""

    @abstractmethod
    def get_next_health_transition(
        self, latest_transition: HealthTransition,
    ) -> HealthTransition:
        ...


def sample_stage_duration(
    mean: float,
    k_shape: int,
    rng: np.random.Generator,
) -> float:
    """Sample an Erlang stage duration.

    Gamma(k, mean/k) is Erlang with mean `mean`.

    Args:
        mean: Mean duration (seconds).
        k_shape: Erlang shape parameter (>= 1).
        rng: NumPy random generator.

    Returns:
        Duration in seconds (0 if mean <= 0).
    """
    if mean <= 0.0:
        return 0.0
    return float(rng.gamma(k_shape, mean / k_shape))


class ErlangTransitionModel(TransitionModel):
    """SEIR(S) progression with Erlang-distributed dwell times."""

    def __init__(
        self,
        latent_days: float,
        infectious_days: float,
        rng: np.random.Generator,
        immunity_days: Optional[float] = None,
        k_shape_latent: int = K_SHAPE_LATENT,
        k_shape_infectious: int = K_SHAPE_INFECTIOUS,
        k_shape_immunity: int = K_SHAPE_IMMUNITY,
    ):
        self.latent = latent_days * SECONDS_PER_DAY
        self.infectious = infectious_days * SECONDS_PER_DAY
        self.immunity = (
            None if immunity_days is None else immunity_days * SECONDS_PER_DAY
        )
        self.k_shape_latent = k_shape_latent
        self.k_shape_infectious = k_shape_infectious
        self.k_shape_immunity = k_shape_immunity
        self._rng = rng

    def get_next_health_transition(
        self, latest_transition: HealthTransition,
    ) -> HealthTransition:
        state = latest_transition.health_state
        t = latest_transition.time

        if state == HealthState.EXPOSED:
            dwell = sample_stage_duration(self.latent, self.k_shape_latent, self._rng)
            return HealthTransition(t + dwell, HealthState.INFECTIOUS)
        if state == HealthState.INFECTIOUS:
            dwell = sample_stage_duration(
                self.infectious, self.k_shape_infectious, self._rng)
            return HealthTransition(t + dwell, HealthState.RECOVERED)
        if state == HealthState.RECOVERED:
            if self.immunity is None:
                return HealthTransition(INFINITE_FUTURE, HealthState.RECOVERED)
            dwell = sample_stage_duration(
                self.immunity, self.k_shape_immunity, self._rng)
            return HealthTransition(t + dwell, HealthState.SUSCEPTIBLE)
        return HealthTransition(INFINITE_FUTURE, HealthState.SUSCEPTIBLE)
