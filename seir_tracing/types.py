"""Core data types for seir-tracing.

This module is the SINGLE SOURCE OF TRUTH for:
  - HealthState and ExposureType enumerations
  - Time constants (INFINITE_FUTURE, INFINITE_PAST, seconds per unit)
  - Message types exchanged between agents and locations
    (InfectionOutcome, Visit, Contact, ContactReport)
  - Per-agent records (HealthTransition, Exposure, TestResult, ContactSummary)
  - Timestep, the driver-owned clock

Time is float seconds since the simulation epoch. Durations are float
seconds. Infinite values mark "never" (no scheduled transition, no result).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# TIME CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

INFINITE_FUTURE = math.inf
INFINITE_PAST = -math.inf
INFINITE_DURATION = math.inf

SECONDS_PER_MINUTE = 60.0
SECONDS_PER_HOUR = 3600.0
SECONDS_PER_DAY = 86400.0

# Smallest step used when forcing a transition strictly forward in time
TIME_RESOLUTION = 1.0


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class HealthState(IntEnum):
    """SEIR compartments.

    S → E  (infection outcome from the transmission model)
    E → I  (latent period ends)
    I → R  (infectious period ends)
    R → S  (only when immunity wanes)
    """
    SUSCEPTIBLE = 0
    EXPOSED     = 1
    INFECTIOUS  = 2
    RECOVERED   = 3


# States in which a diagnostic test reads positive
TEST_POSITIVE_STATES = frozenset({HealthState.EXPOSED, HealthState.INFECTIOUS})


class ExposureType(IntEnum):
    """How an exposure reached the agent."""
    CONTACT     = 0   # Pairwise contact with another agent
    ENVIRONMENT = 1   # Background / seeded exposure with no source agent


# ═══════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════

class ContractViolation(AssertionError):
    """A message was routed to the wrong agent.

    Indicates a bug in the driver or router, not a data condition; the core
    never catches it.
    """


# ═══════════════════════════════════════════════════════════════════════
# HEALTH RECORDS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, order=True)
class HealthTransition:
    """The agent's state becomes `health_state` at `time`.

    The default value means "no transition scheduled".
    """
    time: float = INFINITE_FUTURE
    health_state: HealthState = HealthState.SUSCEPTIBLE


@dataclass(frozen=True)
class Exposure:
    """One contact-derived exposure dose."""
    start_time: float = 0.0
    duration: float = 0.0
    infectivity: float = 0.0
    # Optional (n_buckets,) uint8 histogram of minutes at increasing distance
    micro_exposure_counts: Optional[np.ndarray] = field(default=None, compare=False)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


@dataclass(frozen=True)
class TestResult:
    """Outcome of one diagnostic test request.

    `probability` is the positivity signal (0 or 1 for a perfect test).
    """
    # Not a test class; keeps pytest from trying to collect it.
    __test__ = False

    time_requested: float = INFINITE_FUTURE
    time_received: float = INFINITE_FUTURE
    needs_retry: bool = False
    probability: float = 0.0


# Result every agent starts with before any test is requested
INITIAL_TEST_RESULT = TestResult()


@dataclass(frozen=True)
class ContactSummary:
    """Contact retention bookkeeping for one agent."""
    retention_horizon: float = INFINITE_PAST
    latest_contact_time: float = INFINITE_PAST


# ═══════════════════════════════════════════════════════════════════════
# INTER-AGENT MESSAGES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class InfectionOutcome:
    """Produced by locations; addressed to exactly one agent."""
    agent_uuid: int
    exposure: Exposure = field(default_factory=Exposure)
    exposure_type: ExposureType = ExposureType.CONTACT
    source_uuid: int = -1


@dataclass(frozen=True)
class Visit:
    """Presence of one agent at one location during [start_time, end_time).

    Visit generators leave `agent_uuid` and `health_state` unset; the agent
    fills them in when splitting at health transitions.
    """
    location_uuid: int
    start_time: float
    end_time: float
    agent_uuid: int = -1
    health_state: HealthState = HealthState.SUSCEPTIBLE

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class Contact:
    """A realized pairwise contact."""
    other_uuid: int
    exposure: Exposure = field(default_factory=Exposure)


@dataclass(frozen=True)
class ContactReport:
    """Notification of a test result, sent from one agent to a contact."""
    from_agent_uuid: int
    to_agent_uuid: int
    test_result: TestResult = INITIAL_TEST_RESULT


# ═══════════════════════════════════════════════════════════════════════
# TIMESTEP
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class Timestep:
    """Half-open window [start_time, end_time) advanced by the driver."""
    start_time: float
    duration: float

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def advance(self) -> None:
        """Move the window forward by one duration."""
        self.start_time += self.duration
