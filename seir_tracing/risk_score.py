"""Risk-score policies: per-agent beliefs and behaviour rules.

One RiskScore instance belongs to one agent. It accumulates what the agent
observes (own health transitions, exposures, exposure notifications, test
results) and answers four queries:
  - get_visit_adjustment:        scale visit frequency/duration per location
  - get_test_policy:             whether/when to request a diagnostic test
  - get_contact_tracing_policy:  whether to report positives to contacts
  - contact_retention_duration:  how long contacts stay reportable

Implementations:
  - NullRiskScore:     ignores everything; never tests, never reports
  - TracingRiskScore:  test-and-trace with quarantine and isolation
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Sequence

from seir_tracing.config import TracingSection
from seir_tracing.types import (
    INFINITE_DURATION,
    INFINITE_FUTURE,
    INFINITE_PAST,
    INITIAL_TEST_RESULT,
    SECONDS_PER_DAY,
    SECONDS_PER_HOUR,
    Contact,
    Exposure,
    HealthState,
    HealthTransition,
    TestResult,
    Timestep,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# POLICY VALUE OBJECTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class VisitAdjustment:
    """Multipliers applied to a location's visit frequency and duration."""
    frequency_adjustment: float = 1.0
    duration_adjustment: float = 1.0


@dataclass(frozen=True)
class TestPolicy:
    """Whether to test, when the test is requested, and result latency."""
    __test__ = False

    should_test: bool = False
    time_requested: float = INFINITE_FUTURE
    latency: float = INFINITE_DURATION


@dataclass(frozen=True)
class ContactTracingPolicy:
    """Which contact reports to send."""
    report_recursively: bool = False
    send_positive_test: bool = False


NO_ADJUSTMENT = VisitAdjustment(1.0, 1.0)
STAY_AWAY = VisitAdjustment(0.0, 0.0)


# ═══════════════════════════════════════════════════════════════════════
# INTERFACE
# ═══════════════════════════════════════════════════════════════════════

class RiskScore(ABC):
    """Per-agent policy object."""

    @abstractmethod
    def add_health_state_transition(self, transition: HealthTransition) -> None:
        ...

    @abstractmethod
    def add_exposures(self, exposures: Sequence[Exposure]) -> None:
        ...

    @abstractmethod
    def add_exposure_notification(
        self, contact: Contact, result: TestResult,
    ) -> None:
        ...

    @abstractmethod
    def add_test_result(self, result: TestResult) -> None:
        """Receive the agent's current test result.

        Called on every evaluation with whatever result the agent holds, so
        the same result arrives many times. Implementations must treat a
        repeat of the last result as a no-op.
        """

    @abstractmethod
    def get_visit_adjustment(
        self, timestep: Timestep, location_uuid: int,
    ) -> VisitAdjustment:
        """Adjustment this agent makes to visits at `location_uuid`.

        Different agents may see different adjustments for the same
        location (e.g. essential workers).
        """

    @abstractmethod
    def get_test_policy(self, timestep: Timestep) -> TestPolicy:
        ...

    @abstractmethod
    def get_contact_tracing_policy(self) -> ContactTracingPolicy:
        ...

    @abstractmethod
    def contact_retention_duration(self) -> float:
        """Seconds for which contacts are retained (reportable)."""


class RiskScoreGenerator(ABC):
    """Samples RiskScore instances during population setup."""

    @abstractmethod
    def next_risk_score(self) -> RiskScore:
        ...


# ═══════════════════════════════════════════════════════════════════════
# NULL POLICY
# ═══════════════════════════════════════════════════════════════════════

class NullRiskScore(RiskScore):
    """Never adjusts, tests or reports."""

    def add_health_state_transition(self, transition: HealthTransition) -> None:
        pass

    def add_exposures(self, exposures: Sequence[Exposure]) -> None:
        pass

    def add_exposure_notification(
        self, contact: Contact, result: TestResult,
    ) -> None:
        pass

    def add_test_result(self, result: TestResult) -> None:
        pass

    def get_visit_adjustment(
        self, timestep: Timestep, location_uuid: int,
    ) -> VisitAdjustment:
        return NO_ADJUSTMENT

    def get_test_policy(self, timestep: Timestep) -> TestPolicy:
        return TestPolicy(
            should_test=False,
            time_requested=INFINITE_FUTURE,
            latency=INFINITE_DURATION,
        )

    def get_contact_tracing_policy(self) -> ContactTracingPolicy:
        return ContactTracingPolicy(
            report_recursively=False, send_positive_test=False)

    def contact_retention_duration(self) -> float:
        return 0.0


class NullRiskScoreGenerator(RiskScoreGenerator):
    def next_risk_score(self) -> RiskScore:
        return NullRiskScore()


# ═══════════════════════════════════════════════════════════════════════
# TEST-AND-TRACE POLICY
# ═══════════════════════════════════════════════════════════════════════

class TracingRiskScore(RiskScore):
    """Test-and-trace policy with quarantine and isolation.

    Rules:
      - Entering INFECTIOUS requests a test (if test_on_infectious).
      - A positive exposure notification quarantines the agent until
        contact end + quarantine period. With report_recursively it also
        requests a test, so positives propagate beyond the first hop.
      - A positive own result isolates the agent from the time it is
        received for the quarantine period.
      - A result flagged needs_retry re-requests the test at the same
        requested time.
      - Quarantined/isolated agents stay away from every location except
        the exempt ones (e.g. home).

    Repeated delivery of the same result is ignored.
    """

    def __init__(
        self,
        test_latency: float,
        quarantine_duration: float,
        retention_duration: float,
        positive_threshold: float = 0.5,
        test_on_infectious: bool = True,
        report_recursively: bool = False,
        send_positive_test: bool = True,
        exempt_locations: Iterable[int] = (),
    ):
        self.test_latency = test_latency
        self.quarantine_duration = quarantine_duration
        self.retention_duration = retention_duration
        self.positive_threshold = positive_threshold
        self.test_on_infectious = test_on_infectious
        self.report_recursively = report_recursively
        self.send_positive_test = send_positive_test
        self.exempt_locations: FrozenSet[int] = frozenset(exempt_locations)

        self._health_state = HealthState.SUSCEPTIBLE
        self._latest_result = INITIAL_TEST_RESULT
        self._needs_test = False
        self._request_not_before = INFINITE_PAST
        self._retry_time: Optional[float] = None
        self._quarantine_until = INFINITE_PAST
        self._isolation_start = INFINITE_FUTURE
        self._isolation_until = INFINITE_PAST
        self.n_exposures = 0
        self.n_notifications = 0

    def is_positive(self, result: TestResult) -> bool:
        return (not result.needs_retry
                and result.probability >= self.positive_threshold)

    def _request_test(self, not_before: float) -> None:
        if not self._needs_test:
            self._request_not_before = not_before
        self._needs_test = True

    def add_health_state_transition(self, transition: HealthTransition) -> None:
        self._health_state = transition.health_state
        if (self.test_on_infectious
                and transition.health_state == HealthState.INFECTIOUS):
            self._request_test(transition.time)

    def add_exposures(self, exposures: Sequence[Exposure]) -> None:
        self.n_exposures += len(exposures)

    def add_exposure_notification(
        self, contact: Contact, result: TestResult,
    ) -> None:
        if not self.is_positive(result):
            return
        self.n_notifications += 1
        self._quarantine_until = max(
            self._quarantine_until,
            contact.exposure.end_time + self.quarantine_duration,
        )
        if self.report_recursively:
            self._request_test(INFINITE_PAST)

    def add_test_result(self, result: TestResult) -> None:
        if result == self._latest_result:
            return
        self._latest_result = result

        if result.needs_retry:
            self._needs_test = True
            self._retry_time = result.time_requested
            return

        self._needs_test = False
        self._retry_time = None
        if self.is_positive(result):
            self._isolation_start = result.time_received
            self._isolation_until = result.time_received + self.quarantine_duration
            logger.debug("Positive result received at %s; isolating", result.time_received)

    def is_restricted(self, time: float) -> bool:
        """True if the agent is in quarantine or isolation at `time`."""
        if time < self._quarantine_until:
            return True
        return self._isolation_start <= time < self._isolation_until

    def get_visit_adjustment(
        self, timestep: Timestep, location_uuid: int,
    ) -> VisitAdjustment:
        if location_uuid in self.exempt_locations:
            return NO_ADJUSTMENT
        if self.is_restricted(timestep.start_time):
            return STAY_AWAY
        return NO_ADJUSTMENT

    def get_test_policy(self, timestep: Timestep) -> TestPolicy:
        if not self._needs_test:
            return TestPolicy(should_test=False)
        if self._retry_time is not None:
            time_requested = self._retry_time
        else:
            time_requested = max(timestep.start_time, self._request_not_before)
        return TestPolicy(
            should_test=True,
            time_requested=time_requested,
            latency=self.test_latency,
        )

    def get_contact_tracing_policy(self) -> ContactTracingPolicy:
        return ContactTracingPolicy(
            report_recursively=self.report_recursively,
            send_positive_test=self.send_positive_test,
        )

    def contact_retention_duration(self) -> float:
        return self.retention_duration

    @classmethod
    def from_config(cls, cfg: TracingSection) -> 'TracingRiskScore':
        return cls(
            test_latency=cfg.test_latency_hours * SECONDS_PER_HOUR,
            quarantine_duration=cfg.quarantine_days * SECONDS_PER_DAY,
            retention_duration=cfg.retention_days * SECONDS_PER_DAY,
            positive_threshold=cfg.positive_threshold,
            test_on_infectious=cfg.test_on_infectious,
            report_recursively=cfg.report_recursively,
            send_positive_test=cfg.send_positive_test,
            exempt_locations=cfg.exempt_locations,
        )


class TracingRiskScoreGenerator(RiskScoreGenerator):
    """Hands out identically configured TracingRiskScore instances."""

    def __init__(self, cfg: TracingSection):
        self.cfg = cfg

    def next_risk_score(self) -> RiskScore:
        return TracingRiskScore.from_config(self.cfg)


def make_risk_score_generator(cfg: TracingSection) -> RiskScoreGenerator:
    """Tracing policy if enabled, otherwise the null policy."""
    if cfg.enabled:
        return TracingRiskScoreGenerator(cfg)
    return NullRiskScoreGenerator()
