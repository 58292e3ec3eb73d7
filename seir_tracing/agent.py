"""SEIR agent: the per-agent state machine driven once per timestep.

Per-timestep contract (called by the driver in this order, with a barrier
between phases across the population):
  1. process_infection_outcomes: ingest exposures/contacts addressed to
     this agent, resolve infection, advance the health-state chain
  2. compute_visits: generate visits, split them at health
     transitions, publish to the visit broker
  3. update_contact_reports: fold in contact reports, test, publish
     reports to contacts

State:
  - current transition: the latest one applied (its state is in force now)
  - next transition:    pending; (INFINITE_FUTURE, SUSCEPTIBLE) if none
  - history:            every applied transition, oldest first; used to
                        split visits and to evaluate test ground truth

Rules:
  - First exposure wins. Only an agent that is SUSCEPTIBLE with nothing
    pending accepts new infection attempts; later outcomes are ignored.
  - All exposures of one call go to the transmission model in one batch.
  - Every pending transition strictly before the timestep end is applied,
    so one timestep may hold several transitions (E → I → R).
  - A transition sampled at or before the one it follows is forced
    forward to max(end − 1 s, previous + 1 s).

An agent shares no mutable state with other agents; distinct agents may be
evaluated concurrently within a phase.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from seir_tracing.broker import Broker
from seir_tracing.risk_score import RiskScore, TestPolicy
from seir_tracing.transition import TransitionModel
from seir_tracing.transmission import TransmissionModel
from seir_tracing.types import (
    INFINITE_FUTURE,
    INFINITE_PAST,
    INITIAL_TEST_RESULT,
    TEST_POSITIVE_STATES,
    TIME_RESOLUTION,
    Contact,
    ContactReport,
    ContactSummary,
    ContractViolation,
    Exposure,
    ExposureType,
    HealthState,
    HealthTransition,
    InfectionOutcome,
    TestResult,
    Timestep,
    Visit,
)
from seir_tracing.visits import VisitGenerator

logger = logging.getLogger(__name__)

# Sentinel "current" transition of a freshly created agent
_NEVER_INFECTED = HealthTransition(INFINITE_PAST, HealthState.SUSCEPTIBLE)
_NOTHING_PENDING = HealthTransition(INFINITE_FUTURE, HealthState.SUSCEPTIBLE)


class SEIRAgent:
    """One individual: health state machine, visits, tests and reports.

    Owns its transition model, visit generator and risk score; holds a
    shared reference to the transmission model.
    """

    def __init__(
        self,
        uuid: int,
        initial_transition: HealthTransition,
        transmission_model: TransmissionModel,
        transition_model: TransitionModel,
        visit_generator: VisitGenerator,
        risk_score: RiskScore,
    ):
        self.uuid = uuid
        self._transmission_model = transmission_model
        self._transition_model = transition_model
        self._visit_generator = visit_generator
        self._risk_score = risk_score

        # The initial transition is applied by the first
        # process_infection_outcomes call like any other pending one.
        self._current = _NEVER_INFECTED
        self._next = initial_transition
        self._history: List[HealthTransition] = [_NEVER_INFECTED]

        self._contacts: List[Contact] = []
        self._retention_horizon = INFINITE_PAST
        self._latest_contact_time = INFINITE_PAST
        self._test_result = INITIAL_TEST_RESULT

    # ── Construction ──────────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        uuid: int,
        initial_transition: HealthTransition,
        transmission_model: TransmissionModel,
        transition_model: TransitionModel,
        visit_generator: VisitGenerator,
        risk_score: RiskScore,
    ) -> 'SEIRAgent':
        """Agent whose health starts from `initial_transition`."""
        return cls(uuid, initial_transition, transmission_model,
                   transition_model, visit_generator, risk_score)

    @classmethod
    def create_susceptible(
        cls,
        uuid: int,
        transmission_model: TransmissionModel,
        transition_model: TransitionModel,
        visit_generator: VisitGenerator,
        risk_score: RiskScore,
    ) -> 'SEIRAgent':
        """Agent that starts SUSCEPTIBLE with no transition pending."""
        return cls(uuid, _NOTHING_PENDING, transmission_model,
                   transition_model, visit_generator, risk_score)

    # ── Read-only views ───────────────────────────────────────────────

    @property
    def current_health_transition(self) -> HealthTransition:
        return self._current

    @property
    def next_health_transition(self) -> HealthTransition:
        return self._next

    @property
    def health_state(self) -> HealthState:
        return self._current.health_state

    @property
    def health_history(self) -> Tuple[HealthTransition, ...]:
        """Applied transitions, oldest first (excluding the initial sentinel)."""
        return tuple(self._history[1:])

    @property
    def test_result(self) -> TestResult:
        return self._test_result

    @property
    def risk_score(self) -> RiskScore:
        return self._risk_score

    @property
    def contacts(self) -> Tuple[Contact, ...]:
        return tuple(self._contacts)

    @property
    def contact_summary(self) -> ContactSummary:
        return ContactSummary(
            retention_horizon=self._retention_horizon,
            latest_contact_time=self._latest_contact_time,
        )

    def health_state_at(self, time: float) -> HealthState:
        """Ground-truth health state at `time`."""
        state = self._history[0].health_state
        for transition in self._history:
            if transition.time > time:
                break
            state = transition.health_state
        if self._next.time <= time:
            state = self._next.health_state
        return state

    # ═══════════════════════════════════════════════════════════════════
    # PHASE 1: INFECTION OUTCOMES
    # ═══════════════════════════════════════════════════════════════════

    def process_infection_outcomes(
        self,
        timestep: Timestep,
        infection_outcomes: Sequence[InfectionOutcome],
    ) -> None:
        """Ingest outcomes from the previous round and advance health state.

        Raises:
            ContractViolation: If any outcome is addressed to another agent.
        """
        for outcome in infection_outcomes:
            if outcome.agent_uuid != self.uuid:
                raise ContractViolation(
                    f"Agent {self.uuid} received an infection outcome "
                    f"addressed to agent {outcome.agent_uuid}"
                )

        exposures = [outcome.exposure for outcome in infection_outcomes]
        for outcome in infection_outcomes:
            if outcome.exposure_type == ExposureType.CONTACT:
                self._record_contact(
                    Contact(other_uuid=outcome.source_uuid,
                            exposure=outcome.exposure))

        if exposures:
            self._risk_score.add_exposures(exposures)
            if self._accepts_infection():
                outcome = self._transmission_model.get_infection_outcome(exposures)
                if outcome.health_state != HealthState.SUSCEPTIBLE:
                    self._next = self._forward_adjusted(
                        outcome, self._current, timestep)
                    logger.debug("Agent %d infected; onset at %s",
                                 self.uuid, self._next.time)

        self._advance(timestep)

    def _accepts_infection(self) -> bool:
        return (self._current.health_state == HealthState.SUSCEPTIBLE
                and self._next.health_state == HealthState.SUSCEPTIBLE)

    def _advance(self, timestep: Timestep) -> None:
        """Apply every pending transition due before the timestep ends."""
        while self._next.time < timestep.end_time:
            applied = self._next
            self._current = applied
            self._history.append(applied)
            self._risk_score.add_health_state_transition(applied)

            if applied.health_state == HealthState.SUSCEPTIBLE:
                self._next = _NOTHING_PENDING
            else:
                proposed = self._transition_model.get_next_health_transition(applied)
                self._next = self._forward_adjusted(proposed, applied, timestep)

    @staticmethod
    def _forward_adjusted(
        proposed: HealthTransition,
        previous: HealthTransition,
        timestep: Timestep,
    ) -> HealthTransition:
        """Force `proposed` strictly after `previous`.

        Non-advancing transitions land one second before the timestep ends,
        so the state they leave keeps a non-empty interval.
        """
        if proposed.time > previous.time:
            return proposed
        adjusted = max(timestep.end_time - TIME_RESOLUTION,
                       previous.time + TIME_RESOLUTION)
        return HealthTransition(adjusted, proposed.health_state)

    # ═══════════════════════════════════════════════════════════════════
    # PHASE 2: VISITS
    # ═══════════════════════════════════════════════════════════════════

    def compute_visits(self, timestep: Timestep, visit_broker: Broker) -> None:
        """Generate, split and publish this timestep's visits as one batch."""
        raw_visits = self._visit_generator.generate_visits(
            timestep, self._risk_score)
        visits: List[Visit] = []
        for raw in raw_visits:
            visits.extend(self._split_visit(raw))
        visit_broker.send(visits)

    def _split_visit(self, raw: Visit) -> List[Visit]:
        """Split one raw interval at transitions strictly inside it."""
        boundaries = [t for t in self._history
                      if raw.start_time < t.time < raw.end_time]
        state = self.health_state_at(raw.start_time)
        start = raw.start_time

        pieces = []
        for transition in boundaries:
            pieces.append((start, transition.time, state))
            start = transition.time
            state = transition.health_state
        pieces.append((start, raw.end_time, state))

        return [
            Visit(
                location_uuid=raw.location_uuid,
                start_time=piece_start,
                end_time=piece_end,
                agent_uuid=self.uuid,
                health_state=piece_state,
            )
            for piece_start, piece_end, piece_state in pieces
            if piece_end > piece_start
        ]

    # ═══════════════════════════════════════════════════════════════════
    # PHASE 3: TESTS AND CONTACT REPORTS
    # ═══════════════════════════════════════════════════════════════════

    def update_contact_reports(
        self,
        timestep: Timestep,
        contact_reports: Sequence[ContactReport],
        report_broker: Broker,
    ) -> None:
        """Fold in received reports, maybe test, report positives to contacts.

        Raises:
            ContractViolation: If any report is addressed to another agent.
        """
        for report in contact_reports:
            if report.to_agent_uuid != self.uuid:
                raise ContractViolation(
                    f"Agent {self.uuid} received a contact report "
                    f"addressed to agent {report.to_agent_uuid}"
                )

        for report in contact_reports:
            self._risk_score.add_exposure_notification(
                self._contact_for_report(report), report.test_result)

        self._risk_score.add_test_result(self._test_result)
        test_policy = self._risk_score.get_test_policy(timestep)
        if test_policy.should_test:
            self._test_result = self._run_test(test_policy, timestep)
            self._risk_score.add_test_result(self._test_result)

        self._prune_contacts(timestep)

        tracing_policy = self._risk_score.get_contact_tracing_policy()
        if not tracing_policy.send_positive_test:
            return
        if self._test_result.probability <= 0.0:
            return
        recipients = self._contact_uuids()
        if not recipients:
            return
        report_broker.send([
            ContactReport(
                from_agent_uuid=self.uuid,
                to_agent_uuid=other_uuid,
                test_result=self._test_result,
            )
            for other_uuid in recipients
        ])

    def _run_test(self, policy: TestPolicy, timestep: Timestep) -> TestResult:
        """Simulated test outcome from this agent's true health state."""
        if policy.time_requested >= timestep.end_time:
            # Health at that time is not simulated yet; ask again later.
            return TestResult(
                time_requested=policy.time_requested,
                time_received=INFINITE_FUTURE,
                needs_retry=True,
                probability=0.0,
            )
        state = self.health_state_at(policy.time_requested)
        result = TestResult(
            time_requested=policy.time_requested,
            time_received=policy.time_requested + policy.latency,
            needs_retry=False,
            probability=1.0 if state in TEST_POSITIVE_STATES else 0.0,
        )
        logger.debug("Agent %d tested at %s: %s", self.uuid,
                     policy.time_requested, result.probability)
        return result

    # ── Contacts ──────────────────────────────────────────────────────

    def _record_contact(self, contact: Contact) -> None:
        self._contacts.append(contact)
        self._latest_contact_time = max(
            self._latest_contact_time, contact.exposure.end_time)

    def _prune_contacts(self, timestep: Timestep) -> None:
        """Drop contacts that ended before the retention horizon."""
        self._retention_horizon = (
            timestep.start_time - self._risk_score.contact_retention_duration())
        self._contacts = [
            c for c in self._contacts
            if c.exposure.end_time >= self._retention_horizon
        ]

    def _contact_uuids(self) -> List[int]:
        """Distinct contact uuids, first-seen order."""
        return list(dict.fromkeys(c.other_uuid for c in self._contacts))

    def _contact_for_report(self, report: ContactReport) -> Contact:
        latest: Optional[Contact] = None
        for contact in self._contacts:
            if contact.other_uuid == report.from_agent_uuid:
                if latest is None or contact.exposure.start_time >= latest.exposure.start_time:
                    latest = contact
        if latest is not None:
            return latest
        return Contact(
            other_uuid=report.from_agent_uuid,
            exposure=Exposure(start_time=report.test_result.time_requested),
        )

    def __repr__(self) -> str:
        return (f"SEIRAgent(uuid={self.uuid}, state={self.health_state.name}, "
                f"next={self._next})")
