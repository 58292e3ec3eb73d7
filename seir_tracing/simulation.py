"""Simulation driver: population setup and the phased timestep loop.

Each timestep runs four phases, with a barrier between them:
  1. process_infection_outcomes  (all agents; outcomes from last step)
  2. compute_visits              (all agents → visit broker)
  3. process_visits              (all locations → outcomes for next step)
  4. update_contact_reports      (all agents; reports from last step)

Agent phases run on a ThreadPoolExecutor when
`simulation.parallel_workers > 1`. Every agent draws only from its own
random stream, so serial and parallel runs with the same seed agree.
Locations share one stream and always run serially in uuid order.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from seir_tracing.agent import SEIRAgent
from seir_tracing.broker import CollectingBroker
from seir_tracing.config import SimulationConfig, default_config
from seir_tracing.location import Location, make_locations
from seir_tracing.risk_score import make_risk_score_generator
from seir_tracing.rng import create_rng_hierarchy, get_agent_rng
from seir_tracing.transition import ErlangTransitionModel
from seir_tracing.transmission import AggregatedTransmissionModel
from seir_tracing.types import (
    SECONDS_PER_HOUR,
    ContactReport,
    HealthState,
    HealthTransition,
    InfectionOutcome,
    Timestep,
    Visit,
)
from seir_tracing.visits import make_visit_generator

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# RESULT CONTAINER
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationResult:
    """Per-timestep timeseries (length = n_steps) and run summary."""
    n_steps: int = 0
    n_agents: int = 0
    step_start_times: Optional[np.ndarray] = None

    # Compartment counts at the end of each timestep
    susceptible: Optional[np.ndarray] = None
    exposed: Optional[np.ndarray] = None
    infectious: Optional[np.ndarray] = None
    recovered: Optional[np.ndarray] = None

    # Message and test volumes per timestep
    n_visits: Optional[np.ndarray] = None
    n_infection_outcomes: Optional[np.ndarray] = None
    n_contact_reports: Optional[np.ndarray] = None
    n_tests: Optional[np.ndarray] = None
    n_positive_tests: Optional[np.ndarray] = None

    # Summary
    peak_infectious: int = 0
    peak_step: int = 0
    total_infected: int = 0   # Agents that ever left SUSCEPTIBLE


# ═══════════════════════════════════════════════════════════════════════
# POPULATION SETUP
# ═══════════════════════════════════════════════════════════════════════

def build_population(
    config: SimulationConfig,
    rngs: Dict[str, np.random.Generator],
) -> List[SEIRAgent]:
    """Create agents 0..n-1 with their own models and random streams.

    The first `initial_exposed` agents of a random permutation (global
    stream) start EXPOSED at the simulation start, the next
    `initial_infectious` start INFECTIOUS; everyone else is susceptible.
    """
    pop = config.population
    dis = config.disease
    risk_scores = make_risk_score_generator(config.tracing)

    order = rngs['global'].permutation(pop.n_agents)
    initial_states: Dict[int, HealthState] = {}
    for idx in order[:pop.initial_exposed]:
        initial_states[int(idx)] = HealthState.EXPOSED
    for idx in order[pop.initial_exposed:pop.initial_exposed + pop.initial_infectious]:
        initial_states[int(idx)] = HealthState.INFECTIOUS

    agents: List[SEIRAgent] = []
    for uuid in range(pop.n_agents):
        rng = get_agent_rng(rngs, uuid)
        transmission = AggregatedTransmissionModel(dis.transmissibility, rng)
        transition = ErlangTransitionModel(
            latent_days=dis.latent_days,
            infectious_days=dis.infectious_days,
            rng=rng,
            immunity_days=dis.immunity_days,
            k_shape_latent=dis.k_shape_latent,
            k_shape_infectious=dis.k_shape_infectious,
        )
        visit_generator = make_visit_generator(config.visits.locations, rng)
        risk_score = risk_scores.next_risk_score()

        if uuid in initial_states:
            agent = SEIRAgent.create(
                uuid,
                HealthTransition(config.simulation.start_time, initial_states[uuid]),
                transmission, transition, visit_generator, risk_score,
            )
        else:
            agent = SEIRAgent.create_susceptible(
                uuid, transmission, transition, visit_generator, risk_score)
        agents.append(agent)
    return agents


# ═══════════════════════════════════════════════════════════════════════
# PHASE HELPERS
# ═══════════════════════════════════════════════════════════════════════

def _run_phase(
    fn: Callable[[SEIRAgent], None],
    agents: Sequence[SEIRAgent],
    executor: Optional[ThreadPoolExecutor],
) -> None:
    """Apply fn to every agent; returns once all calls are done."""
    if executor is None:
        for agent in agents:
            fn(agent)
        return
    # list() drains the iterator so worker exceptions are re-raised here
    list(executor.map(fn, agents))


def _route_by_agent(items, key) -> Dict[int, List]:
    routed: Dict[int, List] = defaultdict(list)
    for item in items:
        routed[key(item)].append(item)
    return routed


def _process_locations(
    locations: Dict[int, Location],
    visits: Sequence[Visit],
    outcome_broker: CollectingBroker,
) -> None:
    by_location: Dict[int, List[Visit]] = defaultdict(list)
    # Agent batches arrive in thread completion order; uuid order makes
    # location output independent of scheduling.
    for visit in sorted(visits, key=lambda v: v.agent_uuid):
        by_location[visit.location_uuid].append(visit)
    for uuid in sorted(locations):
        # Every location runs each step so its edge sampling stays in sync
        locations[uuid].process_visits(by_location.get(uuid, []), outcome_broker)


# ═══════════════════════════════════════════════════════════════════════
# MAIN LOOP
# ═══════════════════════════════════════════════════════════════════════

def run_simulation(
    config: Optional[SimulationConfig] = None,
    seed: Optional[int] = None,
) -> SimulationResult:
    """Run the agent population for `simulation.n_steps` timesteps.

    Args:
        config: Simulation configuration; uses defaults if None.
        seed: Overrides `simulation.seed` if given.

    Returns:
        SimulationResult with per-step timeseries.
    """
    if config is None:
        config = default_config()
    sim = config.simulation
    n_steps = sim.n_steps
    master_seed = sim.seed if seed is None else seed

    rngs = create_rng_hierarchy(master_seed, config.population.n_agents)
    agents = build_population(config, rngs)
    locations = make_locations(
        config.locations,
        [agent.uuid for agent in agents],
        rngs['locations'],
        config.visits.micro_exposure_buckets,
    )

    counts = np.zeros((n_steps, len(HealthState)), dtype=np.int64)
    n_visits = np.zeros(n_steps, dtype=np.int64)
    n_outcomes = np.zeros(n_steps, dtype=np.int64)
    n_reports = np.zeros(n_steps, dtype=np.int64)
    n_tests = np.zeros(n_steps, dtype=np.int64)
    n_positive = np.zeros(n_steps, dtype=np.int64)
    step_start_times = np.zeros(n_steps, dtype=np.float64)

    timestep = Timestep(
        start_time=sim.start_time,
        duration=sim.timestep_hours * SECONDS_PER_HOUR,
    )
    pending_outcomes: Dict[int, List[InfectionOutcome]] = {}
    pending_reports: Dict[int, List[ContactReport]] = {}

    executor = (ThreadPoolExecutor(max_workers=sim.parallel_workers)
                if sim.parallel_workers > 1 else None)
    try:
        for step in range(n_steps):
            step_start_times[step] = timestep.start_time

            # ── Phase 1: infection outcomes ──────────────────────────
            _run_phase(
                lambda a: a.process_infection_outcomes(
                    timestep, pending_outcomes.get(a.uuid, [])),
                agents, executor,
            )
            states = np.array([a.health_state for a in agents], dtype=np.int64)
            counts[step] = np.bincount(states, minlength=len(HealthState))

            # ── Phase 2: visits ──────────────────────────────────────
            visit_broker: CollectingBroker[Visit] = CollectingBroker()
            _run_phase(lambda a: a.compute_visits(timestep, visit_broker),
                       agents, executor)
            visits = visit_broker.drain()
            n_visits[step] = len(visits)

            # ── Phase 3: locations ───────────────────────────────────
            outcome_broker: CollectingBroker[InfectionOutcome] = CollectingBroker()
            _process_locations(locations, visits, outcome_broker)
            outcomes = outcome_broker.drain()
            n_outcomes[step] = len(outcomes)
            pending_outcomes = _route_by_agent(outcomes, lambda o: o.agent_uuid)

            # ── Phase 4: tests and contact reports ───────────────────
            results_before = [a.test_result for a in agents]
            report_broker: CollectingBroker[ContactReport] = CollectingBroker()
            _run_phase(
                lambda a: a.update_contact_reports(
                    timestep, pending_reports.get(a.uuid, []), report_broker),
                agents, executor,
            )
            reports = sorted(report_broker.drain(), key=lambda r: r.from_agent_uuid)
            n_reports[step] = len(reports)
            pending_reports = _route_by_agent(reports, lambda r: r.to_agent_uuid)

            for agent, before in zip(agents, results_before):
                result = agent.test_result
                if result is before or result.needs_retry:
                    continue
                n_tests[step] += 1
                if result.probability > 0.0:
                    n_positive[step] += 1

            logger.info(
                "Step %d/%d t=%.0f S=%d E=%d I=%d R=%d visits=%d "
                "outcomes=%d reports=%d tests=%d",
                step + 1, n_steps, timestep.start_time, *counts[step],
                n_visits[step], n_outcomes[step], n_reports[step], n_tests[step],
            )
            timestep.advance()
    finally:
        if executor is not None:
            executor.shutdown(wait=True)

    infectious = counts[:, HealthState.INFECTIOUS]
    peak_step = int(np.argmax(infectious)) if n_steps > 0 else 0
    total_infected = sum(
        1 for a in agents
        if any(t.health_state != HealthState.SUSCEPTIBLE for t in a.health_history)
    )

    return SimulationResult(
        n_steps=n_steps,
        n_agents=len(agents),
        step_start_times=step_start_times,
        susceptible=counts[:, HealthState.SUSCEPTIBLE].copy(),
        exposed=counts[:, HealthState.EXPOSED].copy(),
        infectious=infectious.copy(),
        recovered=counts[:, HealthState.RECOVERED].copy(),
        n_visits=n_visits,
        n_infection_outcomes=n_outcomes,
        n_contact_reports=n_reports,
        n_tests=n_tests,
        n_positive_tests=n_positive,
        peak_infectious=int(infectious[peak_step]) if n_steps > 0 else 0,
        peak_step=peak_step,
        total_infected=total_infected,
    )
