"""Integration tests for seir_tracing.simulation — the phased driver.

Verifies that:
  1. population setup seeds the requested initial infections
  2. compartment counts are conserved every timestep
  3. the same seed replays exactly, serially and on a thread pool
  4. test-and-trace produces tests and contact reports
"""

import logging

import numpy as np
import pytest

from seir_tracing.config import GraphLocationSpec, LocationVisit, default_config
from seir_tracing.rng import create_rng_hierarchy
from seir_tracing.simulation import SimulationResult, build_population, run_simulation
from seir_tracing.types import HealthState


# ─── Helpers ──────────────────────────────────────────────────────────

def _small_config(**sim_overrides):
    config = default_config()
    config.simulation.n_steps = 20
    config.population.n_agents = 40
    config.population.initial_infectious = 4
    config.disease.transmissibility = 0.3
    for key, value in sim_overrides.items():
        setattr(config.simulation, key, value)
    return config


# ─── Tests ────────────────────────────────────────────────────────────

class TestBuildPopulation:
    def test_initial_states(self):
        config = _small_config()
        config.population.initial_exposed = 2
        rngs = create_rng_hierarchy(1, config.population.n_agents)
        agents = build_population(config, rngs)

        assert [a.uuid for a in agents] == list(range(40))
        pending = [a.next_health_transition.health_state for a in agents]
        assert pending.count(HealthState.EXPOSED) == 2
        assert pending.count(HealthState.INFECTIOUS) == 4
        assert all(a.health_state == HealthState.SUSCEPTIBLE for a in agents)


class TestRunSimulation:
    def test_result_shapes(self):
        result = run_simulation(_small_config())
        assert isinstance(result, SimulationResult)
        assert result.n_steps == 20
        for series in (result.susceptible, result.exposed, result.infectious,
                       result.recovered, result.n_visits, result.n_tests):
            assert series.shape == (20,)
        np.testing.assert_allclose(
            np.diff(result.step_start_times), 86400.0)

    def test_counts_conserved(self):
        result = run_simulation(_small_config())
        total = (result.susceptible + result.exposed
                 + result.infectious + result.recovered)
        np.testing.assert_array_equal(total, 40)

    def test_first_step_applies_seeded_infections(self):
        result = run_simulation(_small_config())
        assert result.susceptible[0] == 36
        assert result.total_infected >= 4

    def test_visits_every_step(self):
        result = run_simulation(_small_config())
        # Every agent visits somewhere each step
        assert np.all(result.n_visits >= 40)

    def test_epidemic_spreads_with_certain_transmission(self):
        config = _small_config()
        config.disease.transmissibility = 1.0
        config.locations = [GraphLocationSpec(uuid=0, random_degree=4)]
        config.visits.locations = [LocationVisit(uuid=0, mean_hours=24.0)]
        result = run_simulation(config)
        assert result.total_infected > 4
        assert result.n_infection_outcomes.sum() > 0

    def test_no_spread_without_transmissibility(self):
        config = _small_config()
        config.disease.transmissibility = 0.0
        result = run_simulation(config)
        assert result.total_infected == 4

    def test_tracing_tests_and_reports(self):
        config = _small_config()
        config.disease.transmissibility = 1.0
        result = run_simulation(config)
        assert result.n_tests.sum() > 0
        assert result.n_positive_tests.sum() > 0
        assert result.n_contact_reports.sum() > 0

    def test_tracing_disabled_sends_nothing(self):
        config = _small_config()
        config.tracing.enabled = False
        result = run_simulation(config)
        assert result.n_tests.sum() == 0
        assert result.n_contact_reports.sum() == 0

    def test_same_seed_replays(self):
        a = run_simulation(_small_config())
        b = run_simulation(_small_config())
        np.testing.assert_array_equal(a.infectious, b.infectious)
        np.testing.assert_array_equal(a.n_contact_reports, b.n_contact_reports)

    def test_seed_argument_overrides_config(self):
        a = run_simulation(_small_config(seed=1), seed=99)
        b = run_simulation(_small_config(seed=99))
        np.testing.assert_array_equal(a.exposed, b.exposed)

    def test_zero_steps(self):
        result = run_simulation(_small_config(n_steps=0))
        assert result.n_steps == 0
        assert result.peak_infectious == 0

    def test_logs_each_step(self, caplog):
        with caplog.at_level(logging.INFO, logger='seir_tracing.simulation'):
            run_simulation(_small_config(n_steps=3))
        assert sum("Step" in r.getMessage() for r in caplog.records) == 3


class TestParallel:
    def test_parallel_matches_serial(self):
        serial = run_simulation(_small_config(parallel_workers=1))
        parallel = run_simulation(_small_config(parallel_workers=4))
        for name in ('susceptible', 'exposed', 'infectious', 'recovered',
                     'n_visits', 'n_infection_outcomes', 'n_contact_reports',
                     'n_tests'):
            np.testing.assert_array_equal(
                getattr(serial, name), getattr(parallel, name), err_msg=name)

    def test_worker_errors_propagate(self, monkeypatch):
        from seir_tracing.agent import SEIRAgent

        def boom(self, timestep, broker):
            raise RuntimeError("visit failure")

        monkeypatch.setattr(SEIRAgent, 'compute_visits', boom)
        with pytest.raises(RuntimeError, match="visit failure"):
            run_simulation(_small_config(parallel_workers=2, n_steps=1))
