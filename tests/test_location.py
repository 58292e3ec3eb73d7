"""Tests for seir_tracing.location — graph contact sampling."""

import numpy as np
import pytest

from seir_tracing.broker import CollectingBroker
from seir_tracing.config import GraphLocationSpec
from seir_tracing.location import GraphLocation, make_locations, random_edges
from seir_tracing.types import (
    ContractViolation,
    ExposureType,
    HealthState,
    Visit,
)


def _visit(agent, start, end, state=HealthState.SUSCEPTIBLE, location=0):
    return Visit(location_uuid=location, start_time=start, end_time=end,
                 agent_uuid=agent, health_state=state)


class TestRandomEdges:
    def test_edges_are_sorted_pairs(self):
        edges = random_edges(list(range(20)), 3, np.random.default_rng(0))
        assert edges == sorted(edges)
        assert all(a < b for a, b in edges)
        assert len(edges) == len(set(edges))

    def test_every_agent_has_degree(self):
        edges = random_edges(list(range(20)), 3, np.random.default_rng(0))
        degree = {i: 0 for i in range(20)}
        for a, b in edges:
            degree[a] += 1
            degree[b] += 1
        assert min(degree.values()) >= 3

    def test_degree_capped(self):
        edges = random_edges([5, 6, 7], 10, np.random.default_rng(0))
        assert edges == [(5, 6), (5, 7), (6, 7)]

    def test_degenerate(self):
        rng = np.random.default_rng(0)
        assert random_edges([1], 3, rng) == []
        assert random_edges([1, 2, 3], 0, rng) == []


class TestGraphLocation:
    def test_overlap_produces_outcomes_both_ways(self):
        loc = GraphLocation(0, edges=[(1, 2)], rng=np.random.default_rng(0))
        broker = CollectingBroker()
        loc.process_visits([
            _visit(1, 0.0, 600.0, HealthState.INFECTIOUS),
            _visit(2, 300.0, 900.0),
        ], broker)

        outcomes = {o.agent_uuid: o for o in broker.items}
        assert set(outcomes) == {1, 2}

        to_2 = outcomes[2]
        assert to_2.source_uuid == 1
        assert to_2.exposure_type == ExposureType.CONTACT
        assert to_2.exposure.start_time == 300.0
        assert to_2.exposure.duration == 300.0
        assert to_2.exposure.infectivity == 1.0
        np.testing.assert_array_equal(
            to_2.exposure.micro_exposure_counts[:5], [1, 1, 1, 1, 1])

        assert outcomes[1].source_uuid == 2
        assert outcomes[1].exposure.infectivity == 0.0

    def test_no_overlap_no_outcomes(self):
        loc = GraphLocation(0, edges=[(1, 2)])
        broker = CollectingBroker()
        loc.process_visits([_visit(1, 0.0, 100.0), _visit(2, 100.0, 200.0)], broker)
        assert broker.n_batches == 0

    def test_agents_without_edge_do_not_meet(self):
        loc = GraphLocation(0, edges=[(1, 3)])
        broker = CollectingBroker()
        loc.process_visits([_visit(1, 0.0, 100.0), _visit(2, 0.0, 100.0)], broker)
        assert broker.items == []

    def test_every_edge_dropped(self):
        loc = GraphLocation(0, edges=[(1, 2)], drop_probability=1.0)
        broker = CollectingBroker()
        loc.process_visits([_visit(1, 0.0, 100.0), _visit(2, 0.0, 100.0)], broker)
        assert broker.items == []

    def test_split_visits_carry_their_state(self):
        loc = GraphLocation(0, edges=[(1, 2)])
        broker = CollectingBroker()
        loc.process_visits([
            _visit(1, 0.0, 50.0, HealthState.EXPOSED),
            _visit(1, 50.0, 100.0, HealthState.INFECTIOUS),
            _visit(2, 0.0, 100.0),
        ], broker)
        to_2 = sorted((o for o in broker.items if o.agent_uuid == 2),
                      key=lambda o: o.exposure.start_time)
        assert [o.exposure.infectivity for o in to_2] == [0.0, 1.0]

    def test_self_edges_ignored(self):
        loc = GraphLocation(0, edges=[(1, 1), (1, 2)])
        assert loc.edges == [(1, 2)]

    def test_invalid_drop_probability(self):
        with pytest.raises(ValueError):
            GraphLocation(0, edges=[], drop_probability=-0.1)

    def test_visit_to_other_location_raises(self):
        loc = GraphLocation(0, edges=[])
        with pytest.raises(ContractViolation):
            loc.process_visits([_visit(1, 0.0, 1.0, location=5)], CollectingBroker())


class TestMakeLocations:
    def test_explicit_and_random_graphs(self):
        specs = [
            GraphLocationSpec(uuid=0, edges=[(0, 1)]),
            GraphLocationSpec(uuid=4, drop_probability=0.5, random_degree=2),
        ]
        locations = make_locations(specs, list(range(10)),
                                   np.random.default_rng(0), n_buckets=10)
        assert set(locations) == {0, 4}
        assert locations[0].edges == [(0, 1)]
        assert len(locations[4].edges) >= 10
        assert locations[4].drop_probability == 0.5
