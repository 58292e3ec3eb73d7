"""Locations: turn co-located visits into infection outcomes.

A location receives every visit split made at it during one timestep and
publishes the InfectionOutcomes the agents will process next timestep.

Graph location:
  Contacts are only possible along the edges of a fixed contact graph over
  agent uuids. Each timestep every edge is dropped independently with
  `drop_probability`; for a surviving edge (a, b), every pair of
  overlapping visits yields one outcome for a (source b) and one for b
  (source a). The exposure spans the overlap and carries the source's
  infectivity: 1.0 if the source's visit piece is INFECTIOUS, else 0.0.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from seir_tracing.broker import Broker
from seir_tracing.exposure import ExposureGenerator, MicroExposureGenerator
from seir_tracing.types import (
    ContractViolation,
    ExposureType,
    HealthState,
    InfectionOutcome,
    Visit,
)

logger = logging.getLogger(__name__)

Edge = Tuple[int, int]


class Location(ABC):
    """A place agents visit."""

    def __init__(self, uuid: int):
        self.uuid = uuid

    @abstractmethod
    def process_visits(
        self,
        visits: Sequence[Visit],
        outcome_broker: Broker,
    ) -> None:
        """Consume one timestep of visits; publish resulting outcomes."""


def random_edges(
    agent_uuids: Sequence[int],
    degree: int,
    rng: np.random.Generator,
) -> List[Edge]:
    """Undirected random contact graph.

    Every agent draws `degree` distinct partners (capped at n − 1); pairs
    drawn from both ends are merged. Edges are returned as sorted
    (low, high) uuid tuples in ascending order.
    """
    n = len(agent_uuids)
    if n < 2 or degree <= 0:
        return []
    k = min(degree, n - 1)
    indices = np.arange(n)

    edges = set()
    for i in range(n):
        partners = rng.choice(np.delete(indices, i), size=k, replace=False)
        for j in partners:
            a, b = int(agent_uuids[i]), int(agent_uuids[j])
            edges.add((min(a, b), max(a, b)))
    return sorted(edges)


class GraphLocation(Location):
    """Contacts along the (randomly thinned) edges of a contact graph."""

    def __init__(
        self,
        uuid: int,
        edges: Iterable[Edge],
        drop_probability: float = 0.0,
        rng: Optional[np.random.Generator] = None,
        exposure_generator: Optional[ExposureGenerator] = None,
    ):
        super().__init__(uuid)
        if not (0.0 <= drop_probability <= 1.0):
            raise ValueError(
                f"drop_probability must be in [0, 1], got {drop_probability}"
            )
        self.edges: List[Edge] = [(int(a), int(b)) for a, b in edges if a != b]
        self.drop_probability = drop_probability
        self._rng = rng if rng is not None else np.random.default_rng()
        self._exposure_generator = (
            exposure_generator if exposure_generator is not None
            else MicroExposureGenerator()
        )

    def _sample_edges(self) -> List[Edge]:
        # One draw per edge per timestep, whether or not both ends visited
        keep = self._rng.random(len(self.edges)) >= self.drop_probability
        return [edge for edge, kept in zip(self.edges, keep) if kept]

    def _outcome(self, target: Visit, source: Visit,
                 start: float, duration: float) -> InfectionOutcome:
        infectivity = 1.0 if source.health_state == HealthState.INFECTIOUS else 0.0
        return InfectionOutcome(
            agent_uuid=target.agent_uuid,
            exposure=self._exposure_generator.generate(start, duration, infectivity),
            exposure_type=ExposureType.CONTACT,
            source_uuid=source.agent_uuid,
        )

    def process_visits(
        self,
        visits: Sequence[Visit],
        outcome_broker: Broker,
    ) -> None:
        """Publish contact outcomes for this timestep's visits.

        Raises:
            ContractViolation: If a visit belongs to another location.
        """
        by_agent: Dict[int, List[Visit]] = defaultdict(list)
        for visit in visits:
            if visit.location_uuid != self.uuid:
                raise ContractViolation(
                    f"Location {self.uuid} received a visit to location "
                    f"{visit.location_uuid}"
                )
            by_agent[visit.agent_uuid].append(visit)

        outcomes: List[InfectionOutcome] = []
        for a, b in self._sample_edges():
            if a not in by_agent or b not in by_agent:
                continue
            for visit_a in by_agent[a]:
                for visit_b in by_agent[b]:
                    start = max(visit_a.start_time, visit_b.start_time)
                    end = min(visit_a.end_time, visit_b.end_time)
                    if end <= start:
                        continue
                    outcomes.append(self._outcome(visit_a, visit_b, start, end - start))
                    outcomes.append(self._outcome(visit_b, visit_a, start, end - start))

        if outcomes:
            logger.debug("Location %d: %d outcomes from %d visits",
                         self.uuid, len(outcomes), len(visits))
            outcome_broker.send(outcomes)


def make_locations(
    specs: Sequence,
    agent_uuids: Sequence[int],
    rng: np.random.Generator,
    n_buckets: int,
) -> Dict[int, GraphLocation]:
    """Build GraphLocations from `config.GraphLocationSpec` entries.

    Explicit edges win; otherwise a random graph of `random_degree` is drawn.
    All locations share `rng`, so they must be processed sequentially.
    """
    exposure_generator = MicroExposureGenerator(n_buckets)
    locations: Dict[int, GraphLocation] = {}
    for spec in specs:
        if spec.edges is not None:
            edges = spec.edges
        else:
            edges = random_edges(agent_uuids, spec.random_degree, rng)
        locations[spec.uuid] = GraphLocation(
            uuid=spec.uuid,
            edges=edges,
            drop_probability=spec.drop_probability,
            rng=rng,
            exposure_generator=exposure_generator,
        )
    return locations
