"""Configuration system for seir-tracing.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Each top-level YAML key maps to one dataclass section. Unknown keys are
ignored so scenario files can carry annotations for other tools.
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Top-level simulation timing and control."""
    seed: int = 42
    start_time: float = 0.0          # Simulation epoch offset (s)
    timestep_hours: float = 24.0     # Length of one timestep
    n_steps: int = 60                # Number of timesteps to run
    parallel_workers: int = 1        # >1 evaluates agents on a thread pool


@dataclass
class PopulationSection:
    """Population size and initial health states."""
    n_agents: int = 200
    initial_exposed: int = 0
    initial_infectious: int = 3


@dataclass
class DiseaseSection:
    """Transmission and progression parameters."""
    transmissibility: float = 0.05   # Per contact-hour at full infectivity
    latent_days: float = 3.0         # Mean E → I dwell time
    infectious_days: float = 5.0     # Mean I → R dwell time
    k_shape_latent: int = 3
    k_shape_infectious: int = 2
    immunity_days: Optional[float] = None  # None = permanent immunity


@dataclass
class LocationVisit:
    """One entry of an agent's round-robin visit schedule."""
    uuid: int = 0
    mean_hours: float = 8.0


@dataclass
class VisitsSection:
    """Visit schedule shared by every agent."""
    locations: List[LocationVisit] = field(default_factory=lambda: [
        LocationVisit(uuid=0, mean_hours=14.0),   # home
        LocationVisit(uuid=1, mean_hours=8.0),    # work
        LocationVisit(uuid=2, mean_hours=2.0),    # shops
    ])
    micro_exposure_buckets: int = 10


@dataclass
class GraphLocationSpec:
    """Contact graph sampled at one location.

    Either give explicit `edges` between agent uuids, or let the builder
    draw `random_degree` random partners per agent.
    """
    uuid: int = 0
    drop_probability: float = 0.0
    edges: Optional[List[Tuple[int, int]]] = None
    random_degree: int = 4


@dataclass
class TracingSection:
    """Test-and-trace risk-score policy."""
    enabled: bool = True
    test_latency_hours: float = 36.0
    positive_threshold: float = 0.5
    quarantine_days: float = 14.0
    retention_days: float = 14.0
    test_on_infectious: bool = True
    report_recursively: bool = False
    send_positive_test: bool = True
    exempt_locations: List[int] = field(default_factory=lambda: [0])


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    population: PopulationSection = field(default_factory=PopulationSection)
    disease: DiseaseSection = field(default_factory=DiseaseSection)
    visits: VisitsSection = field(default_factory=VisitsSection)
    tracing: TracingSection = field(default_factory=TracingSection)
    locations: List[GraphLocationSpec] = field(default_factory=lambda: [
        GraphLocationSpec(uuid=0, drop_probability=0.0, random_degree=2),
        GraphLocationSpec(uuid=1, drop_probability=0.5, random_degree=6),
        GraphLocationSpec(uuid=2, drop_probability=0.8, random_degree=10),
    ])


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values (including lists) are replaced
    - Keys in override but not base are added

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _parse_visits(data: Dict) -> VisitsSection:
    data = dict(data)
    if isinstance(data.get('locations'), list):
        data['locations'] = [
            _dict_to_section(LocationVisit, loc)
            for loc in data['locations'] if isinstance(loc, dict)
        ]
    return _dict_to_section(VisitsSection, data)


def _parse_location(data: Dict) -> GraphLocationSpec:
    data = dict(data)
    if data.get('edges') is not None:
        data['edges'] = [tuple(edge) for edge in data['edges']]
    return _dict_to_section(GraphLocationSpec, data)


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections: Dict[str, Any] = {}
    section_map = {
        'simulation': SimulationSection,
        'population': PopulationSection,
        'disease': DiseaseSection,
        'tracing': TracingSection,
    }
    for key, cls in section_map.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()

    if isinstance(data.get('visits'), dict):
        sections['visits'] = _parse_visits(data['visits'])
    else:
        sections['visits'] = VisitsSection()

    # Locations are a top-level list, not a section
    if isinstance(data.get('locations'), list):
        sections['locations'] = [
            _parse_location(loc) for loc in data['locations']
            if isinstance(loc, dict)
        ]

    return SimulationConfig(**sections)


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure."""
    sim = config.simulation
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    if sim.timestep_hours <= 0:
        raise ValueError(
            f"simulation.timestep_hours must be positive, got {sim.timestep_hours}"
        )
    if sim.n_steps < 0:
        raise ValueError(f"simulation.n_steps must be >= 0, got {sim.n_steps}")
    if sim.parallel_workers < 1:
        raise ValueError(
            f"simulation.parallel_workers must be >= 1, got {sim.parallel_workers}"
        )

    pop = config.population
    if pop.n_agents < 0:
        raise ValueError(f"population.n_agents must be >= 0, got {pop.n_agents}")
    if pop.initial_exposed < 0 or pop.initial_infectious < 0:
        raise ValueError("population initial counts must be non-negative")
    if pop.initial_exposed + pop.initial_infectious > pop.n_agents:
        raise ValueError(
            f"initial_exposed + initial_infectious "
            f"({pop.initial_exposed}+{pop.initial_infectious}) exceeds "
            f"n_agents ({pop.n_agents})"
        )

    dis = config.disease
    if dis.transmissibility < 0:
        raise ValueError("disease.transmissibility must be >= 0")
    if dis.latent_days < 0 or dis.infectious_days < 0:
        raise ValueError("disease dwell times must be >= 0")
    if dis.k_shape_latent < 1 or dis.k_shape_infectious < 1:
        raise ValueError("disease Erlang shapes must be >= 1")
    if dis.immunity_days is not None and dis.immunity_days <= 0:
        raise ValueError("disease.immunity_days must be positive or null")

    vis = config.visits
    if not vis.locations:
        raise ValueError("visits.locations must list at least one location")
    for i, loc in enumerate(vis.locations):
        if loc.mean_hours < 0:
            raise ValueError(
                f"visits.locations[{i}].mean_hours must be >= 0, got {loc.mean_hours}"
            )
    if sum(loc.mean_hours for loc in vis.locations) == 0:
        warnings.warn(
            "visits.locations all have mean_hours=0; timesteps will be "
            "split evenly between locations",
            UserWarning,
            stacklevel=2,
        )
    if vis.micro_exposure_buckets < 1:
        raise ValueError("visits.micro_exposure_buckets must be >= 1")

    uuids = [loc.uuid for loc in config.locations]
    if len(uuids) != len(set(uuids)):
        raise ValueError(f"locations have duplicate uuids: {uuids}")
    for loc in config.locations:
        if not (0.0 <= loc.drop_probability <= 1.0):
            raise ValueError(
                f"locations[uuid={loc.uuid}].drop_probability must be in "
                f"[0, 1], got {loc.drop_probability}"
            )
        if loc.random_degree < 0:
            raise ValueError(
                f"locations[uuid={loc.uuid}].random_degree must be >= 0"
            )
    visited = {loc.uuid for loc in vis.locations}
    unmodelled = visited - set(uuids)
    if unmodelled:
        warnings.warn(
            f"visited locations {sorted(unmodelled)} have no contact graph; "
            f"visits there produce no contacts",
            UserWarning,
            stacklevel=2,
        )

    tr = config.tracing
    if tr.test_latency_hours < 0:
        raise ValueError("tracing.test_latency_hours must be >= 0")
    if not (0.0 <= tr.positive_threshold <= 1.0):
        raise ValueError("tracing.positive_threshold must be in [0, 1]")
    if tr.quarantine_days < 0 or tr.retention_days < 0:
        raise ValueError("tracing durations must be >= 0")
    if tr.enabled and not tr.exempt_locations:
        warnings.warn(
            "tracing.exempt_locations is empty; restricted agents stay at "
            "their first scheduled location",
            UserWarning,
            stacklevel=2,
        )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Raises:
        FileNotFoundError: If base_path or scenario_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario file not found: {scenario_path}")
        with open(scenario_path) as f:
            scenario = yaml.safe_load(f) or {}
        deep_merge(config_dict, scenario)

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
