"""Seeded RNG factory for reproducible simulations.

Uses NumPy's SeedSequence → PCG64 hierarchy to guarantee:
  - Statistical independence between per-agent streams
  - Bit-exact replay with the same master seed
  - Adding agents doesn't affect existing agents' streams

Per-agent streams are what make parallel agent evaluation reproducible:
an agent's transition model, visit generator and transmission draws never
touch another agent's generator.
"""

from __future__ import annotations

from typing import Dict

import numpy as np

# Shared streams spawned ahead of the per-agent ones
SHARED_STREAMS = ('global', 'locations')


def create_rng_hierarchy(
    master_seed: int,
    n_agents: int,
) -> Dict[str, np.random.Generator]:
    """Create independent RNG streams for each agent + shared operations.

    Streams created:
      - 'global':       Population setup (initial infections, etc.)
      - 'locations':    Location contact sampling (edge drops)
      - 'agent_0' .. 'agent_{n-1}': Per-agent streams for transitions,
        visit durations and transmission draws

    Args:
        master_seed: Master RNG seed (non-negative integer).
        n_agents: Number of agents.

    Returns:
        Dictionary mapping stream names to numpy Generator instances.

    Example:
        >>> rngs = create_rng_hierarchy(42, n_agents=100)
        >>> rngs['agent_7'].random()  # reproducible
    """
    ss = np.random.SeedSequence(master_seed)
    child_seeds = ss.spawn(n_agents + len(SHARED_STREAMS))

    rngs: Dict[str, np.random.Generator] = {
        name: np.random.Generator(np.random.PCG64(child_seeds[i]))
        for i, name in enumerate(SHARED_STREAMS)
    }
    offset = len(SHARED_STREAMS)
    for i in range(n_agents):
        rngs[f'agent_{i}'] = np.random.Generator(
            np.random.PCG64(child_seeds[offset + i])
        )

    return rngs


def get_agent_rng(
    rngs: Dict[str, np.random.Generator],
    agent_index: int,
) -> np.random.Generator:
    """Get the RNG stream for a specific agent.

    Raises:
        KeyError: If agent_index doesn't have a stream.
    """
    key = f'agent_{agent_index}'
    if key not in rngs:
        n_agents = sum(1 for k in rngs if k.startswith('agent_'))
        raise KeyError(
            f"No RNG stream for agent {agent_index}. "
            f"Hierarchy holds {n_agents} agent streams"
        )
    return rngs[key]
