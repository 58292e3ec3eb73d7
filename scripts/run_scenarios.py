#!/usr/bin/env python3
"""Run tracing scenarios from YAML configuration files.

Each scenario file is layered on top of the base config, run for the
requested number of replicate seeds, and summarised per replicate as JSON.

Usage:
    python scripts/run_scenarios.py configs/scenarios/no_tracing.yaml
    python scripts/run_scenarios.py configs/scenarios/*.yaml --replicates 5
    python scripts/run_scenarios.py configs/scenarios/no_tracing.yaml --dry-run

References:
    - seir_tracing/config.py: load_config, SimulationConfig
    - seir_tracing/simulation.py: run_simulation, SimulationResult
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict

# ── Project imports ──────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from seir_tracing.config import load_config
from seir_tracing.simulation import SimulationResult, run_simulation

DEFAULT_BASE = PROJECT_ROOT / 'configs' / 'default.yaml'


def summarise(result: SimulationResult, seed: int) -> Dict[str, Any]:
    """Scalar summary plus the compartment timeseries of one replicate."""
    return {
        'seed': seed,
        'n_agents': result.n_agents,
        'total_infected': result.total_infected,
        'attack_rate': result.total_infected / max(result.n_agents, 1),
        'peak_infectious': result.peak_infectious,
        'peak_step': result.peak_step,
        'total_tests': int(result.n_tests.sum()),
        'total_positive_tests': int(result.n_positive_tests.sum()),
        'total_contact_reports': int(result.n_contact_reports.sum()),
        'susceptible': result.susceptible.tolist(),
        'exposed': result.exposed.tolist(),
        'infectious': result.infectious.tolist(),
        'recovered': result.recovered.tolist(),
    }


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Run tracing scenarios from YAML config files.",
        epilog="Example: python scripts/run_scenarios.py configs/scenarios/no_tracing.yaml",
    )
    parser.add_argument(
        "scenarios", nargs="+",
        help="YAML scenario file(s) layered on the base config",
    )
    parser.add_argument(
        "--base-config", type=str, default=str(DEFAULT_BASE),
        help="Base config YAML (default: configs/default.yaml)",
    )
    parser.add_argument(
        "--replicates", type=int, default=1,
        help="Replicate seeds per scenario, counting up from simulation.seed",
    )
    parser.add_argument(
        "--output-dir", type=str, default="results/scenarios",
        help="Directory for per-scenario JSON summaries",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Parse and validate configs without running simulations",
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Log one line per timestep",
    )
    args = parser.parse_args()

    missing = [p for p in [args.base_config, *args.scenarios] if not Path(p).exists()]
    if missing:
        parser.error(f"config file(s) not found: {', '.join(missing)}")

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    output_dir = Path(args.output_dir)
    for scenario_path in args.scenarios:
        config = load_config(args.base_config, scenario_path)
        name = Path(scenario_path).stem
        print(f"── {name}: {config.population.n_agents} agents, "
              f"{config.simulation.n_steps} steps, "
              f"tracing={'on' if config.tracing.enabled else 'off'}")
        if args.dry_run:
            continue

        replicates = []
        for rep in range(args.replicates):
            seed = config.simulation.seed + rep
            t0 = time.time()
            result = run_simulation(config, seed=seed)
            summary = summarise(result, seed)
            replicates.append(summary)
            print(f"   seed {seed}: attack rate {summary['attack_rate']:.1%}, "
                  f"peak I={summary['peak_infectious']} at step "
                  f"{summary['peak_step']}, {summary['total_tests']} tests "
                  f"({time.time() - t0:.1f}s)")

        output_dir.mkdir(parents=True, exist_ok=True)
        out_path = output_dir / f"{name}.json"
        with open(out_path, 'w') as f:
            json.dump({'scenario': str(scenario_path), 'replicates': replicates},
                      f, indent=2)
        print(f"   saved {out_path}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
