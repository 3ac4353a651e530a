"""Simulation series: replicate runs over a grid of parameter values.

For each parameter combination:
  1. Locate the disease-free annual cycle of every patch (equilibrium.py)
  2. Start from that cycle with ``initial_infected`` cases in patch 0
  3. Run the stochastic replicates
  4. Record the time to global extinction of every replicate

Usage:
    config = load_config('configs/series.yaml')
    result = run_series(config, verbose=True)
    result.save(config.series.output_dir)
"""

from __future__ import annotations

import csv
import itertools
import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import yaml

from msir_metapop.config import (
    EpidemiologySection,
    SimulationConfig,
    config_to_dict,
    with_parameters,
)
from msir_metapop.equilibrium import equilibrium_sizes, initial_state
from msir_metapop.model import MetapopModel
from msir_metapop.replicates import ProgressCallback, run_replicates
from msir_metapop.summary import extinction_times
from msir_metapop.topology import topology_from_config
from msir_metapop.types import Trajectory


# ═══════════════════════════════════════════════════════════════════════
# PARAMETER GRID
# ═══════════════════════════════════════════════════════════════════════

def expand_grid(sweep: Dict[str, List[Any]]) -> List[Dict[str, Any]]:
    """Cartesian product of parameter values, first key varying fastest."""
    if not sweep:
        return [{}]
    keys = list(sweep)
    rows = []
    for combo in itertools.product(*(sweep[k] for k in reversed(keys))):
        rows.append(dict(zip(reversed(keys), combo)))
    return [{k: row[k] for k in keys} for row in rows]


def drop_redundant_maternal(rows: List[Dict[str, Any]],
                            sweep: Dict[str, List[Any]]) -> List[Dict[str, Any]]:
    """Drop rows with rho = 0 whose maternal_period is above the minimum swept.

    Without maternal transfer the maternal period has no effect, so one
    representative row per rho = 0 combination is enough.
    """
    if 'rho' not in sweep or 'maternal_period' not in sweep:
        return rows
    shortest = min(sweep['maternal_period'])
    return [r for r in rows
            if not (r['rho'] == 0 and r['maternal_period'] > shortest)]


def series_grid(config: SimulationConfig) -> List[Dict[str, Any]]:
    """Parameter combinations of a config's series section."""
    rows = expand_grid(config.series.sweep)
    if config.series.drop_redundant_maternal:
        rows = drop_redundant_maternal(rows, config.series.sweep)
    return rows


# ═══════════════════════════════════════════════════════════════════════
# SINGLE PARAMETER SET
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class RunResult:
    """Replicates for one parameter set."""
    parameters: EpidemiologySection
    x0: np.ndarray
    extinction_times: np.ndarray
    trajectories: Optional[List[Trajectory]] = None

    @property
    def n_extinct(self) -> int:
        return int(np.sum(~np.isnan(self.extinction_times)))


def initial_condition(model: MetapopModel, config: SimulationConfig) -> np.ndarray:
    """Start on the disease-free annual cycle with the configured seed infections."""
    sizes = equilibrium_sizes(
        model,
        search=config.equilibrium,
        settings=config.deterministic,
        workers=config.simulation.workers,
    )
    return initial_state(model, sizes, infected=config.series.initial_infected)


def run_config(
    config: SimulationConfig,
    parameters: Optional[EpidemiologySection] = None,
    x0=None,
    keep_trajectories: bool = True,
    progress_callback: Optional[ProgressCallback] = None,
) -> RunResult:
    """Run the replicates described by a config.

    Args:
        config: Validated configuration.
        parameters: Replaces config.parameters when given.
        x0: Initial state; default from initial_condition().
        keep_trajectories: Keep trajectories in the result (memory heavy).
        progress_callback: Optional callable(done, total) per replicate.
    """
    params = parameters if parameters is not None else config.parameters
    model = MetapopModel(topology_from_config(config.topology), params)
    x0 = initial_condition(model, config) if x0 is None else model.check_state(x0)
    sim = config.simulation
    trajectories = run_replicates(
        model, x0, sim.t_end, sim.n_replicates,
        seed=sim.seed, thin=sim.thin, leap=config.leap,
        workers=sim.workers, progress_callback=progress_callback,
    )
    return RunResult(
        parameters=params,
        x0=x0,
        extinction_times=extinction_times(trajectories),
        trajectories=trajectories if keep_trajectories else None,
    )


# ═══════════════════════════════════════════════════════════════════════
# SERIES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SeriesResult:
    """Extinction times for every parameter combination of a series."""
    combinations: List[Dict[str, Any]]
    extinction_times: np.ndarray           # (n_combinations, n_replicates)
    initial_states: List[np.ndarray] = field(default_factory=list)
    config: Optional[SimulationConfig] = None

    @property
    def n_extinct(self) -> np.ndarray:
        return np.sum(~np.isnan(self.extinction_times), axis=1)

    def to_csv(self, path: Union[str, Path]) -> Path:
        """One row per combination: parameters, n_extinct, per-replicate times."""
        path = Path(path)
        keys = list(self.combinations[0]) if self.combinations else []
        n_rep = self.extinction_times.shape[1] if self.extinction_times.size else 0
        with open(path, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(keys + ['n_extinct'] + [f'rep_{k}' for k in range(n_rep)])
            for combo, times, n_ext in zip(self.combinations,
                                           self.extinction_times, self.n_extinct):
                writer.writerow(
                    [combo[k] for k in keys] + [int(n_ext)]
                    + ['' if math.isnan(t) else f'{t:.6g}' for t in times]
                )
        return path

    def save(self, output_dir: Union[str, Path]) -> Path:
        """Write extinctions.csv, series.json and (if known) config.yaml."""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        self.to_csv(output_dir / 'extinctions.csv')
        meta = {
            'n_combinations': len(self.combinations),
            'combinations': self.combinations,
            'n_extinct': self.n_extinct.tolist(),
            'initial_states': [x.tolist() for x in self.initial_states],
        }
        with open(output_dir / 'series.json', 'w') as f:
            json.dump(meta, f, indent=2, default=float)
        if self.config is not None:
            with open(output_dir / 'config.yaml', 'w') as f:
                yaml.safe_dump(config_to_dict(self.config), f, sort_keys=False)
        return output_dir


def run_series(
    config: SimulationConfig,
    verbose: bool = False,
    progress_callback: Optional[ProgressCallback] = None,
) -> SeriesResult:
    """Run every combination of config.series.sweep.

    Args:
        config: Validated configuration; ``parameters`` gives the defaults
            that each combination overrides.
        verbose: Print one line per combination.
        progress_callback: Optional callable(done, total) per combination.

    Returns:
        SeriesResult.
    """
    rows = series_grid(config)
    times = np.full((len(rows), config.simulation.n_replicates), np.nan)
    starts = []
    for i, row in enumerate(rows):
        params = with_parameters(config.parameters, **row)
        if verbose:
            print(f"[{i + 1}/{len(rows)}] {row}")
        result = run_config(config, parameters=params, keep_trajectories=False)
        times[i] = result.extinction_times
        starts.append(result.x0)
        if verbose:
            print(f"  Extinctions: {result.n_extinct}/{config.simulation.n_replicates}")
        if progress_callback is not None:
            progress_callback(i + 1, len(rows))
    return SeriesResult(combinations=rows, extinction_times=times,
                        initial_states=starts, config=config)
