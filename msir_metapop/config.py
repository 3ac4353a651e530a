"""Configuration system for MSIR-Metapop.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → programmatic overrides

Every section is a fixed-field dataclass. ``validate_config`` checks the
whole tree once and raises ConfigurationError before any simulation starts;
downstream code never re-validates field by field.

Time unit throughout is the year; all rates are per year.
"""

from __future__ import annotations

import copy
import dataclasses
import math
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import yaml

from msir_metapop.errors import ConfigurationError


PerPatch = Union[float, List[float]]


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class EpidemiologySection:
    """Demographic and epidemiological parameters.

    Per-patch fields accept a scalar (shared by every patch) or a list with
    one value per patch. ``carrying_capacity`` may be ``inf`` (no
    density-dependent mortality in that patch).
    """
    life_span: float = 2.0             # λ: mean life span at average density (yr)
    death_rate: float = 0.0            # d: density-independent death rate
    carrying_capacity: PerPatch = 1000.0   # K; dd = 1/K
    pulse_tightness: PerPatch = 100.0  # s: birth-pulse sharpness (0 = aseasonal)
    pulse_phase: PerPatch = 0.5        # τ: time of peak births within the year
    R0: float = 4.0                    # Basic reproduction number
    infectious_period: float = 1.0 / 12.0  # Mean infectious period (yr)
    rho: float = 1.0                   # P(maternal antibody transfer | mother in R)
    maternal_period: float = 0.1       # Mean duration of maternal protection (yr)
    migration_rate: float = 0.0        # μ: per-capita migration rate along each edge


@dataclass
class TopologySection:
    """Migration network.

    kind: 'isolated' | 'circle' | 'line' | 'complete' | 'star' | 'matrix'
    For 'matrix', ``matrix`` holds the n×n 0/1 adjacency (M[i][j] = 1 ⇔
    migration from i to j) and ``n_patches`` is taken from it.
    """
    kind: str = 'circle'
    n_patches: int = 1
    matrix: Optional[List[List[int]]] = None


@dataclass
class SimulationSection:
    """Replicate run control."""
    t_end: float = 20.0                # End time (yr)
    thin: Optional[float] = 0.05       # Sampling interval; None = keep every step
    n_replicates: int = 1000
    seed: int = 42                     # Master seed; replicate streams are spawned from it
    workers: int = 1                   # Worker processes (1 = serial)


@dataclass
class LeapSection:
    """Adaptive tau-leaping controls."""
    epsilon: float = 0.005             # Bound on relative rate change per leap
    critical_threshold: int = 10       # Events able to exhaust a compartment within this many firings are critical
    exact_threshold: float = 10.0      # Fall back to exact steps if a leap would cover fewer events than this
    exact_steps: int = 100             # Exact events per fallback burst
    rate_order: float = 2.0            # g: highest order of any rate in a compartment
    max_tau: float = math.inf          # Hard cap on a single leap (yr)
    max_retries: int = 50              # Step halvings before giving up on a leap


@dataclass
class DeterministicSection:
    """Mean-field ODE integration."""
    dt: float = 0.005                  # Output spacing (yr)
    method: str = 'LSODA'              # scipy.integrate.solve_ivp method
    rtol: float = 1e-8
    atol: float = 1e-8
    max_step: float = 0.01             # Resolves sharp birth pulses


@dataclass
class EquilibriumSection:
    """Disease-free seasonal cycle search."""
    bracket: Tuple[float, float] = (0.5, 1.5)  # Search interval, multiples of K
    xtol: float = 1e-4                 # Optimizer tolerance on S0
    residual_rtol: float = 1e-3        # Max |S(1) - S0| / S0 accepted as a cycle


@dataclass
class SeriesSection:
    """Simulation series over a parameter grid."""
    sweep: Dict[str, List[Any]] = field(default_factory=dict)
    drop_redundant_maternal: bool = True   # Skip rho=0 rows that only differ in maternal_period
    initial_infected: int = 1
    output_dir: str = 'results/series'


@dataclass
class SimulationConfig:
    """Complete configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    parameters: EpidemiologySection = field(default_factory=EpidemiologySection)
    topology: TopologySection = field(default_factory=TopologySection)
    simulation: SimulationSection = field(default_factory=SimulationSection)
    leap: LeapSection = field(default_factory=LeapSection)
    deterministic: DeterministicSection = field(default_factory=DeterministicSection)
    equilibrium: EquilibriumSection = field(default_factory=EquilibriumSection)
    series: SeriesSection = field(default_factory=SeriesSection)

    @property
    def n_patches(self) -> int:
        if self.topology.kind == 'matrix' and self.topology.matrix is not None:
            return len(self.topology.matrix)
        return self.topology.n_patches


SECTION_MAP = {
    'parameters': EpidemiologySection,
    'topology': TopologySection,
    'simulation': SimulationSection,
    'leap': LeapSection,
    'deterministic': DeterministicSection,
    'equilibrium': EquilibriumSection,
    'series': SeriesSection,
}


# ═══════════════════════════════════════════════════════════════════════
# PER-PATCH VALUES
# ═══════════════════════════════════════════════════════════════════════

def per_patch(value: PerPatch, n_patches: int, name: str = 'value') -> np.ndarray:
    """Broadcast a scalar or per-patch list to a float array of length n_patches.

    Raises:
        ConfigurationError: If a list has the wrong length.
    """
    arr = np.atleast_1d(np.asarray(value, dtype=np.float64))
    if arr.ndim != 1:
        raise ConfigurationError(f"{name} must be a scalar or a flat list")
    if arr.size == 1:
        return np.full(n_patches, arr[0])
    if arr.size != n_patches:
        raise ConfigurationError(
            f"{name} has {arr.size} values, expected 1 or {n_patches}"
        )
    return arr.copy()


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
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


def config_from_dict(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig (no validation)."""
    sections = {}
    for key, cls in SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    eq = sections['equilibrium']
    eq.bracket = tuple(eq.bracket)
    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict:
    """Plain-dict view of a config (YAML/JSON serialisable)."""
    data = dataclasses.asdict(config)
    data['equilibrium']['bracket'] = list(config.equilibrium.bracket)
    return data


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigurationError(message)


def _finite_nonneg(value: float, name: str) -> None:
    _require(
        isinstance(value, (int, float, np.integer, np.floating))
        and math.isfinite(value) and value >= 0,
        f"{name} must be a finite non-negative number, got {value!r}",
    )


def _finite_pos(value: float, name: str) -> None:
    _require(
        isinstance(value, (int, float, np.integer, np.floating))
        and math.isfinite(value) and value > 0,
        f"{name} must be a finite positive number, got {value!r}",
    )


def validate_parameters(params: EpidemiologySection, n_patches: int) -> None:
    """Validate an EpidemiologySection for a network of n_patches.

    Raises:
        ConfigurationError: On any invalid value.
    """
    _finite_pos(params.life_span, 'parameters.life_span')
    _finite_nonneg(params.death_rate, 'parameters.death_rate')
    _finite_nonneg(params.R0, 'parameters.R0')
    _finite_pos(params.infectious_period, 'parameters.infectious_period')
    _finite_pos(params.maternal_period, 'parameters.maternal_period')
    _finite_nonneg(params.migration_rate, 'parameters.migration_rate')
    _require(
        isinstance(params.rho, (int, float, np.integer, np.floating))
        and 0.0 <= params.rho <= 1.0,
        f"parameters.rho must be in [0, 1], got {params.rho!r}",
    )

    K = per_patch(params.carrying_capacity, n_patches, 'parameters.carrying_capacity')
    _require(
        bool(np.all(K > 0)) and not np.any(np.isnan(K)),
        f"parameters.carrying_capacity must be > 0 (inf allowed), got {K.tolist()}",
    )
    s = per_patch(params.pulse_tightness, n_patches, 'parameters.pulse_tightness')
    _require(
        bool(np.all(np.isfinite(s) & (s >= 0))),
        f"parameters.pulse_tightness must be finite and >= 0, got {s.tolist()}",
    )
    tau = per_patch(params.pulse_phase, n_patches, 'parameters.pulse_phase')
    _require(
        bool(np.all(np.isfinite(tau))),
        f"parameters.pulse_phase must be finite, got {tau.tolist()}",
    )


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ConfigurationError on failure.

    Checks:
      - Topology kind and shape (adjacency details in topology.validate_adjacency)
      - Parameter ranges (non-negative finite rates, rho in [0, 1])
      - Run control (positive t_end, thin, epsilon; at least one replicate)
      - ODE and equilibrium settings
    """
    from msir_metapop.topology import TOPOLOGY_KINDS, validate_adjacency

    topo = config.topology
    _require(
        topo.kind in TOPOLOGY_KINDS,
        f"topology.kind must be one of {sorted(TOPOLOGY_KINDS)}, got '{topo.kind}'",
    )
    if topo.kind == 'matrix':
        _require(topo.matrix is not None,
                 "topology.matrix required when topology.kind='matrix'")
        validate_adjacency(topo.matrix)
    else:
        _require(
            isinstance(topo.n_patches, (int, np.integer)) and topo.n_patches >= 1,
            f"topology.n_patches must be a positive integer, got {topo.n_patches!r}",
        )

    validate_parameters(config.parameters, config.n_patches)

    sim = config.simulation
    _finite_pos(sim.t_end, 'simulation.t_end')
    if sim.thin is not None:
        _finite_pos(sim.thin, 'simulation.thin')
    _require(sim.n_replicates >= 1,
             f"simulation.n_replicates must be >= 1, got {sim.n_replicates}")
    _require(sim.seed >= 0, "simulation.seed must be non-negative")
    _require(sim.workers >= 1, f"simulation.workers must be >= 1, got {sim.workers}")
    cpus = os.cpu_count() or 1
    if sim.workers > cpus:
        warnings.warn(
            f"simulation.workers={sim.workers} exceeds the {cpus} available CPUs",
            UserWarning,
            stacklevel=2,
        )

    validate_leap(config.leap)

    det = config.deterministic
    _finite_pos(det.dt, 'deterministic.dt')
    _finite_pos(det.rtol, 'deterministic.rtol')
    _finite_pos(det.atol, 'deterministic.atol')
    _finite_pos(det.max_step, 'deterministic.max_step')

    eq = config.equilibrium
    _require(
        len(eq.bracket) == 2 and 0 < eq.bracket[0] < eq.bracket[1],
        f"equilibrium.bracket must be (low, high) with 0 < low < high, got {eq.bracket}",
    )
    _finite_pos(eq.xtol, 'equilibrium.xtol')
    _finite_pos(eq.residual_rtol, 'equilibrium.residual_rtol')

    ser = config.series
    valid_fields = {f.name for f in dataclasses.fields(EpidemiologySection)}
    for key, values in ser.sweep.items():
        _require(key in valid_fields,
                 f"series.sweep key '{key}' is not a parameter; "
                 f"valid keys: {sorted(valid_fields)}")
        _require(isinstance(values, list) and len(values) > 0,
                 f"series.sweep['{key}'] must be a non-empty list")
    _require(ser.initial_infected >= 1,
             f"series.initial_infected must be >= 1, got {ser.initial_infected}")


def validate_leap(leap: LeapSection) -> None:
    """Validate tau-leaping controls."""
    _finite_pos(leap.epsilon, 'leap.epsilon')
    _require(leap.epsilon < 1, f"leap.epsilon must be < 1, got {leap.epsilon}")
    _require(leap.critical_threshold >= 0,
             f"leap.critical_threshold must be >= 0, got {leap.critical_threshold}")
    _finite_nonneg(leap.exact_threshold, 'leap.exact_threshold')
    _require(leap.exact_steps >= 1,
             f"leap.exact_steps must be >= 1, got {leap.exact_steps}")
    _finite_pos(leap.rate_order, 'leap.rate_order')
    _require(leap.max_tau > 0, f"leap.max_tau must be > 0, got {leap.max_tau}")
    _require(leap.max_retries >= 1,
             f"leap.max_retries must be >= 1, got {leap.max_retries}")


# ═══════════════════════════════════════════════════════════════════════
# ENTRY POINTS
# ═══════════════════════════════════════════════════════════════════════

def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        overrides: Optional dict of overrides (same nesting as the YAML).

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path or scenario_path doesn't exist.
        ConfigurationError: If validation fails.
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
            deep_merge(config_dict, yaml.safe_load(f) or {})

    if overrides is not None:
        deep_merge(config_dict, copy.deepcopy(overrides))

    config = config_from_dict(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config


def with_parameters(params: EpidemiologySection, **changes) -> EpidemiologySection:
    """Copy of ``params`` with some fields replaced.

    Raises:
        ConfigurationError: If a field name is unknown.
    """
    valid_fields = {f.name for f in dataclasses.fields(EpidemiologySection)}
    unknown = set(changes) - valid_fields
    if unknown:
        raise ConfigurationError(f"Unknown parameter(s): {sorted(unknown)}")
    return dataclasses.replace(copy.deepcopy(params), **changes)
