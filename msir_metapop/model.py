"""MSIR metapopulation model: validated bundle of network, parameters and events.

A MetapopModel is built once per experiment and is immutable afterwards;
it is shared read-only by every replicate (and pickled to worker
processes). Construction validates the whole input and raises
ConfigurationError, so no run ever starts from an invalid parameter set.

Usage:
    model = MetapopModel(build_topology('circle', 3), EpidemiologySection())
    x0 = model.index.pack(S=[999, 1000, 1000], I=[1, 0, 0])
    traj = model.simulate(x0, t_end=20.0, rng=make_rng(1), thin=0.05)
"""

from __future__ import annotations

import copy
from typing import Optional

import numpy as np

from msir_metapop.config import (
    DeterministicSection,
    EpidemiologySection,
    LeapSection,
    SimulationConfig,
    per_patch,
    with_parameters,
)
from msir_metapop.events import EventSchema, build_event_schema
from msir_metapop.leap import LeapStats, simulate
from msir_metapop.ode import integrate
from msir_metapop.rates import RateFunction, RateParameters
from msir_metapop.rng import SeedLike, make_rng
from msir_metapop.topology import topology_from_config, validate_adjacency
from msir_metapop.types import StateIndex, Trajectory, validate_state


class MetapopModel:
    """Stochastic MSIR metapopulation model with seasonal births and DDD.

    Args:
        adjacency: (n, n) 0/1 migration matrix, M[i, j] = 1 ⇔ i → j.
        params: Demographic / epidemiological parameters.

    Raises:
        ConfigurationError: Invalid adjacency or parameter set.
    """

    def __init__(self, adjacency, params: EpidemiologySection):
        adj = validate_adjacency(adjacency)
        adj.setflags(write=False)
        self.adjacency: np.ndarray = adj
        self.params: EpidemiologySection = copy.deepcopy(params)
        self.schema: EventSchema = build_event_schema(adj)
        self.rate_params: RateParameters = RateParameters.from_section(
            self.params, adj.shape[0]
        )
        self.rate_fn = RateFunction(self.schema, self.rate_params)

    @classmethod
    def from_config(cls, config: SimulationConfig) -> 'MetapopModel':
        """Model for the topology and parameter sections of a config."""
        return cls(topology_from_config(config.topology), config.parameters)

    def __repr__(self) -> str:
        return (f"MetapopModel(n_patches={self.n_patches}, "
                f"n_edges={self.schema.n_edges}, n_events={self.n_events})")

    # ── Layout ────────────────────────────────────────────────────────

    @property
    def n_patches(self) -> int:
        return self.schema.n_patches

    @property
    def n_events(self) -> int:
        return self.schema.n_events

    @property
    def index(self) -> StateIndex:
        return self.schema.index

    def check_state(self, x, integer: bool = True) -> np.ndarray:
        """Validated copy of a state vector for this model.

        Raises:
            ConfigurationError: Wrong length, negative or (integer=True) fractional.
        """
        return validate_state(x, self.index, integer=integer)

    # ── Dynamics ──────────────────────────────────────────────────────

    def rates(self, x, t: float) -> np.ndarray:
        """Event rates at state x and time t, in schema order."""
        return self.rate_fn(x, t)

    def simulate(
        self,
        x0,
        t_end: float,
        rng: SeedLike = None,
        thin: Optional[float] = None,
        leap: Optional[LeapSection] = None,
        stats: Optional[LeapStats] = None,
    ) -> Trajectory:
        """One stochastic trajectory (adaptive tau-leaping).

        Args:
            x0: (4n,) initial counts.
            t_end: End time (yr).
            rng: Generator, SeedSequence or int seed owned by this run.
            thin: Optional resampling interval (yr).
            leap: Step-size controls.
            stats: Optional LeapStats to fill.
        """
        return simulate(self.rate_fn, self.schema, x0, t_end, make_rng(rng),
                        leap=leap, thin=thin, stats=stats)

    def integrate(
        self,
        x0,
        t_end: float,
        settings: Optional[DeterministicSection] = None,
        dt: Optional[float] = None,
    ) -> Trajectory:
        """Mean-field ODE solution (real-valued states)."""
        return integrate(self.rate_fn, self.schema, x0, t_end,
                         settings=settings, dt=dt)

    def isolated_patch(self, patch: int) -> 'MetapopModel':
        """Single-patch model with ``patch``'s parameters and no migration."""
        if not 0 <= patch < self.n_patches:
            raise IndexError(f"patch {patch} out of range for {self.n_patches} patches")
        n = self.n_patches
        p = self.params
        single = with_parameters(
            p,
            carrying_capacity=float(per_patch(p.carrying_capacity, n)[patch]),
            pulse_tightness=float(per_patch(p.pulse_tightness, n)[patch]),
            pulse_phase=float(per_patch(p.pulse_phase, n)[patch]),
        )
        return MetapopModel(np.zeros((1, 1), dtype=bool), single)
