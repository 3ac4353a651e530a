"""Core data types for MSIR-Metapop.

This module is the SINGLE SOURCE OF TRUTH for:
  - Compartment: the four epidemiological classes and their block order
  - StateIndex: mapping (compartment, patch) → position in the flat state vector
  - Trajectory: timestamped state samples from one run, with thinning

State vector layout (length 4n, n = number of patches):

    [S_0 .. S_{n-1} | I_0 .. I_{n-1} | R_0 .. R_{n-1} | M_0 .. M_{n-1}]

All modules go through StateIndex instead of computing block offsets.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Optional, Tuple

import numpy as np

from msir_metapop.errors import ConfigurationError


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class Compartment(IntEnum):
    """MSIR compartments, in state-vector block order.

    S → I  (frequency-dependent infection within a patch)
    I → R  (recovery, lifelong immunity)
    M → S  (waning of maternal antibodies)
    Births enter S, or M with probability rho when the mother is in R.
    """
    S = 0   # Susceptible
    I = 1   # Infectious
    R = 2   # Recovered (immune)
    M = 3   # Maternally protected


N_COMPARTMENTS = len(Compartment)


# ═══════════════════════════════════════════════════════════════════════
# STATE INDEX
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StateIndex:
    """Position map for the flat MSIR state vector of ``n_patches`` patches."""
    n_patches: int

    def __post_init__(self):
        if self.n_patches < 1:
            raise ValueError(f"n_patches must be >= 1, got {self.n_patches}")

    @property
    def size(self) -> int:
        return N_COMPARTMENTS * self.n_patches

    def index(self, compartment: int, patch: int) -> int:
        """Flat position of ``compartment`` in ``patch``."""
        compartment = Compartment(compartment)
        if not 0 <= patch < self.n_patches:
            raise IndexError(
                f"patch {patch} out of range for {self.n_patches} patches"
            )
        return int(compartment) * self.n_patches + patch

    def block(self, compartment: int) -> slice:
        """Slice selecting all patches of one compartment."""
        start = int(Compartment(compartment)) * self.n_patches
        return slice(start, start + self.n_patches)

    def split(self, x: np.ndarray) -> Tuple[np.ndarray, ...]:
        """Views (S, I, R, M) of a state vector or a (..., 4n) stack of them."""
        x = np.asarray(x)
        if x.shape[-1] != self.size:
            raise ValueError(
                f"state has length {x.shape[-1]}, expected {self.size}"
            )
        return tuple(x[..., self.block(c)] for c in Compartment)

    def totals(self, x: np.ndarray) -> np.ndarray:
        """Patch population sizes N_i = S_i + I_i + R_i + M_i."""
        S, I, R, M = self.split(x)
        return S + I + R + M

    def pack(
        self,
        S=0,
        I=0,
        R=0,
        M=0,
        dtype=np.int64,
    ) -> np.ndarray:
        """Assemble a state vector from per-patch values (scalars broadcast)."""
        x = np.zeros(self.size, dtype=dtype)
        for c, values in zip(Compartment, (S, I, R, M)):
            x[self.block(c)] = values
        return x

    def labels(self) -> List[str]:
        """Column labels 'S0', 'S1', ..., 'M{n-1}' in state order."""
        return [f"{c.name}{i}" for c in Compartment for i in range(self.n_patches)]


# ═══════════════════════════════════════════════════════════════════════
# TRAJECTORY
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class Trajectory:
    """Ordered (time, state) samples produced by one run.

    Attributes:
        times: (m,) strictly increasing sample times (years); times[0] = 0.
        states: (m, 4n) state vectors, one row per sample.
        index: StateIndex describing the state layout.
    """
    times: np.ndarray
    states: np.ndarray
    index: StateIndex

    def __post_init__(self):
        self.times = np.asarray(self.times, dtype=np.float64)
        self.states = np.atleast_2d(np.asarray(self.states))
        if self.states.shape != (len(self.times), self.index.size):
            raise ValueError(
                f"states shape {self.states.shape} does not match "
                f"{len(self.times)} times x {self.index.size} variables"
            )

    def __len__(self) -> int:
        return len(self.times)

    @property
    def n_patches(self) -> int:
        return self.index.n_patches

    @property
    def t_final(self) -> float:
        return float(self.times[-1])

    @property
    def final_state(self) -> np.ndarray:
        return self.states[-1]

    def compartment(self, compartment: int) -> np.ndarray:
        """(m, n) counts of one compartment across patches."""
        return self.states[:, self.index.block(compartment)]

    def patch_totals(self) -> np.ndarray:
        """(m, n) patch population sizes."""
        return self.index.totals(self.states)

    def state_at(self, t: float) -> np.ndarray:
        """State in force at time t (last sample with time <= t)."""
        k = int(np.searchsorted(self.times, t, side='right')) - 1
        if k < 0:
            raise ValueError(f"t={t} precedes the first sample at {self.times[0]}")
        return self.states[k]

    def thin(self, interval: float, t_end: Optional[float] = None) -> 'Trajectory':
        """Resample onto the uniform grid 0, interval, 2*interval, ... <= t_end.

        The state at grid time t is the last sample whose time is <= t
        (step interpolation). Grid points past the final sample (absorbed
        runs) carry the final state forward.

        Args:
            interval: Grid spacing (years), > 0.
            t_end: Last grid time bound; defaults to the final sample time.

        Returns:
            New Trajectory on the grid.
        """
        if not interval > 0:
            raise ValueError(f"thinning interval must be > 0, got {interval}")
        if t_end is None:
            t_end = self.t_final
        grid = regular_grid(t_end, interval)
        # Cursor into the sorted sample times for every grid point
        cursor = np.searchsorted(self.times, grid, side='right') - 1
        if cursor[0] < 0:
            raise ValueError("trajectory does not start at or before t=0")
        return Trajectory(times=grid, states=self.states[cursor].copy(),
                          index=self.index)

    def to_table(self) -> np.ndarray:
        """(m, 1 + 4n) array with the time in column 0."""
        return np.column_stack([self.times, self.states])

    def as_dict(self) -> Dict[str, np.ndarray]:
        """Column-name → array mapping ('time', 'S0', ...)."""
        out = {'time': self.times}
        for j, label in enumerate(self.index.labels()):
            out[label] = self.states[:, j]
        return out


def regular_grid(t_end: float, interval: float) -> np.ndarray:
    """Grid 0, interval, ..., k*interval with k*interval <= t_end (within 1e-9)."""
    n_steps = int(np.floor(t_end / interval + 1e-9))
    return np.arange(n_steps + 1, dtype=np.float64) * interval


def validate_state(x, index: StateIndex, integer: bool = True) -> np.ndarray:
    """Check an initial state against a layout.

    Args:
        x: Candidate state vector.
        index: Expected layout.
        integer: Require whole-number counts (stochastic runs).

    Returns:
        The state as int64 (integer=True) or float64 array.

    Raises:
        ConfigurationError: Wrong length, negative, non-finite or fractional entries.
    """
    arr = np.asarray(x, dtype=np.float64)
    if arr.ndim != 1 or arr.size != index.size:
        raise ConfigurationError(
            f"state must be a flat vector of length {index.size} "
            f"(4 x {index.n_patches} patches), got shape {arr.shape}"
        )
    if not np.all(np.isfinite(arr)) or np.any(arr < 0):
        raise ConfigurationError("state entries must be finite and non-negative")
    if integer:
        if np.any(arr != np.round(arr)):
            raise ConfigurationError("state entries must be whole numbers")
        return arr.astype(np.int64)
    return arr
