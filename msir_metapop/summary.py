"""Extinction statistics from simulated trajectories."""

from __future__ import annotations

import math
from typing import Iterable, Optional, Sequence

import numpy as np

from msir_metapop.types import Compartment, Trajectory


def presence_matrix(traj: Trajectory) -> np.ndarray:
    """(m, n) boolean: pathogen present (I > 0) in each patch at each sample."""
    return traj.compartment(Compartment.I) > 0


def extinction_time(traj: Trajectory, patches: Optional[Sequence[int]] = None) -> float:
    """First sample time at which no selected patch has an infectious individual.

    Args:
        traj: Trajectory (thinned or not).
        patches: Patches to consider; default all (global extinction).

    Returns:
        Time of extinction, or NaN if infection persists to the last sample.
    """
    present = presence_matrix(traj)
    if patches is not None:
        present = present[:, list(patches)]
    extinct = np.flatnonzero(~present.any(axis=1))
    if extinct.size == 0:
        return math.nan
    return float(traj.times[extinct[0]])


def extinction_times(trajectories: Iterable[Trajectory],
                     patches: Optional[Sequence[int]] = None) -> np.ndarray:
    """Extinction time of every trajectory (NaN where infection persisted)."""
    return np.array([extinction_time(tr, patches) for tr in trajectories],
                    dtype=np.float64)


def persistence_curve(times: np.ndarray, grid: np.ndarray) -> np.ndarray:
    """Fraction of runs still infected at each grid time.

    Args:
        times: Extinction times (NaN = never went extinct).
        grid: Times at which to evaluate.

    Returns:
        (len(grid),) fractions in [0, 1].
    """
    times = np.asarray(times, dtype=np.float64)
    if times.size == 0:
        return np.full(len(grid), np.nan)
    ext = np.where(np.isnan(times), np.inf, times)
    return (ext[None, :] > np.asarray(grid)[:, None]).mean(axis=1)


def extinction_fraction(times: np.ndarray) -> float:
    """Fraction of runs that went extinct before the end of the simulation."""
    times = np.asarray(times, dtype=np.float64)
    if times.size == 0:
        return math.nan
    return float(np.mean(~np.isnan(times)))
