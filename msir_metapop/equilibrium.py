"""Disease-free seasonal cycle of each patch, used for initial conditions.

In a patch without infection or migration only S changes:

    dS/dt = [b(t) - d - dd·S] · S / λ

With a seasonal birth pulse there is no fixed point, but there is a stable
one-year cycle. The cycle's value at t = 0 is the S0 for which integrating
one year returns to S0; it is found by bounded 1-D minimisation of
(S(1) - S0)² over [0.5 K, 1.5 K] (``scipy.optimize.minimize_scalar``).
Patches are independent and may be solved in parallel.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from scipy.optimize import minimize_scalar

from msir_metapop.config import DeterministicSection, EquilibriumSection
from msir_metapop.errors import ConfigurationError, SimulationError
from msir_metapop.model import MetapopModel
from msir_metapop.replicates import ProgressCallback, run_tasks
from msir_metapop.types import Compartment


class EquilibriumError(SimulationError):
    """No one-year demographic cycle found inside the search bracket.

    Attributes:
        patch: Patch index.
        best: Best S0 found (NaN if the search could not start).
        residual: |S(1) - S0| at ``best``.
    """

    def __init__(self, message: str, patch: int,
                 best: float = math.nan, residual: float = math.nan):
        super().__init__(message)
        self.message = message
        self.patch = patch
        self.best = best
        self.residual = residual

    def __reduce__(self):
        return (self.__class__, (self.message, self.patch, self.best, self.residual))


@dataclass
class EquilibriumResult:
    """Solution of the cycle search for one patch."""
    patch: int
    S0: float                  # Population at t = 0 on the annual cycle
    residual: float            # |S(1) - S0|
    carrying_capacity: float
    n_evaluations: int


def annual_return(single: MetapopModel, S0: float,
                  settings: Optional[DeterministicSection] = None) -> float:
    """S(1) after one year of disease-free dynamics in a one-patch model."""
    x0 = single.index.pack(S=S0, dtype=np.float64)
    traj = single.integrate(x0, 1.0, settings=settings, dt=1.0)
    return float(traj.final_state[single.index.index(Compartment.S, 0)])


def patch_equilibrium(
    model: MetapopModel,
    patch: int,
    search: Optional[EquilibriumSection] = None,
    settings: Optional[DeterministicSection] = None,
) -> EquilibriumResult:
    """Find S0 on the disease-free annual cycle of one patch.

    Args:
        model: Full model; only ``patch``'s demographic parameters are used.
        patch: Patch index.
        search: Bracket and tolerances; defaults to EquilibriumSection().
        settings: ODE controls; defaults to DeterministicSection().

    Returns:
        EquilibriumResult.

    Raises:
        EquilibriumError: Infinite K, optimiser failure, or no cycle in the
            bracket (residual above ``residual_rtol`` · S0).
    """
    search = search if search is not None else EquilibriumSection()
    single = model.isolated_patch(patch)
    K = float(single.rate_params.carrying_capacity[0])
    if not math.isfinite(K):
        raise EquilibriumError(
            f"patch {patch}: carrying capacity is infinite, no bounded cycle",
            patch=patch,
        )

    low, high = search.bracket
    evaluations = 0

    def objective(S0: float) -> float:
        nonlocal evaluations
        evaluations += 1
        return (annual_return(single, S0, settings) - S0) ** 2

    res = minimize_scalar(
        objective,
        bounds=(low * K, high * K),
        method='bounded',
        options={'xatol': search.xtol},
    )
    best = float(res.x)
    residual = math.sqrt(float(res.fun))
    if not res.success:
        raise EquilibriumError(
            f"patch {patch}: optimiser failed ({res.message})",
            patch=patch, best=best, residual=residual,
        )
    if residual > search.residual_rtol * best:
        raise EquilibriumError(
            f"patch {patch}: no annual cycle in [{low * K:.6g}, {high * K:.6g}]; "
            f"best S0={best:.6g} misses by {residual:.3g}",
            patch=patch, best=best, residual=residual,
        )
    return EquilibriumResult(patch=patch, S0=best, residual=residual,
                             carrying_capacity=K, n_evaluations=evaluations)


def _patch_task(args) -> EquilibriumResult:
    model, patch, search, settings = args
    return patch_equilibrium(model, patch, search, settings)


def equilibrium_sizes(
    model: MetapopModel,
    search: Optional[EquilibriumSection] = None,
    settings: Optional[DeterministicSection] = None,
    workers: int = 1,
    progress_callback: Optional[ProgressCallback] = None,
) -> np.ndarray:
    """S0 on the disease-free annual cycle for every patch.

    Returns:
        (n,) float array.

    Raises:
        EquilibriumError: For the first patch whose search fails.
    """
    tasks = [(model, i, search, settings) for i in range(model.n_patches)]
    results: List[EquilibriumResult] = run_tasks(
        _patch_task, tasks, workers=workers, progress_callback=progress_callback
    )
    return np.array([r.S0 for r in results])


def initial_state(
    model: MetapopModel,
    sizes,
    infected: int = 1,
    seed_patch: int = 0,
) -> np.ndarray:
    """Integer start state: patch sizes in S, ``infected`` moved to I in seed_patch.

    Args:
        model: Model defining the layout.
        sizes: (n,) population sizes (e.g. from equilibrium_sizes); rounded.
        infected: Initial infectious individuals.
        seed_patch: Patch receiving the infections.

    Raises:
        ConfigurationError: If sizes has the wrong length or the seed patch
            is too small.
    """
    S = np.round(np.asarray(sizes, dtype=np.float64)).astype(np.int64)
    if S.shape != (model.n_patches,):
        raise ConfigurationError(
            f"sizes must have one value per patch ({model.n_patches}), got {S.shape}"
        )
    if not 0 <= seed_patch < model.n_patches:
        raise ConfigurationError(f"seed_patch {seed_patch} out of range")
    if infected < 0 or S[seed_patch] < infected:
        raise ConfigurationError(
            f"cannot seed {infected} infections in patch {seed_patch} of size {S[seed_patch]}"
        )
    I = np.zeros_like(S)
    S[seed_patch] -= infected
    I[seed_patch] = infected
    return model.check_state(model.index.pack(S=S, I=I))
