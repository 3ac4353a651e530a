"""Mean-field (deterministic) counterpart of the jump process.

Replacing every event count by its expectation gives

    dx/dt = V · a(x, t)

where V is the (4n, n_events) matrix whose columns are the event effect
vectors and a is the rate function evaluated at the real-valued state.
Integrated with ``scipy.integrate.solve_ivp``; ``max_step`` keeps the
solver from stepping over a sharp birth pulse.
"""

from __future__ import annotations

import math
from typing import Callable, Optional

import numpy as np
from scipy.integrate import solve_ivp

from msir_metapop.config import DeterministicSection
from msir_metapop.errors import ConfigurationError, SimulationError
from msir_metapop.events import EventSchema
from msir_metapop.types import Trajectory, regular_grid, validate_state

RateCallable = Callable[[np.ndarray, float], np.ndarray]


def mean_field_derivative(rate_fn: RateCallable, stoichiometry: np.ndarray):
    """Right-hand side f(t, x) = V · a(x, t) for solve_ivp."""
    def rhs(t, x):
        return stoichiometry @ rate_fn(x, t)
    return rhs


def integrate(
    rate_fn: RateCallable,
    schema: EventSchema,
    x0,
    t_end: float,
    settings: Optional[DeterministicSection] = None,
    dt: Optional[float] = None,
) -> Trajectory:
    """Solve the mean-field ODE from 0 to t_end.

    Args:
        rate_fn: Callable (x, t) → rates in schema order.
        schema: Event schema of the same network.
        x0: (4n,) initial state; non-negative, may be fractional.
        t_end: End time (yr), > 0.
        settings: Solver controls; defaults to DeterministicSection().
        dt: Output spacing; overrides settings.dt. t_end is always reported.

    Returns:
        Trajectory with float64 states on the output grid.

    Raises:
        ConfigurationError: Invalid state or time arguments.
        SimulationError: Solver failure or non-finite solution.
    """
    settings = settings if settings is not None else DeterministicSection()
    dt = settings.dt if dt is None else dt
    if not (math.isfinite(t_end) and t_end > 0):
        raise ConfigurationError(f"t_end must be a finite positive number, got {t_end!r}")
    if not dt > 0:
        raise ConfigurationError(f"dt must be > 0, got {dt!r}")

    y0 = validate_state(x0, schema.index, integer=False)
    grid = regular_grid(t_end, dt)
    t_eval = np.append(grid[grid < t_end - 1e-12 * t_end], t_end)

    sol = solve_ivp(
        mean_field_derivative(rate_fn, schema.stoichiometry),
        (0.0, t_end),
        y0,
        method=settings.method,
        t_eval=t_eval,
        rtol=settings.rtol,
        atol=settings.atol,
        max_step=settings.max_step,
    )
    if not sol.success:
        raise SimulationError(f"mean-field integration failed: {sol.message}")
    if not np.all(np.isfinite(sol.y)):
        raise SimulationError("mean-field integration produced non-finite values")

    return Trajectory(times=sol.t, states=sol.y.T, index=schema.index)
