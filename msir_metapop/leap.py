"""Adaptive tau-leaping for the MSIR metapopulation jump process.

Approximate stochastic simulation after Cao, Gillespie & Petzold
(J. Chem. Phys. 124:044109, 2006; 126:224101, 2007), the scheme used by
the R package ``adaptivetau``:

  1. Rates a(x, t); Σa = 0 means no event can ever fire again (absorbed).
  2. An event is CRITICAL if it has positive rate and consumes from a
     compartment holding fewer than ``critical_threshold`` individuals.
  3. Candidate leap τ′ over non-critical events bounds the expected change
     (and its standard deviation) of every affected compartment by
     max(ε·x/g, 1), so each rate changes by at most ~ε relative.
  4. If τ′ covers fewer than ``exact_threshold`` expected events, run a
     burst of exact Gillespie steps instead.
  5. Otherwise τ″ ~ Exp(Σ critical rates); τ = min(τ′, τ″); non-critical
     events fire Poisson(a·τ) times and one critical event fires when
     τ″ ≤ τ′. A leap that drives any count negative is discarded and τ′
     halved.

Rates are frozen over each step, including the seasonal birth pulse.
Counts stay integer and non-negative at every recorded step.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from msir_metapop.config import LeapSection, validate_leap
from msir_metapop.errors import ConfigurationError, SimulationError
from msir_metapop.events import EventSchema
from msir_metapop.rates import check_rates
from msir_metapop.types import Trajectory, validate_state

RateCallable = Callable[[np.ndarray, float], np.ndarray]


@dataclass
class LeapStats:
    """Step counters for one run (filled in when passed to ``simulate``)."""
    n_leaps: int = 0           # Accepted tau-leaps
    n_exact: int = 0           # Exact (single-event) steps
    n_rejected: int = 0        # Leaps discarded for negative counts
    absorbed: bool = False     # Run stopped early: all rates zero
    t_absorbed: float = math.nan


# ═══════════════════════════════════════════════════════════════════════
# STEP SIZE SELECTION
# ═══════════════════════════════════════════════════════════════════════

def critical_events(rates: np.ndarray, x: np.ndarray, consumes: np.ndarray,
                    threshold: int) -> np.ndarray:
    """Boolean mask of events that could exhaust a compartment.

    Every effect entry is ±1, so an event is critical when it consumes from
    a compartment with fewer than ``threshold`` individuals.
    """
    if threshold <= 0:
        return np.zeros(len(rates), dtype=bool)
    scarce = x < threshold
    return (rates > 0) & consumes[:, scarce].any(axis=1)


def leap_candidate(rates: np.ndarray, x: np.ndarray, effects: np.ndarray,
                   noncritical: np.ndarray, epsilon: float,
                   rate_order: float) -> float:
    """Largest leap keeping the relative change of every rate below ~epsilon.

    Compartments considered: those consumed by an active non-critical event,
    plus occupied compartments they feed into (all rates depend on patch
    totals through density-dependent death and frequency-dependent contact).

    Returns:
        Candidate τ′ (inf if no non-critical event is active).
    """
    active = noncritical & (rates > 0)
    if not active.any():
        return math.inf
    v = effects[active].astype(np.float64)
    a = rates[active]
    drift = v.T @ a
    variance = (v * v).T @ a
    considered = (v < 0).any(axis=0) | ((x > 0) & (variance > 0))
    if not considered.any():
        return math.inf

    bound = np.maximum(epsilon * x[considered] / rate_order, 1.0)
    drift = np.abs(drift[considered])
    variance = variance[considered]
    with np.errstate(divide='ignore', invalid='ignore'):
        tau_drift = np.where(drift > 0, bound / drift, np.inf)
        tau_var = np.where(variance > 0, bound * bound / variance, np.inf)
    return float(min(tau_drift.min(), tau_var.min()))


# ═══════════════════════════════════════════════════════════════════════
# STEPS
# ═══════════════════════════════════════════════════════════════════════

def _pick_event(rates: np.ndarray, rng: np.random.Generator) -> int:
    """Index of one event drawn with probability proportional to its rate."""
    cumulative = np.cumsum(rates)
    j = int(np.searchsorted(cumulative, rng.random() * cumulative[-1], side='right'))
    return min(j, len(rates) - 1)


def _try_leap(
    rates: np.ndarray,
    critical: np.ndarray,
    tau_candidate: float,
    remaining: float,
    x: np.ndarray,
    effects: np.ndarray,
    rng: np.random.Generator,
) -> Optional[Tuple[float, np.ndarray, bool]]:
    """One leap attempt.

    Returns:
        (tau, new_state, reached_end), or None if any count went negative.
    """
    critical_total = rates[critical].sum()
    tau_critical = (rng.exponential(1.0 / critical_total)
                    if critical_total > 0 else math.inf)

    fire_critical = tau_critical <= tau_candidate
    tau = tau_critical if fire_critical else tau_candidate
    reached_end = tau >= remaining
    if reached_end:
        tau = remaining
        fire_critical = False

    counts = np.zeros(len(rates), dtype=np.int64)
    noncritical = ~critical
    counts[noncritical] = rng.poisson(rates[noncritical] * tau)
    if fire_critical:
        crit_idx = np.flatnonzero(critical)
        counts[crit_idx[_pick_event(rates[crit_idx], rng)]] += 1

    x_new = x + counts @ effects
    if np.any(x_new < 0):
        return None
    return tau, x_new, reached_end


def _exact_burst(
    rate_fn: RateCallable,
    effects: np.ndarray,
    x: np.ndarray,
    t: float,
    t_end: float,
    rates: np.ndarray,
    n_steps: int,
    rng: np.random.Generator,
    times: List[float],
    states: List[np.ndarray],
    stats: LeapStats,
) -> Tuple[float, np.ndarray, bool]:
    """Up to n_steps exact Gillespie events starting from precomputed rates.

    Returns:
        (t, x, absorbed). t == t_end when the horizon was reached.
    """
    for step in range(n_steps):
        if step > 0:
            rates = rate_fn(x, t)
            check_rates(rates, t)
        total = rates.sum()
        if total <= 0:
            return t, x, True
        dt = rng.exponential(1.0 / total)
        if t + dt >= t_end:
            return t_end, x, False
        x = x + effects[_pick_event(rates, rng)]
        t = t + dt
        times.append(t)
        states.append(x)
        stats.n_exact += 1
    return t, x, False


# ═══════════════════════════════════════════════════════════════════════
# DRIVER
# ═══════════════════════════════════════════════════════════════════════

def simulate(
    rate_fn: RateCallable,
    schema: EventSchema,
    x0,
    t_end: float,
    rng: np.random.Generator,
    leap: Optional[LeapSection] = None,
    thin: Optional[float] = None,
    stats: Optional[LeapStats] = None,
) -> Trajectory:
    """Simulate one trajectory from 0 to t_end by adaptive tau-leaping.

    Args:
        rate_fn: Callable (x, t) → rates in schema order.
        schema: Event schema (effect vectors).
        x0: (4n,) initial state, non-negative integer counts.
        t_end: End time (yr), > 0.
        rng: Random stream owned by this run.
        leap: Step-size controls; defaults to LeapSection().
        thin: If given, resample the trajectory every ``thin`` years.
        stats: Optional LeapStats filled with step counters.

    Returns:
        Trajectory starting at (0, x0). Ends at t_end, or at the time of
        the last event if the process is absorbed earlier.

    Raises:
        ConfigurationError: Invalid state, t_end, thin or leap controls.
        SimulationError: Non-finite/negative rates or an unrecoverable leap.
    """
    leap = leap if leap is not None else LeapSection()
    validate_leap(leap)
    if not (isinstance(t_end, (int, float, np.integer, np.floating))
            and math.isfinite(t_end) and t_end > 0):
        raise ConfigurationError(f"t_end must be a finite positive number, got {t_end!r}")
    if thin is not None and not thin > 0:
        raise ConfigurationError(f"thin must be > 0 or None, got {thin!r}")
    if stats is None:
        stats = LeapStats()

    x = validate_state(x0, schema.index, integer=True)
    effects = np.asarray(schema.effects, dtype=np.int64)
    consumes = effects < 0

    t = 0.0
    times: List[float] = [t]
    states: List[np.ndarray] = [x.copy()]

    while t < t_end:
        rates = rate_fn(x, t)
        check_rates(rates, t)
        total = rates.sum()
        if total <= 0:
            stats.absorbed = True
            stats.t_absorbed = t
            break

        critical = critical_events(rates, x, consumes, leap.critical_threshold)
        tau_candidate = min(
            leap_candidate(rates, x, effects, ~critical, leap.epsilon, leap.rate_order),
            leap.max_tau,
        )
        exact_below = leap.exact_threshold / total

        step = None
        retries = 0
        while tau_candidate >= exact_below:
            step = _try_leap(rates, critical, tau_candidate, t_end - t, x, effects, rng)
            if step is not None:
                break
            stats.n_rejected += 1
            retries += 1
            if retries > leap.max_retries:
                raise SimulationError(
                    f"leap at t={t:.6g} still produced negative counts after "
                    f"{leap.max_retries} halvings"
                )
            tau_candidate /= 2.0

        if step is not None:
            tau, x, reached_end = step
            t = t_end if reached_end else t + tau
            times.append(t)
            states.append(x)
            stats.n_leaps += 1
            continue

        t, x, absorbed = _exact_burst(rate_fn, effects, x, t, t_end, rates,
                                      leap.exact_steps, rng, times, states, stats)
        if absorbed:
            stats.absorbed = True
            stats.t_absorbed = t
            break

    if not stats.absorbed and times[-1] < t_end:
        times.append(t_end)
        states.append(x)

    trajectory = Trajectory(times=np.asarray(times), states=np.vstack(states),
                            index=schema.index)
    if thin is not None:
        return trajectory.thin(thin, t_end)
    return trajectory
