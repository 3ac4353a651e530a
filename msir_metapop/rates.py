"""Event rates (propensities) of the MSIR metapopulation model.

Single-patch demography (time in years, λ = life span):

    births:  b(t) · N / λ                   (b = seasonal pulse, <b> = 1)
    deaths:  (d + dd · N) · N / λ           (dd = 1/K; K = 1/dd when d = 0)

so <N> = (1 - d) / dd on average. Infection is frequency dependent within
a patch, β S I / N, with β = R0 (γ + 1/λ) so that R0 = β / (γ + 1/λ).
A fraction rho of the offspring of recovered mothers is born into M and
loses protection at rate η = 1 / maternal_period. Every compartment
migrates along every outgoing edge at per-capita rate μ.

Rates are returned in the event order of events.build_event_schema and
are valid for real-valued (mean-field) states as well as integer counts.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from msir_metapop.birth_pulse import BirthPulse
from msir_metapop.config import EpidemiologySection, per_patch, validate_parameters
from msir_metapop.errors import ConfigurationError, SimulationError
from msir_metapop.events import EventSchema
from msir_metapop.types import Compartment


# ═══════════════════════════════════════════════════════════════════════
# DERIVED RATE PARAMETERS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class RateParameters:
    """Rates derived once from an EpidemiologySection.

    Attributes:
        n_patches: Number of patches.
        life_span: λ (yr).
        death_rate: d, density-independent death rate.
        dd: (n,) density-dependent death coefficients (1/K; 0 where K = inf).
        pulse: Per-patch seasonal birth pulse.
        beta: Transmission rate R0 · (1/IP + 1/λ).
        gamma: Recovery rate 1/IP.
        rho: Probability of maternal antibody transfer.
        eta: Waning rate 1/maternal_period.
        mu: Migration rate per edge.
    """
    n_patches: int
    life_span: float
    death_rate: float
    dd: np.ndarray
    pulse: BirthPulse
    beta: float
    gamma: float
    rho: float
    eta: float
    mu: float

    @classmethod
    def from_section(cls, params: EpidemiologySection, n_patches: int) -> 'RateParameters':
        """Validate ``params`` for ``n_patches`` and derive every rate.

        Raises:
            ConfigurationError: If the parameter set is invalid.
        """
        validate_parameters(params, n_patches)
        K = per_patch(params.carrying_capacity, n_patches, 'carrying_capacity')
        s = per_patch(params.pulse_tightness, n_patches, 'pulse_tightness')
        tau = per_patch(params.pulse_phase, n_patches, 'pulse_phase')
        gamma = 1.0 / params.infectious_period
        dd = 1.0 / K
        dd.setflags(write=False)
        return cls(
            n_patches=n_patches,
            life_span=float(params.life_span),
            death_rate=float(params.death_rate),
            dd=dd,
            pulse=BirthPulse(s, tau),
            beta=float(params.R0) * (gamma + 1.0 / params.life_span),
            gamma=gamma,
            rho=float(params.rho),
            eta=1.0 / params.maternal_period,
            mu=float(params.migration_rate),
        )

    @property
    def carrying_capacity(self) -> np.ndarray:
        """(n,) K = 1/dd, inf where dd = 0."""
        with np.errstate(divide='ignore'):
            return 1.0 / self.dd


# ═══════════════════════════════════════════════════════════════════════
# RATE FUNCTION
# ═══════════════════════════════════════════════════════════════════════

def compute_rates(x, t: float, params: RateParameters, schema: EventSchema) -> np.ndarray:
    """Rate of every event at state x and time t.

    Args:
        x: (4n,) state vector (integer counts or real-valued).
        t: Time (yr).
        params: Derived rate parameters.
        schema: Event schema of the same network.

    Returns:
        (n_events,) float64 rates in schema order.
    """
    x = np.asarray(x, dtype=np.float64)
    S, I, R, M = schema.index.split(x)
    N = S + I + R + M
    blocks = schema.blocks
    rates = np.empty(schema.n_events, dtype=np.float64)

    # Births: every individual reproduces; rho of R-mothers' young are born into M
    b = params.pulse(t) / params.life_span
    maternal = params.rho * R
    rates[blocks['birth_S']] = b * (N - maternal)
    rates[blocks['birth_M']] = b * maternal

    # Deaths: same per-capita rate for all compartments in a patch
    per_capita = (params.death_rate + N * params.dd) / params.life_span
    rates[blocks['death']] = np.tile(per_capita, len(Compartment)) * x

    # Frequency-dependent transmission; empty patches have no infection
    force = np.zeros_like(N)
    np.divide(params.beta * S * I, N, out=force, where=N > 0)
    rates[blocks['infection']] = force

    rates[blocks['recovery']] = params.gamma * I
    rates[blocks['waning']] = params.eta * M

    if schema.n_edges:
        src = schema.edges[:, 0]
        for c, counts in zip(Compartment, (S, I, R, M)):
            rates[blocks[f'migration_{c.name}']] = params.mu * counts[src]

    return rates


class RateFunction:
    """Rate function bound to one schema and parameter set.

    Picklable, so it can be shipped to worker processes.
    """

    def __init__(self, schema: EventSchema, params: RateParameters):
        if params.n_patches != schema.n_patches:
            raise ConfigurationError(
                f"parameters are for {params.n_patches} patches, "
                f"schema for {schema.n_patches}"
            )
        self.schema = schema
        self.params = params

    def __call__(self, x, t: float) -> np.ndarray:
        return compute_rates(x, t, self.params, self.schema)


def check_rates(rates: np.ndarray, t: float) -> None:
    """Abort on non-finite or negative rates.

    Raises:
        SimulationError: If any rate is NaN, infinite or negative.
    """
    if not np.all(np.isfinite(rates)):
        bad = np.flatnonzero(~np.isfinite(rates)).tolist()
        raise SimulationError(f"non-finite rates at t={t:.6g} for events {bad}")
    if np.any(rates < 0):
        bad = np.flatnonzero(rates < 0).tolist()
        raise SimulationError(f"negative rates at t={t:.6g} for events {bad}")
