"""Seasonal birth pulse.

Per-capita birth-rate multiplier with unit annual mean:

    b(t) = exp(-s · sin²(π (t - τ))) / c(s),    c(s) = e^{-s/2} I₀(s/2)

  - period exactly 1 year (sin² has period π)
  - ∫₀¹ b(t) dt = 1 for every s (c(s) is the exact yearly integral)
  - s = 0: b ≡ 1 (aseasonal reproduction)
  - s → ∞: mass concentrates at t = τ (mod 1), peak height ≈ sqrt(π s)

c(s) is evaluated with the exponentially scaled Bessel function
``scipy.special.i0e`` which stays finite for very large s.
"""

from __future__ import annotations

from typing import Union

import numpy as np
from scipy.special import i0e

ArrayLike = Union[float, np.ndarray]


def pulse_normalisation(s: ArrayLike) -> np.ndarray:
    """Yearly integral of exp(-s·sin²(π t)), i.e. e^{-s/2} I₀(s/2)."""
    return i0e(0.5 * np.asarray(s, dtype=np.float64))


def birth_pulse(t: ArrayLike, s: ArrayLike, tau: ArrayLike) -> np.ndarray:
    """Normalised birth-rate multiplier at time t (years).

    Args:
        t: Time(s); any real value.
        s: Pulse tightness (>= 0), scalar or per-patch array.
        tau: Phase (time of peak), scalar or per-patch array.

    Returns:
        Array broadcast from t, s and tau; non-negative with unit annual mean.
    """
    s = np.asarray(s, dtype=np.float64)
    phase = np.sin(np.pi * np.mod(np.asarray(t, dtype=np.float64) - tau, 1.0))
    return np.exp(-s * phase * phase) / pulse_normalisation(s)


class BirthPulse:
    """Birth pulse bound to per-patch (s, τ), with the normaliser precomputed."""

    def __init__(self, s: ArrayLike, tau: ArrayLike):
        self.s = np.atleast_1d(np.asarray(s, dtype=np.float64)).copy()
        self.tau = np.broadcast_to(
            np.asarray(tau, dtype=np.float64), self.s.shape
        ).copy()
        self._norm = pulse_normalisation(self.s)

    def __call__(self, t: float) -> np.ndarray:
        phase = np.sin(np.pi * np.mod(t - self.tau, 1.0))
        return np.exp(-self.s * phase * phase) / self._norm

    def __repr__(self) -> str:
        return f"BirthPulse(s={self.s.tolist()}, tau={self.tau.tolist()})"
