"""MSIR-Metapop: stochastic metapopulation model of infection dynamics.

A discrete-state, continuous-time Markov model of an MSIR infection
circulating in a network of patches with:
  - Seasonal (Gaussian-like) birth pulses, normalised to unit annual mean
  - Density-dependent mortality bounding each patch near its carrying capacity
  - Maternal transfer of antibodies (M compartment) from recovered mothers
  - Directional migration of all four compartments along network edges

Simulated with adaptive tau-leaping; the mean-field ODE locates the
disease-free seasonal cycle used to initialise simulations.
"""

__version__ = "0.1.0"

from msir_metapop.errors import ConfigurationError, SimulationError  # noqa: F401
from msir_metapop.model import MetapopModel  # noqa: F401
from msir_metapop.types import Compartment, StateIndex, Trajectory  # noqa: F401
