"""Exception types shared across the simulation engine."""


class ConfigurationError(ValueError):
    """Invalid parameter set, topology or initial state.

    Raised before any simulation work starts.
    """


class SimulationError(RuntimeError):
    """Fatal numerical failure during a run (NaN rates, unrecoverable leap, ODE failure)."""
