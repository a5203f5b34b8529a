"""Exception hierarchy for the pressure solver.

Configuration and communication errors are fatal: they propagate to the
caller, which is expected to abort the run. Non-convergence is *not* an
exception; it is reported through ``SolverStatus`` on the solve result.
"""


class PressureError(Exception):
    """Base class for all pressure solver errors."""


class ConfigurationError(PressureError, ValueError):
    """Invalid grid, topology, halo or solver setup (detected at setup time)."""


class CommunicationError(PressureError, RuntimeError):
    """Halo exchange or transpose failed, or buffers do not match the grid."""
