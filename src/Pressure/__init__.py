"""Distributed pressure solver package.

Pressure-projection core of a finite-difference LES code: the discrete
Poisson equation for the pressure is solved with geometric multigrid on a
domain decomposed over an ``npx x npy`` MPI process grid (z is never
decomposed). Horizontal boundaries are periodic; bottom and top walls are
Dirichlet or Neumann.

Components
----------
- Topology, Grid: process layout, local extents, halos, coarsening
- Field: flat buffer with halos on a Grid
- boundary / mpi.halo: cyclic halo exchange and vertical wall rules
- mpi.transpose: z-, x- and y-pencil transposes
- MultigridSolver: red-black smoothing, restriction, prolongation, coarse solve
- SolverDriver: the per-session entry point
"""

from .datastructures import (
    BoundaryConfig,
    BoundaryKind,
    GlobalMetrics,
    GridConfig,
    LocalMetrics,
    MultigridConfig,
    MultigridLevel,
    RankGeometry,
    RestrictionWeighting,
    SolverStatus,
    VerticalBC,
)
from .errors import CommunicationError, ConfigurationError, PressureError
from .mpi import Grid, Pencil, Topology, Transposer
from .field import Field
from .boundary import exchange
from .kernels import NumbaKernel, NumPyKernel
from .solvers import MultigridSolver, SmootherCoarseSolver, SpectralCoarseSolver
from .driver import PressureSolution, SolveRecord, SolverDriver
from .problems import (
    discrete_source_term,
    point_source,
    sinusoidal_exact_solution,
    sinusoidal_source_term,
)

__all__ = [
    # Data structures
    "BoundaryConfig",
    "BoundaryKind",
    "GlobalMetrics",
    "GridConfig",
    "LocalMetrics",
    "MultigridConfig",
    "MultigridLevel",
    "RankGeometry",
    "RestrictionWeighting",
    "SolverStatus",
    "VerticalBC",
    # Errors
    "PressureError",
    "ConfigurationError",
    "CommunicationError",
    # Grid and communication
    "Topology",
    "Grid",
    "Field",
    "exchange",
    "Pencil",
    "Transposer",
    # Kernels
    "NumPyKernel",
    "NumbaKernel",
    # Solvers
    "MultigridSolver",
    "SpectralCoarseSolver",
    "SmootherCoarseSolver",
    "SolverDriver",
    "PressureSolution",
    "SolveRecord",
    # Problem setup
    "sinusoidal_exact_solution",
    "sinusoidal_source_term",
    "discrete_source_term",
    "point_source",
]
