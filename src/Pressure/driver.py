"""Pressure solve session: topology, finest grid and multigrid hierarchy."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from mpi4py import MPI

from . import boundary
from .datastructures import (
    BoundaryConfig,
    BoundaryKind,
    GlobalMetrics,
    GridConfig,
    MultigridConfig,
    SolverStatus,
)
from .errors import ConfigurationError
from .field import Field
from .mpi import Grid, Topology
from .solvers import MultigridSolver

log = logging.getLogger(__name__)


@dataclass
class PressureSolution:
    """Pressure field (ghosts filled) and the metrics of the solve that produced it."""

    pressure: Field
    metrics: GlobalMetrics


@dataclass
class SolveRecord:
    """One entry of the driver's solve history."""

    index: int
    cycles: int
    initial_residual: Optional[float]
    final_residual: Optional[float]
    status: SolverStatus
    converged: bool
    residual_history: List[float]  # RMS residual before the first and after every cycle


class SolverDriver:
    """Entry point used by the time-stepping code to project a velocity field.

    Parameters
    ----------
    grid_config : GridConfig
        Global grid and process-grid layout.
    bc : BoundaryConfig, optional
        Vertical wall conditions for the pressure (default: homogeneous Dirichlet).
    mg_config : MultigridConfig, optional
        Multigrid settings.
    comm : MPI.Comm
        Communicator holding exactly ``npx * npy`` ranks.

    Example
    -------
    >>> driver = SolverDriver(GridConfig(64, 64, 32, npx=2, npy=2))
    >>> div = driver.new_field("divergence")
    >>> solution = driver.solve(div, dt=0.01)
    """

    def __init__(
        self,
        grid_config: GridConfig,
        bc: BoundaryConfig = None,
        mg_config: MultigridConfig = None,
        comm: MPI.Comm = MPI.COMM_WORLD,
    ):
        self.grid_config = grid_config
        self.bc = bc or BoundaryConfig()
        self.mg_config = mg_config or MultigridConfig()

        self.topology = Topology.create(comm, grid_config.npx, grid_config.npy)
        self.grid = Grid.from_config(grid_config, self.topology)
        self.solver = MultigridSolver(self.grid, self.bc, self.mg_config)

        self.history: List[SolveRecord] = []

    def new_field(self, name: str = "field") -> Field:
        """Zeroed Field on the finest grid."""
        return Field(self.grid, name)

    def exchange(self, field: Field, kind=BoundaryKind.CYCLIC) -> float:
        """Fill the ghost cells of ``field`` (walls use the pressure boundary rule)."""
        return boundary.exchange(field, kind, self.bc)

    def solve(self, divergence: Field, dt: float = None) -> PressureSolution:
        """Solve ``lap(p) = divergence / dt`` (``dt=None``: ``lap(p) = divergence``)."""
        if divergence.grid.global_shape != self.grid.global_shape:
            raise ConfigurationError(
                f"Divergence field '{divergence.name}' has global extents "
                f"{divergence.grid.global_shape}, driver grid is {self.grid.global_shape}"
            )
        if dt is not None and dt <= 0.0:
            raise ConfigurationError(f"dt must be positive, got {dt}")

        rhs = divergence.interior if dt is None else divergence.interior / dt
        metrics = self.solver.solve(rhs)

        pressure = self.solver.solution.copy(name="pressure")
        pressure.exchange(BoundaryKind.BOTTOP, self.bc)

        self.history.append(
            SolveRecord(
                index=len(self.history),
                cycles=metrics.cycles,
                initial_residual=metrics.initial_residual,
                final_residual=metrics.final_residual,
                status=metrics.status,
                converged=metrics.converged,
                residual_history=list(self.solver.timeseries.residual_history),
            )
        )
        return PressureSolution(pressure=pressure, metrics=metrics)
