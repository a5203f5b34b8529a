"""Geometric multigrid V-cycle solver for the pressure Poisson equation."""

import logging
from typing import List

import numpy as np

from .base import BaseSolver
from .coarse import SmootherCoarseSolver, SpectralCoarseSolver
from .multigrid_operators import prolong_add, restrict
from ..boundary import boundary_even, mirror_sign
from ..datastructures import (
    BoundaryConfig,
    BoundaryKind,
    GlobalMetrics,
    MultigridConfig,
    MultigridLevel,
    SolverStatus,
)
from ..field import Field
from ..kernels import NumbaKernel, NumPyKernel

log = logging.getLogger(__name__)


class MultigridSolver(BaseSolver):
    """Distributed multigrid solver for ``lap(p) = b``.

    Horizontal boundaries are periodic, vertical walls follow ``bc``. The
    hierarchy is built once: every level halves all three extents of the
    previous Grid until a local extent would become odd or zero, or until
    ``config.max_levels`` is reached.

    Parameters
    ----------
    grid : Grid
        Finest grid.
    bc : BoundaryConfig
        Vertical wall conditions of the finest level. Coarse levels solve the
        correction equation with the homogeneous rule.
    config : MultigridConfig
        Cycle and coarse-solve settings.

    Example
    -------
    >>> solver = MultigridSolver(grid, BoundaryConfig(), MultigridConfig(tolerance=1e-10))
    >>> metrics = solver.solve(rhs)
    >>> p = solver.solution.interior
    """

    def __init__(self, grid, bc: BoundaryConfig = None, config: MultigridConfig = None):
        self.bc = bc or BoundaryConfig()
        self.config = config or MultigridConfig()
        super().__init__(grid, tolerance=self.config.tolerance, max_iter=self.config.max_cycles)

        self.status = SolverStatus.IDLE

        # Initialize kernel (single kernel for all levels)
        self._init_kernel()

        # Build grid hierarchy
        self.levels: List[MultigridLevel] = []
        self._build_hierarchy()
        self.n_levels = len(self.levels)

        self.coarse_solver = self._init_coarse_solver()

        if self._is_root():
            log.info(
                f"Multigrid: {self.n_levels} levels, finest {grid.global_shape}, "
                f"coarsest {self.levels[-1].grid.global_shape}, "
                f"coarse solver '{self.coarse_solver.name}'"
            )

    def _init_kernel(self):
        """Initialize the smoothing/residual kernel."""
        if self.config.use_numba:
            self.kernel = NumbaKernel(specified_numba_threads=self.config.numba_threads)
        else:
            self.kernel = NumPyKernel()

    def _build_hierarchy(self):
        """Coarsen the finest grid and allocate x, b, r on every level."""
        grids = [self.grid]
        max_levels = self.config.max_levels
        while grids[-1].can_coarsen() and (max_levels is None or len(grids) < max_levels):
            grids.append(grids[-1].coarsen())

        for level, grid in enumerate(grids):
            bc = self.bc if level == 0 else self.bc.homogeneous()
            self.levels.append(
                MultigridLevel(
                    level=level,
                    grid=grid,
                    x=Field(grid, f"x{level}"),
                    b=Field(grid, f"b{level}"),
                    r=Field(grid, f"r{level}"),
                    bc=bc,
                )
            )

    def _init_coarse_solver(self):
        """Pick the coarsest-level solver ('auto' prefers the spectral one)."""
        coarsest = self.levels[-1]
        kind = self.config.coarse_solver
        if kind == "auto":
            kind = "spectral" if SpectralCoarseSolver.supports(coarsest.grid) else "smoother"

        if kind == "spectral":
            return SpectralCoarseSolver(coarsest.grid, coarsest.bc)
        return SmootherCoarseSolver(self.config.coarse_tolerance, self.config.coarse_max_sweeps)

    @property
    def solution(self) -> Field:
        """Finest-level solution Field."""
        return self.levels[0].x

    # ========================================================================
    # Solve
    # ========================================================================

    def solve(self, rhs=None, x0=None) -> GlobalMetrics:
        """Run V-cycles on ``lap(x) = rhs`` until converged or ``max_cycles``.

        ``rhs`` and ``x0`` may be Fields on the finest grid or arrays shaped
        like its owned block. Without ``rhs`` the current finest ``b`` is used;
        without ``x0`` the iteration starts from zero.
        """
        self._reset()
        finest = self.levels[0]

        if rhs is not None:
            finest.b.interior[...] = rhs.interior if isinstance(rhs, Field) else rhs
        if x0 is not None:
            finest.x.interior[...] = x0.interior if isinstance(x0, Field) else x0
        else:
            finest.x.fill(0.0)

        if self.bc.singular:
            # Only rhs with the mean set by the wall fluxes is solvable
            target = (self.bc.top_value - self.bc.bottom_value) / self.grid.zsize
            finest.b.interior[...] += target - self.global_mean(finest.b)

        self._barrier()  # Sync all ranks before timing
        t_start = self._get_time()

        self.residual(finest)
        residual = self.residual_norm(finest.r)
        self.metrics.initial_residual = residual
        self.timeseries.residual_history.append(residual)

        best_residual = residual
        best_x = finest.x.data.copy()
        cycles = 0

        while residual >= self.tolerance and cycles < self.max_iter:
            t_cycle = self._get_time()
            halo_before = self._time_halo
            self.v_cycle(0)
            cycles += 1

            if self.bc.singular:
                finest.x.interior[...] -= self.global_mean(finest.x)

            self.residual(finest)
            residual = self.residual_norm(finest.r)
            self.timeseries.residual_history.append(residual)
            self.timeseries.cycle_times.append(self._get_time() - t_cycle)
            self.timeseries.halo_times.append(self._time_halo - halo_before)

            if residual < best_residual:
                best_residual = residual
                np.copyto(best_x, finest.x.data)

            if self._is_root():
                log.debug(f"Cycle {cycles}: residual={residual:.3e}")

        if residual > best_residual:
            np.copyto(finest.x.data, best_x)
            residual = best_residual

        self.metrics.converged = residual < self.tolerance
        self.metrics.cycles = cycles
        self.metrics.n_levels = self.n_levels

        if self.metrics.converged:
            self.status = SolverStatus.CONVERGED
        else:
            self.status = SolverStatus.ITERATION_LIMIT_REACHED
            if self._is_root():
                log.warning(
                    f"Multigrid did not converge: residual {residual:.3e} >= "
                    f"tolerance {self.tolerance:.1e} after {cycles} cycles"
                )
        self.metrics.status = self.status

        wall_time = self._get_time() - t_start
        self._finalize(wall_time)
        self.metrics.final_residual = residual

        if self._is_root():
            log.info(
                f"Solve done: {cycles} cycles, residual {self.metrics.initial_residual:.2e} -> "
                f"{residual:.2e}, {wall_time:.3f}s"
            )
        return self.metrics

    def v_cycle(self, level: int):
        """Recursive V-cycle starting at ``level``."""
        lvl = self.levels[level]

        # Base case: coarsest level
        if level == self.n_levels - 1:
            self.status = SolverStatus.COARSE_SOLVE
            t0 = self._get_time()
            self.coarse_solver.solve(lvl, self)
            self._time_coarse += self._get_time() - t0
            return

        # Pre-smoothing
        self.status = SolverStatus.SMOOTHING
        for _ in range(self.config.n_pre_smooth):
            self.smooth(lvl)

        # Restriction of the residual
        self.residual(lvl)
        self.status = SolverStatus.RESTRICTING
        next_lvl = self.levels[level + 1]
        self.restrict(lvl, next_lvl)

        # Recurse
        self.v_cycle(level + 1)

        # Prolongation and correction
        self.status = SolverStatus.PROLONGING
        self.prolong(next_lvl, lvl)

        # Post-smoothing
        self.status = SolverStatus.SMOOTHING
        for _ in range(self.config.n_post_smooth):
            self.smooth(lvl)

    # ========================================================================
    # Level operations
    # ========================================================================

    def _sync_halos(self, field: Field, lvl: MultigridLevel) -> float:
        """Fill all ghost cells of ``field`` with the level's boundary rule."""
        halo_time = field.exchange(BoundaryKind.BOTTOP, lvl.bc)
        self._time_halo += halo_time
        return halo_time

    @staticmethod
    def _wall_signs(lvl: MultigridLevel):
        return (mirror_sign(lvl.bc.bottom), mirror_sign(lvl.bc.top))

    def smooth(self, lvl: MultigridLevel):
        """One red-black sweep (halo exchange before each colour)."""
        signs = self._wall_signs(lvl)
        for color in (0, 1):
            self._sync_halos(lvl.x, lvl)
            t0 = self._get_time()
            self.kernel.smooth_color(lvl.x.view, lvl.b.view, lvl.grid, color, signs)
            self._time_compute += self._get_time() - t0

    def residual(self, lvl: MultigridLevel):
        """r = b - A x on the owned cells of ``lvl``."""
        self._sync_halos(lvl.x, lvl)
        t0 = self._get_time()
        self.kernel.residual(lvl.x.view, lvl.b.view, lvl.r.view, lvl.grid)
        self._time_compute += self._get_time() - t0

    def restrict(self, fine: MultigridLevel, coarse: MultigridLevel):
        """Restrict the fine residual into the coarse rhs; zero the coarse guess."""
        r = fine.r.view
        self._time_halo += fine.grid.boundary_cyclic(r)
        boundary_even(r, fine.grid)

        t0 = self._get_time()
        restrict(r, coarse.b.view, fine.grid, coarse.grid, self.config.weighting)
        self._time_compute += self._get_time() - t0
        if coarse.bc.singular:
            # Homogeneous Neumann correction equation: rhs must have zero mean
            coarse.b.interior[...] -= self.global_mean(coarse.b)
        coarse.x.fill(0.0)

    def prolong(self, coarse: MultigridLevel, fine: MultigridLevel):
        """Interpolate the coarse correction and add it to the fine solution."""
        self._sync_halos(coarse.x, coarse)
        t0 = self._get_time()
        prolong_add(coarse.x.view, fine.x.view, coarse.grid, fine.grid)
        self._time_compute += self._get_time() - t0

    # ========================================================================
    # Results
    # ========================================================================

    def _result_row(self) -> dict:
        g = self.grid
        return {
            "itot": g.itot,
            "jtot": g.jtot,
            "ktot": g.ktot,
            "npx": g.topology.npx,
            "npy": g.topology.npy,
            "halo_exchange": g.halo_exchange_type,
            "coarse_solver_used": self.coarse_solver.name,
            "status": self.status.value,
            **self.config.to_mlflow(),
            **self.bc.to_mlflow(),
            **super()._result_row(),
        }
