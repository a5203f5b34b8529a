"""Base class for solvers."""

from abc import ABC, abstractmethod

import numpy as np
from mpi4py import MPI

from ..datastructures import GlobalMetrics, LocalMetrics


class BaseSolver(ABC):
    """Abstract base for distributed pressure solvers.

    Holds the metrics containers and timing accumulators, and the MPI hooks
    (timing, reductions, root check) every solver step goes through.
    """

    def __init__(self, grid, tolerance: float = 1e-8, max_iter: int = 50):
        self.grid = grid
        self.tolerance = tolerance
        self.max_iter = max_iter

        self.comm = grid.topology.cart_comm
        self.rank = grid.topology.mpiid

        # Metrics containers (match datastructures.py naming)
        self.metrics = GlobalMetrics()
        self.timeseries = LocalMetrics()

        # Timing accumulators
        self._time_compute = 0.0
        self._time_halo = 0.0
        self._time_coarse = 0.0

    @abstractmethod
    def solve(self, rhs=None, x0=None) -> GlobalMetrics:
        """Execute the solver. Returns results."""
        pass

    def warmup(self, warmup_size: int = 10):
        """Warmup kernel (trigger Numba JIT if used)."""
        self.kernel.warmup(warmup_size=warmup_size)

    def residual_norm(self, r) -> float:
        """Global RMS norm of the owned block of residual Field ``r``."""
        interior = r.interior
        local_sum_sq, local_pts = self._reduce_sum([np.sum(interior**2), float(interior.size)])
        return float(np.sqrt(local_sum_sq / local_pts))

    def global_mean(self, f) -> float:
        """Mean over all owned cells of Field ``f``."""
        interior = f.interior
        total, count = self._reduce_sum([np.sum(interior), float(interior.size)])
        return float(total / count)

    # ========================================================================
    # MPI hooks
    # ========================================================================

    def _get_time(self) -> float:
        """Get current time using MPI.Wtime()."""
        return MPI.Wtime()

    def _reduce_sum(self, values) -> np.ndarray:
        """Reduce a small vector via MPI Allreduce."""
        return self.grid.sum_all(values)

    def _is_root(self) -> bool:
        """Only rank 0 logs metrics."""
        return self.rank == 0

    def _barrier(self):
        """Synchronize all ranks before timing."""
        if self.comm is not None:
            self.comm.Barrier()

    # ========================================================================
    # Bookkeeping
    # ========================================================================

    def _reset(self):
        """Reset timers, timeseries and metrics."""
        self._time_compute = 0.0
        self._time_halo = 0.0
        self._time_coarse = 0.0
        self.timeseries.clear()
        self.metrics = GlobalMetrics()

    def _finalize(self, wall_time: float):
        """Finalize metrics after solve."""
        self.metrics.wall_time = wall_time
        self.metrics.final_residual = (
            self.timeseries.residual_history[-1] if self.timeseries.residual_history else None
        )
        self.metrics.total_compute_time = self._time_compute
        self.metrics.total_halo_time = self._time_halo
        self.metrics.total_coarse_time = self._time_coarse

    def _result_row(self) -> dict:
        """Flat config + metrics row for the results table."""
        return {"n_ranks": self.grid.topology.nprocs, **self.metrics.to_mlflow()}

    def save_hdf5(self, path, extra: dict = None):
        """Save config, results, and timeseries to HDF5 (rank 0 only).

        ``extra`` adds columns to the results row (e.g. solution diagnostics).
        """
        if not self._is_root():
            return

        import pandas as pd
        import warnings
        from dataclasses import asdict

        df_results = pd.DataFrame([{**self._result_row(), **(extra or {})}])

        # Convert string columns to avoid PyTables pickle warning
        for col in df_results.select_dtypes(include=["object"]).columns:
            df_results[col] = df_results[col].astype(str)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", pd.errors.PerformanceWarning)
            df_results.to_hdf(path, key="results", mode="w", format="table")

            # Save timeseries data for per-cycle analysis
            ts_data = {k: v for k, v in asdict(self.timeseries).items() if v}
            if ts_data:
                max_len = max(len(v) for v in ts_data.values())
                # Pad shorter lists with NaN
                for k, v in ts_data.items():
                    if len(v) < max_len:
                        ts_data[k] = v + [float("nan")] * (max_len - len(v))
                pd.DataFrame(ts_data).to_hdf(path, key="timeseries", mode="a", format="table")
