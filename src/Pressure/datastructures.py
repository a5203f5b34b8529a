"""Data structures for solver configuration and results.

Architecture: Params (input/config) vs Metrics (output/results)

                 Params (input/config)         Metrics (output/results)
                 ─────────────────────         ────────────────────────
Global           GridConfig                    GlobalMetrics
(same across     BoundaryConfig                converged, status,
ranks)           MultigridConfig               cycles, final_residual...

Local            RankGeometry                  LocalMetrics
(per-rank)       coords, neighbors,            residual_history[],
                 local_shape...                halo_times[]...
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError


# ============================================================================
# Enumerations
# ============================================================================


class BoundaryKind(str, Enum):
    """Which ghost cells an exchange fills."""

    CYCLIC = "cyclic"  # horizontal periodic wrap only
    BOTTOP = "bottop"  # cyclic wrap plus physical bottom/top rule


class VerticalBC(str, Enum):
    """Physical boundary condition at the bottom or top wall."""

    DIRICHLET = "dirichlet"  # fixed value
    NEUMANN = "neumann"  # fixed flux (gradient)


class RestrictionWeighting(str, Enum):
    """Fine-to-coarse weighting policy."""

    INJECTION = "injection"
    HALF_WEIGHTING = "half_weighting"
    FULL_WEIGHTING = "full_weighting"


class SolverStatus(str, Enum):
    """Phase of a multigrid solve."""

    IDLE = "idle"
    SMOOTHING = "smoothing"
    RESTRICTING = "restricting"
    COARSE_SOLVE = "coarse_solve"
    PROLONGING = "prolonging"
    CONVERGED = "converged"
    ITERATION_LIMIT_REACHED = "iteration_limit_reached"


# ============================================================================
# Params
# ============================================================================


@dataclass
class GridConfig:
    """Global grid and process-grid configuration.

    Consumed once at startup. The horizontal axes are decomposed over an
    ``npx x npy`` process grid; the vertical axis is never decomposed.
    """

    itot: int
    jtot: int
    ktot: int

    # Process grid
    npx: int = 1
    npy: int = 1

    # Physical domain size
    xsize: float = 1.0
    ysize: float = 1.0
    zsize: float = 1.0

    # Halo widths
    igc: int = 1
    jgc: int = 1
    kgc: int = 1

    # "numpy" (staging buffers) | "custom" (MPI datatypes)
    halo_exchange: str = "numpy"

    def __post_init__(self):
        for name in ("itot", "jtot", "ktot", "npx", "npy"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.halo_exchange not in ("numpy", "custom"):
            raise ConfigurationError(
                f"Unknown halo_exchange: {self.halo_exchange}. Use 'numpy' or 'custom'."
            )

    def to_mlflow(self) -> dict:
        return dict(self.__dict__)


@dataclass
class BoundaryConfig:
    """Vertical boundary conditions. Horizontal boundaries are always cyclic."""

    bottom: VerticalBC = VerticalBC.DIRICHLET
    top: VerticalBC = VerticalBC.DIRICHLET
    bottom_value: float = 0.0
    top_value: float = 0.0

    def __post_init__(self):
        self.bottom = VerticalBC(self.bottom)
        self.top = VerticalBC(self.top)

    @property
    def singular(self) -> bool:
        """Neumann on both walls: the operator has a constant null space."""
        return self.bottom == VerticalBC.NEUMANN and self.top == VerticalBC.NEUMANN

    def homogeneous(self) -> "BoundaryConfig":
        """Same kinds with zero values (used for correction equations)."""
        return BoundaryConfig(self.bottom, self.top, 0.0, 0.0)

    def to_mlflow(self) -> dict:
        return {
            "bc_bottom": self.bottom.value,
            "bc_top": self.top.value,
            "bc_bottom_value": self.bottom_value,
            "bc_top_value": self.top_value,
        }


@dataclass
class MultigridConfig:
    """Multigrid configuration."""

    weighting: RestrictionWeighting = RestrictionWeighting.FULL_WEIGHTING
    n_pre_smooth: int = 2
    n_post_smooth: int = 2
    tolerance: float = 1e-8
    max_cycles: int = 50
    max_levels: Optional[int] = None  # None = coarsen as far as possible

    # Coarsest level: "auto" | "spectral" | "smoother"
    coarse_solver: str = "auto"
    coarse_tolerance: float = 1e-3  # relative residual drop for "smoother"
    coarse_max_sweeps: int = 500

    use_numba: bool = False
    numba_threads: int = 1

    def __post_init__(self):
        self.weighting = RestrictionWeighting(self.weighting)
        if self.coarse_solver not in ("auto", "spectral", "smoother"):
            raise ConfigurationError(
                f"Unknown coarse_solver: {self.coarse_solver}. "
                "Use 'auto', 'spectral' or 'smoother'."
            )
        if self.n_pre_smooth < 0 or self.n_post_smooth < 0:
            raise ConfigurationError("Smoothing sweep counts must be non-negative")
        if self.max_cycles < 1:
            raise ConfigurationError("max_cycles must be >= 1")
        if self.max_levels is not None and self.max_levels < 1:
            raise ConfigurationError("max_levels must be >= 1")
        if self.tolerance <= 0 or self.coarse_tolerance <= 0:
            raise ConfigurationError("tolerance and coarse_tolerance must be positive")
        if self.coarse_max_sweeps < 1:
            raise ConfigurationError("coarse_max_sweeps must be >= 1")

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible params dict (bools as int, enums as str)."""
        params = {}
        for k, v in self.__dict__.items():
            if isinstance(v, Enum):
                v = v.value
            elif isinstance(v, bool):
                v = int(v)
            elif v is None:
                continue
            params[k] = v
        return params


# ============================================================================
# Metrics
# ============================================================================


@dataclass
class GlobalMetrics:
    """Aggregated results of one pressure solve (identical on all ranks)."""

    converged: bool = False
    status: SolverStatus = SolverStatus.IDLE
    cycles: int = 0
    n_levels: int = 0
    initial_residual: Optional[float] = None
    final_residual: Optional[float] = None
    wall_time: Optional[float] = None

    # Timing breakdown (sum across all cycles)
    total_compute_time: Optional[float] = None
    total_halo_time: Optional[float] = None
    total_coarse_time: Optional[float] = None

    environment: str = field(
        default_factory=lambda: (
            "hpc" if os.environ.get("LSB_JOBID") or os.environ.get("SLURM_JOB_ID") else "local"
        )
    )

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible dict (no None, bools as int, no strings)."""
        out = {}
        for k, v in self.__dict__.items():
            if v is None or isinstance(v, (str, Enum)):
                continue
            out[k] = int(v) if isinstance(v, bool) else v
        return out


@dataclass
class LocalMetrics:
    """Per-solve timeseries, accumulated during the V-cycles."""

    residual_history: List[float] = field(default_factory=list)
    cycle_times: List[float] = field(default_factory=list)
    halo_times: List[float] = field(default_factory=list)

    def clear(self):
        """Clear all timeseries data."""
        self.residual_history.clear()
        self.cycle_times.clear()
        self.halo_times.clear()


# ============================================================================
# MPI Grid Geometry
# ============================================================================


@dataclass
class RankGeometry:
    """Per-rank layout information (logged by the layout check)."""

    rank: int
    coords: Tuple[int, int]
    neighbors: Dict[str, int]
    local_shape: Tuple[int, int, int]
    halo_shape: Tuple[int, int, int]
    global_start: Tuple[int, int, int]
    global_end: Tuple[int, int, int]
    hostname: str = ""


# ============================================================================
# Multigrid-specific
# ============================================================================


@dataclass
class MultigridLevel:
    """One level in the multigrid hierarchy.

    Each level pairs its own (coarsened) Grid with solution, right-hand side
    and residual Fields. ``bc`` is the physical rule on the finest level and
    its homogeneous counterpart on every coarser level.
    """

    level: int
    grid: object  # Grid
    x: object  # Field: solution (finest) or correction (coarse levels)
    b: object  # Field: right-hand side / restricted residual
    r: object  # Field: residual
    bc: BoundaryConfig
