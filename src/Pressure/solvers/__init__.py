"""Pressure solvers.

- MultigridSolver: geometric multigrid V-cycles with red-black smoothing
- SpectralCoarseSolver / SmootherCoarseSolver: coarsest-level solves
"""

from .base import BaseSolver
from .coarse import SmootherCoarseSolver, SpectralCoarseSolver
from .multigrid import MultigridSolver

__all__ = [
    "BaseSolver",
    "MultigridSolver",
    "SpectralCoarseSolver",
    "SmootherCoarseSolver",
]
