"""Test problems for the pressure solver.

Arrays returned here are shaped like the owned block (kmax, jmax, imax) of
the given Grid and use its global offsets, so the same call gives each rank
its own piece of the global problem.
"""

import numpy as np

from .datastructures import BoundaryConfig, BoundaryKind
from .field import Field
from .kernels import NumPyKernel


def sinusoidal_exact_solution(grid) -> np.ndarray:
    """p = cos(2 pi x / X) cos(2 pi y / Y) sin(pi z / Z): periodic in x, y, zero at both walls."""
    z, y, x = grid.cell_centers()
    return (
        np.cos(2 * np.pi * x / grid.xsize)
        * np.cos(2 * np.pi * y / grid.ysize)
        * np.sin(np.pi * z / grid.zsize)
    )


def sinusoidal_source_term(grid) -> np.ndarray:
    """Continuous Laplacian of :func:`sinusoidal_exact_solution`."""
    k2 = (
        (2 * np.pi / grid.xsize) ** 2
        + (2 * np.pi / grid.ysize) ** 2
        + (np.pi / grid.zsize) ** 2
    )
    return -k2 * sinusoidal_exact_solution(grid)


def discrete_source_term(grid, p: np.ndarray, bc: BoundaryConfig = None) -> np.ndarray:
    """Discrete 7-point Laplacian of ``p`` with wall rule ``bc``.

    Solving with this right-hand side recovers ``p`` up to the solver
    tolerance, independent of discretization error.
    """
    bc = bc or BoundaryConfig()
    x = Field(grid, "p")
    x.interior[...] = p
    x.exchange(BoundaryKind.BOTTOP, bc)

    zero = np.zeros(grid.shape)
    r = np.zeros(grid.shape)
    NumPyKernel().residual(x.view, zero, r, grid)
    return -r[grid.interior]


def point_source(grid, index=None, value: float = 1.0) -> np.ndarray:
    """Single nonzero cell at global ``index`` = (k, j, i) (default: domain centre)."""
    if index is None:
        index = (grid.ktot // 2, grid.jtot // 2, grid.itot // 2)
    k, j, i = index

    b = np.zeros(grid.local_shape)
    jj, ii = j - grid.j0, i - grid.i0
    if 0 <= jj < grid.jmax and 0 <= ii < grid.imax:
        b[k, jj, ii] = value
    return b
