"""Red-black Gauss-Seidel and residual kernels for the 7-point Laplacian.

Simple kernel implementations - halo exchange and tracking are handled by the
solver. Arrays are 3-D views (kcells, jcells, icells) including halos; only
owned cells are written.

Cell colour is the parity of the global index sum ``(i_g + j_g + k) % 2``, so
red and black cells interleave consistently across rank boundaries.

The wall rows couple to their own ghost cell (ghost = a + s * x, with s = -1
for Dirichlet and +1 for Neumann). The smoother solves for that coupling
exactly: ``wall_signs`` gives s at the bottom and top wall.
"""

from typing import Tuple

import numpy as np
import numba
from numba import njit, prange


def stencil_coefficients(grid) -> Tuple[float, float, float]:
    """Inverse squared spacings (ax, ay, az) of the 7-point operator."""
    return 1.0 / grid.dx**2, 1.0 / grid.dy**2, 1.0 / grid.dz**2


def wall_diagonals(grid, wall_signs: Tuple[float, float]):
    """Per-level self-coupling and divisor of the point update, shape (kmax,)."""
    ax, ay, az = stencil_coefficients(grid)
    self_coef = np.zeros(grid.kmax)
    self_coef[0] -= wall_signs[0] * az
    self_coef[-1] -= wall_signs[1] * az
    denom = 2.0 * (ax + ay + az) + self_coef
    return self_coef, denom


@njit(parallel=True)
def _smooth_color_numba(x, b, ks, js, is_, nk, nj, ni, parity0, color, ax, ay, az, self_coef, denom):
    """Numba JIT implementation of one red-black colour pass."""
    for kk in prange(nk):
        k = ks + kk
        for jj in range(nj):
            j = js + jj
            start = (color + parity0 + kk + jj) % 2
            for ii in range(start, ni, 2):
                i = is_ + ii
                nb = (
                    ax * (x[k, j, i + 1] + x[k, j, i - 1])
                    + ay * (x[k, j + 1, i] + x[k, j - 1, i])
                    + az * (x[k + 1, j, i] + x[k - 1, j, i])
                )
                x[k, j, i] = (nb + self_coef[kk] * x[k, j, i] - b[k, j, i]) / denom[kk]


@njit(parallel=True)
def _residual_numba(x, b, r, ks, js, is_, nk, nj, ni, ax, ay, az):
    """Numba JIT implementation of r = b - A x."""
    for kk in prange(nk):
        k = ks + kk
        for jj in range(nj):
            j = js + jj
            for ii in range(ni):
                i = is_ + ii
                c = x[k, j, i]
                lap = (
                    ax * (x[k, j, i + 1] + x[k, j, i - 1] - 2.0 * c)
                    + ay * (x[k, j + 1, i] + x[k, j - 1, i] - 2.0 * c)
                    + az * (x[k + 1, j, i] + x[k - 1, j, i] - 2.0 * c)
                )
                r[k, j, i] = b[k, j, i] - lap


class NumPyKernel:
    """NumPy-based red-black kernel.

    Each colour is updated as four strided sub-lattices (of the eight
    (k, j, i) parity classes), each one vectorized.
    """

    def __init__(self, specified_numba_threads: int = 1):
        self.observed_numba_threads = None  # Not applicable for NumPy

    def smooth_color(self, x, b, grid, color: int, wall_signs=(0.0, 0.0)):
        """Update all owned cells of one colour in place."""
        ax, ay, az = stencil_coefficients(grid)
        self_coef, denom = wall_diagonals(grid, wall_signs)
        ks, ke = grid.kstart, grid.kend
        js, je = grid.jstart, grid.jend
        is_, ie = grid.istart, grid.iend
        parity0 = (grid.i0 + grid.j0) % 2

        for ok in (0, 1):
            for oj in (0, 1):
                for oi in (0, 1):
                    if (parity0 + ok + oj + oi) % 2 != color:
                        continue

                    def s(dk, dj, di):
                        return (
                            slice(ks + ok + dk, ke + dk, 2),
                            slice(js + oj + dj, je + dj, 2),
                            slice(is_ + oi + di, ie + di, 2),
                        )

                    c = s(0, 0, 0)
                    nb = (
                        ax * (x[s(0, 0, 1)] + x[s(0, 0, -1)])
                        + ay * (x[s(0, 1, 0)] + x[s(0, -1, 0)])
                        + az * (x[s(1, 0, 0)] + x[s(-1, 0, 0)])
                    )
                    sc = self_coef[ok::2, None, None]
                    dn = denom[ok::2, None, None]
                    x[c] = (nb + sc * x[c] - b[c]) / dn

    def residual(self, x, b, r, grid):
        """r = b - A x on owned cells."""
        ax, ay, az = stencil_coefficients(grid)
        ks, ke = grid.kstart, grid.kend
        js, je = grid.jstart, grid.jend
        is_, ie = grid.istart, grid.iend

        c = x[ks:ke, js:je, is_:ie]
        lap = (
            ax * (x[ks:ke, js:je, is_ + 1:ie + 1] + x[ks:ke, js:je, is_ - 1:ie - 1] - 2.0 * c)
            + ay * (x[ks:ke, js + 1:je + 1, is_:ie] + x[ks:ke, js - 1:je - 1, is_:ie] - 2.0 * c)
            + az * (x[ks + 1:ke + 1, js:je, is_:ie] + x[ks - 1:ke - 1, js:je, is_:ie] - 2.0 * c)
        )
        r[ks:ke, js:je, is_:ie] = b[ks:ke, js:je, is_:ie] - lap

    def warmup(self, warmup_size: int = 10):
        """No-op for NumPy kernel."""
        pass


class NumbaKernel:
    """Numba JIT-compiled red-black kernel."""

    def __init__(self, specified_numba_threads: int = 1):
        # Set requested threads (may be clamped by NUMBA_NUM_THREADS env var)
        if specified_numba_threads is not None:
            numba.set_num_threads(specified_numba_threads)

        # Record what Numba actually reports
        self.observed_numba_threads = numba.get_num_threads()

    def smooth_color(self, x, b, grid, color: int, wall_signs=(0.0, 0.0)):
        """Update all owned cells of one colour in place."""
        ax, ay, az = stencil_coefficients(grid)
        self_coef, denom = wall_diagonals(grid, wall_signs)
        _smooth_color_numba(
            x, b, grid.kstart, grid.jstart, grid.istart,
            grid.kmax, grid.jmax, grid.imax,
            (grid.i0 + grid.j0) % 2, color, ax, ay, az, self_coef, denom,
        )

    def residual(self, x, b, r, grid):
        """r = b - A x on owned cells."""
        ax, ay, az = stencil_coefficients(grid)
        _residual_numba(
            x, b, r, grid.kstart, grid.jstart, grid.istart,
            grid.kmax, grid.jmax, grid.imax, ax, ay, az,
        )

    def warmup(self, warmup_size: int = 10):
        """Trigger JIT compilation with a small problem."""
        n = warmup_size + 2
        x = np.zeros((n, n, n), dtype=np.float64)
        b = np.random.randn(n, n, n)
        r = np.zeros_like(x)
        self_coef = np.zeros(warmup_size)
        denom = np.full(warmup_size, 6.0)
        for color in (0, 1):
            _smooth_color_numba(
                x, b, 1, 1, 1, warmup_size, warmup_size, warmup_size,
                0, color, 1.0, 1.0, 1.0, self_coef, denom,
            )
        _residual_numba(x, b, r, 1, 1, 1, warmup_size, warmup_size, warmup_size, 1.0, 1.0, 1.0)
