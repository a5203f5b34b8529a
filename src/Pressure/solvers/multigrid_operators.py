"""Multigrid transfer operators for the cell-centred 3D grid.

Cell-centred alignment: coarse cell K covers fine cells 2K and 2K+1 on every
axis. Arrays include halos; the ``*0`` arguments are the first owned index
(kstart, jstart, istart) of each array and ``nk, nj, ni`` the owned coarse
extent. Halo/boundary handling is the caller's responsibility: the fine
array needs valid ghosts for full weighting, the coarse array for
prolongation.
"""

import numpy as np
from numba import njit, prange

from ..datastructures import RestrictionWeighting


@njit(parallel=True)
def restrict_injection(fine, coarse, fk0, fj0, fi0, ck0, cj0, ci0, nk, nj, ni):
    """
    Injection along the cell diagonal: mean of fine children (2K, 2J, 2I) and
    (2K+1, 2J+1, 2I+1).

    The two children have opposite red-black colour, so a residual left on one
    colour by the smoother is sampled at half weight, as half weighting does.
    """
    for K in prange(nk):
        for J in range(nj):
            for I in range(ni):
                fk, fj, fi = fk0 + 2 * K, fj0 + 2 * J, fi0 + 2 * I
                coarse[ck0 + K, cj0 + J, ci0 + I] = 0.5 * (
                    fine[fk, fj, fi] + fine[fk + 1, fj + 1, fi + 1]
                )


@njit(parallel=True)
def restrict_half_weighting(fine, coarse, fk0, fj0, fi0, ck0, cj0, ci0, nk, nj, ni):
    """Average of the 8 fine children of each coarse cell."""
    for K in prange(nk):
        for J in range(nj):
            for I in range(ni):
                fk, fj, fi = fk0 + 2 * K, fj0 + 2 * J, fi0 + 2 * I
                val = 0.0
                for a in range(2):
                    for b in range(2):
                        for c in range(2):
                            val += fine[fk + a, fj + b, fi + c]
                coarse[ck0 + K, cj0 + J, ci0 + I] = 0.125 * val


@njit(parallel=True)
def restrict_full_weighting(fine, coarse, fk0, fj0, fi0, ck0, cj0, ci0, nk, nj, ni):
    """Tensor-product (1, 3, 3, 1)/8 stencil per axis (64 fine cells)."""
    w = np.array([0.125, 0.375, 0.375, 0.125])
    for K in prange(nk):
        for J in range(nj):
            for I in range(ni):
                fk, fj, fi = fk0 + 2 * K - 1, fj0 + 2 * J - 1, fi0 + 2 * I - 1
                val = 0.0
                for a in range(4):
                    for b in range(4):
                        wab = w[a] * w[b]
                        for c in range(4):
                            val += wab * w[c] * fine[fk + a, fj + b, fi + c]
                coarse[ck0 + K, cj0 + J, ci0 + I] = val


@njit(parallel=True)
def prolong(coarse, fine, ck0, cj0, ci0, fk0, fj0, fi0, nk, nj, ni):
    """
    Trilinear interpolation prolongation (coarse -> fine), added into ``fine``.

    Fine cell 2K takes 3/4 of coarse K and 1/4 of coarse K-1, fine cell 2K+1
    takes 3/4 of K and 1/4 of K+1, per axis. ``nk, nj, ni`` is the owned
    *fine* extent.
    """
    for k in prange(nk):
        K = k // 2
        sk = 2 * (k % 2) - 1
        for j in range(nj):
            J = j // 2
            sj = 2 * (j % 2) - 1
            for i in range(ni):
                I = i // 2
                si = 2 * (i % 2) - 1
                val = 0.0
                for a in range(2):
                    wk = 0.75 if a == 0 else 0.25
                    kc = ck0 + K + a * sk
                    for b in range(2):
                        wkj = wk * (0.75 if b == 0 else 0.25)
                        jc = cj0 + J + b * sj
                        for c in range(2):
                            w = wkj * (0.75 if c == 0 else 0.25)
                            val += w * coarse[kc, jc, ci0 + I + c * si]
                fine[fk0 + k, fj0 + j, fi0 + i] += val


_RESTRICT = {
    RestrictionWeighting.INJECTION: restrict_injection,
    RestrictionWeighting.HALF_WEIGHTING: restrict_half_weighting,
    RestrictionWeighting.FULL_WEIGHTING: restrict_full_weighting,
}


def restrict(fine, coarse, fine_grid, coarse_grid, weighting=RestrictionWeighting.FULL_WEIGHTING):
    """Restrict the owned block of ``fine`` into the owned block of ``coarse``."""
    kernel = _RESTRICT[RestrictionWeighting(weighting)]
    kernel(
        fine, coarse,
        fine_grid.kstart, fine_grid.jstart, fine_grid.istart,
        coarse_grid.kstart, coarse_grid.jstart, coarse_grid.istart,
        coarse_grid.kmax, coarse_grid.jmax, coarse_grid.imax,
    )


def prolong_add(coarse, fine, coarse_grid, fine_grid):
    """Interpolate ``coarse`` and add it to the owned block of ``fine``."""
    prolong(
        coarse, fine,
        coarse_grid.kstart, coarse_grid.jstart, coarse_grid.istart,
        fine_grid.kstart, fine_grid.jstart, fine_grid.istart,
        fine_grid.kmax, fine_grid.jmax, fine_grid.imax,
    )
