"""Coarsest-level solvers.

Both work in residual-correction form: r = b - A x is formed with the
level's own boundary rule, A_h e = r is solved with the homogeneous rule,
and e is added to x.

SpectralCoarseSolver
    Direct solve. The horizontal directions are periodic, so the discrete
    Laplacian is diagonalized by FFTs in x (on x pencils) and y (on y
    pencils); what remains is one tridiagonal system in z per horizontal
    wavenumber, solved by the Thomas algorithm on z pencils.

SmootherCoarseSolver
    Repeated red-black sweeps until the residual has dropped by
    ``coarse_tolerance`` or ``coarse_max_sweeps`` is reached.
"""

from __future__ import annotations

import logging

import numpy as np

from ..boundary import mirror_sign
from ..mpi.transpose import Pencil

log = logging.getLogger(__name__)


def thomas(lower: float, diag: np.ndarray, upper: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    """Solve many tridiagonal systems at once along axis 0.

    ``diag``, ``upper`` and ``rhs`` have shape (n, ...); ``lower`` is a
    constant sub-diagonal. ``upper[-1]`` is ignored.
    """
    n = diag.shape[0]
    cp = np.empty_like(diag)
    dp = np.empty_like(rhs)

    cp[0] = upper[0] / diag[0]
    dp[0] = rhs[0] / diag[0]
    for k in range(1, n):
        m = diag[k] - lower * cp[k - 1]
        cp[k] = upper[k] / m
        dp[k] = (rhs[k] - lower * dp[k - 1]) / m

    x = np.empty_like(rhs)
    x[-1] = dp[-1]
    for k in range(n - 2, -1, -1):
        x[k] = dp[k] - cp[k] * x[k + 1]
    return x


class SpectralCoarseSolver:
    """FFT (x, y) + tridiagonal (z) direct solver on one Grid."""

    name = "spectral"

    def __init__(self, grid, bc):
        self.grid = grid
        self.bc = bc.homogeneous()
        self.transposer = grid.transposer  # raises ConfigurationError if no pencils
        t = self.transposer

        # Complex work arrays, one per layout
        self._x_pencil = t.allocate(Pencil.X, np.complex128)
        self._y_pencil = t.allocate(Pencil.Y, np.complex128)
        self._z_pencil = t.allocate(Pencil.Z, np.complex128)

        # Horizontal eigenvalues of the owned wavenumbers in the z layout
        mx = grid.i0 + np.arange(grid.imax)
        my = grid.j0 + np.arange(grid.jmax)
        lam_x = (2.0 * np.cos(2.0 * np.pi * mx / grid.itot) - 2.0) / grid.dx**2
        lam_y = (2.0 * np.cos(2.0 * np.pi * my / grid.jtot) - 2.0) / grid.dy**2
        lam = lam_y[:, None] + lam_x[None, :]

        az = 1.0 / grid.dz**2
        self._az = az
        self._diag = np.empty((grid.ktot, grid.jmax, grid.imax))
        self._diag[:] = -2.0 * az + lam
        self._diag[0] += mirror_sign(self.bc.bottom) * az
        self._diag[-1] += mirror_sign(self.bc.top) * az
        self._upper = np.full_like(self._diag, az)

        # Neumann at both walls: the (0, 0) mode is singular, pin its first row
        self._pin = None
        if self.bc.singular:
            mask = (my[:, None] == 0) & (mx[None, :] == 0)
            if mask.any():
                self._pin = mask
                self._diag[0][mask] = 1.0
                self._upper[0][mask] = 0.0

    @staticmethod
    def supports(grid) -> bool:
        """True if both pencil layouts exist for ``grid``."""
        topo = grid.topology
        return grid.ktot % topo.npx == 0 and grid.itot % topo.npy == 0

    def solve(self, lvl, solver):
        """Correct ``lvl.x`` in place so that the level residual vanishes."""
        solver.residual(lvl)
        e = self.apply_inverse(lvl.r.interior)
        lvl.x.interior[...] += e

    def apply_inverse(self, rhs: np.ndarray) -> np.ndarray:
        """Return e with A_h e = rhs (homogeneous walls), both in the z layout."""
        t = self.transposer
        xp, yp, zp = self._x_pencil, self._y_pencil, self._z_pencil

        # Forward: FFT in x, then in y
        zp[...] = rhs
        t.to_x_pencil(xp, zp)
        xp[...] = np.fft.fft(xp, axis=2)
        t.to_y_pencil(yp, xp)
        yp[...] = np.fft.fft(yp, axis=1)
        t.from_y_pencil(xp, yp)
        t.to_z_pencil(zp, xp)

        # Tridiagonal solve per horizontal wavenumber
        if self._pin is not None:
            zp[0][self._pin] = 0.0
        zp[...] = thomas(self._az, self._diag, self._upper, zp)

        # Backward: inverse FFT in y, then in x
        t.to_x_pencil(xp, zp)
        t.to_y_pencil(yp, xp)
        yp[...] = np.fft.ifft(yp, axis=1)
        t.from_y_pencil(xp, yp)
        xp[...] = np.fft.ifft(xp, axis=2)
        t.to_z_pencil(zp, xp)
        return zp.real.copy()


class SmootherCoarseSolver:
    """Iterated red-black smoothing on the coarsest level."""

    name = "smoother"

    def __init__(self, tolerance: float = 1e-3, max_sweeps: int = 500):
        self.tolerance = tolerance
        self.max_sweeps = max_sweeps
        self.last_sweeps = 0

    def solve(self, lvl, solver):
        solver.residual(lvl)
        r0 = solver.residual_norm(lvl.r)
        if r0 == 0.0:
            self.last_sweeps = 0
            return

        sweep = 0
        for sweep in range(1, self.max_sweeps + 1):
            solver.smooth(lvl)
            solver.residual(lvl)
            if solver.residual_norm(lvl.r) <= self.tolerance * r0:
                break
        else:
            log.debug(f"Coarse smoother stopped at max_sweeps={self.max_sweeps}")
        self.last_sweeps = sweep
