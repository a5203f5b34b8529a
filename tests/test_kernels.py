"""Tests for the red-black smoothing and residual kernels."""

import numpy as np
import pytest

from Pressure import BoundaryConfig, BoundaryKind, Field, NumbaKernel, NumPyKernel
from Pressure.boundary import mirror_sign
from Pressure.kernels import wall_diagonals


def colour_mask(grid):
    k, j, i = np.meshgrid(
        np.arange(grid.kmax), grid.j0 + np.arange(grid.jmax), grid.i0 + np.arange(grid.imax),
        indexing="ij",
    )
    return (k + j + i) % 2


def setup_problem(grid, bc, seed=0):
    rng = np.random.default_rng(seed)
    x = Field(grid, "x")
    b = Field(grid, "b")
    x.interior[...] = rng.standard_normal(grid.local_shape)
    b.interior[...] = rng.standard_normal(grid.local_shape)
    x.exchange(BoundaryKind.BOTTOP, bc)
    return x, b


def signs(bc):
    return (mirror_sign(bc.bottom), mirror_sign(bc.top))


@pytest.fixture(params=[NumPyKernel, NumbaKernel], ids=["numpy", "numba"])
def kernel(request):
    return request.param()


class TestSmoothColor:
    @pytest.mark.parametrize("color", [0, 1])
    def test_only_one_colour_updated(self, make_grid, kernel, color):
        grid = make_grid(8, 8, 8)
        bc = BoundaryConfig()
        x, b = setup_problem(grid, bc)
        before = x.interior.copy()

        kernel.smooth_color(x.view, b.view, grid, color, signs(bc))

        changed = x.interior != before
        mask = colour_mask(grid)
        assert changed[mask == color].all()
        assert not changed[mask != color].any()

    def test_no_same_colour_dependency(self, make_grid, kernel):
        """Updated values depend only on the other colour: scrambling the old
        values of the updated colour changes nothing away from the walls."""
        grid = make_grid(8, 8, 8)
        bc = BoundaryConfig()
        x1, b = setup_problem(grid, bc)
        x2 = x1.copy()
        red = colour_mask(grid) == 0
        x2.interior[red] = np.random.default_rng(9).standard_normal(red.sum())

        kernel.smooth_color(x1.view, b.view, grid, 0, signs(bc))
        kernel.smooth_color(x2.view, b.view, grid, 0, signs(bc))
        np.testing.assert_array_equal(x1.interior[1:-1], x2.interior[1:-1])

    @pytest.mark.parametrize(
        "bc",
        [
            BoundaryConfig(),
            BoundaryConfig("neumann", "dirichlet", 0.3, 1.0),
            BoundaryConfig("neumann", "neumann", -1.0, 2.0),
        ],
        ids=["dirichlet", "mixed", "neumann"],
    )
    def test_updated_colour_satisfies_its_equations(self, make_grid, kernel, bc):
        """After a pass, the residual vanishes on the updated colour (walls included)."""
        grid = make_grid(8, 8, 8)
        x, b = setup_problem(grid, bc)

        kernel.smooth_color(x.view, b.view, grid, 0, signs(bc))
        x.exchange(BoundaryKind.BOTTOP, bc)

        r = grid.allocate()
        NumPyKernel().residual(x.view, b.view, r, grid)
        red = colour_mask(grid) == 0
        np.testing.assert_allclose(r[grid.interior][red], 0.0, atol=1e-9)

    def test_sweeps_reduce_residual(self, make_grid, kernel):
        grid = make_grid(8, 8, 8)
        bc = BoundaryConfig()
        x, b = setup_problem(grid, bc)
        r = grid.allocate()

        norms = []
        for _ in range(5):
            for color in (0, 1):
                x.exchange(BoundaryKind.BOTTOP, bc)
                kernel.smooth_color(x.view, b.view, grid, color, signs(bc))
            x.exchange(BoundaryKind.BOTTOP, bc)
            kernel.residual(x.view, b.view, r, grid)
            norms.append(np.linalg.norm(r[grid.interior]))
        assert all(a > c for a, c in zip(norms, norms[1:]))


class TestResidual:
    def test_discrete_solution_has_zero_residual(self, make_grid, kernel):
        from Pressure import discrete_source_term

        grid = make_grid(8, 8, 8)
        bc = BoundaryConfig("dirichlet", "neumann", 1.0, -0.5)
        p = np.random.default_rng(2).standard_normal(grid.local_shape)

        x = Field(grid, "p")
        b = Field(grid, "b")
        x.interior[...] = p
        b.interior[...] = discrete_source_term(grid, p, bc)
        x.exchange(BoundaryKind.BOTTOP, bc)

        r = grid.allocate()
        kernel.residual(x.view, b.view, r, grid)
        np.testing.assert_allclose(r[grid.interior], 0.0, atol=1e-9)

    def test_constant_in_periodic_directions(self, make_grid, kernel):
        """Laplacian of a field varying only in z is its second z difference."""
        grid = make_grid(4, 4, 4)
        x = grid.allocate()
        z = (np.arange(grid.kcells) - grid.kstart + 0.5) * grid.dz
        x[...] = (z**2)[:, None, None]
        r = grid.allocate()
        kernel.residual(x, np.zeros(grid.shape), r, grid)
        np.testing.assert_allclose(r[grid.interior], -2.0)


def test_numpy_and_numba_agree(make_grid):
    grid = make_grid(8, 8, 8)
    bc = BoundaryConfig("neumann", "dirichlet", 0.0, 0.0)
    x1, b = setup_problem(grid, bc, seed=4)
    x2 = x1.copy()

    for color in (0, 1):
        NumPyKernel().smooth_color(x1.view, b.view, grid, color, signs(bc))
        NumbaKernel().smooth_color(x2.view, b.view, grid, color, signs(bc))
        x1.exchange(BoundaryKind.BOTTOP, bc)
        x2.exchange(BoundaryKind.BOTTOP, bc)
    np.testing.assert_allclose(x1.data, x2.data, rtol=1e-12, atol=1e-12)


def test_wall_diagonals_single_level(make_grid):
    """With one vertical cell both walls couple to the same row."""
    grid = make_grid(4, 4, 1)
    self_coef, denom = wall_diagonals(grid, (-1.0, 1.0))
    az = 1.0 / grid.dz**2
    assert self_coef.shape == (1,)
    assert self_coef[0] == pytest.approx(0.0)
    assert denom[0] == pytest.approx(2.0 * (1.0 / grid.dx**2 + 1.0 / grid.dy**2 + az))


def test_numba_kernel_records_threads():
    kernel = NumbaKernel(specified_numba_threads=1)
    assert kernel.observed_numba_threads == 1
    assert NumPyKernel().observed_numba_threads is None
