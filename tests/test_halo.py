"""Tests for cyclic halo exchange and the vertical wall rules (single rank)."""

import numpy as np
import pytest

from Pressure import (
    BoundaryConfig,
    BoundaryKind,
    CommunicationError,
    ConfigurationError,
    Field,
    VerticalBC,
)
from Pressure.boundary import boundary_even, mirror_sign


def random_field(grid, seed=0):
    f = Field(grid, "s")
    f.interior[...] = np.random.default_rng(seed).standard_normal(grid.local_shape)
    return f


@pytest.mark.parametrize("halo_exchange", ["numpy", "custom"])
@pytest.mark.parametrize("gc", [1, 2])
class TestCyclic:
    """With one rank per axis every ghost wraps to the opposite owned edge."""

    def test_faces_wrap(self, make_grid, halo_exchange, gc):
        grid = make_grid(8, 6, 4, igc=gc, jgc=gc, kgc=1, halo_exchange=halo_exchange)
        f = random_field(grid)
        f.boundary_cyclic()
        v = f.view
        ks, ke = grid.kstart, grid.kend
        js, je, is_, ie = grid.jstart, grid.jend, grid.istart, grid.iend

        np.testing.assert_array_equal(v[ks:ke, js:je, :is_], v[ks:ke, js:je, ie - gc:ie])
        np.testing.assert_array_equal(v[ks:ke, js:je, ie:], v[ks:ke, js:je, is_:is_ + gc])
        np.testing.assert_array_equal(v[ks:ke, :js, is_:ie], v[ks:ke, je - gc:je, is_:ie])
        np.testing.assert_array_equal(v[ks:ke, je:, is_:ie], v[ks:ke, js:js + gc, is_:ie])

    def test_corners_hold_diagonal_values(self, make_grid, halo_exchange, gc):
        grid = make_grid(8, 6, 4, igc=gc, jgc=gc, kgc=1, halo_exchange=halo_exchange)
        f = random_field(grid)
        f.boundary_cyclic()
        v = f.view
        ks, ke = grid.kstart, grid.kend
        js, je, is_, ie = grid.jstart, grid.jend, grid.istart, grid.iend

        np.testing.assert_array_equal(v[ks:ke, :js, :is_], v[ks:ke, je - gc:je, ie - gc:ie])
        np.testing.assert_array_equal(v[ks:ke, je:, ie:], v[ks:ke, js:js + gc, is_:is_ + gc])

    def test_owned_cells_unchanged(self, make_grid, halo_exchange, gc):
        grid = make_grid(8, 6, 4, igc=gc, jgc=gc, kgc=1, halo_exchange=halo_exchange)
        f = random_field(grid)
        before = f.interior.copy()
        f.boundary_cyclic()
        np.testing.assert_array_equal(f.interior, before)


def test_exchangers_agree(make_grid):
    a = make_grid(8, 8, 4, igc=2, jgc=2, halo_exchange="numpy")
    b = make_grid(8, 8, 4, igc=2, jgc=2, halo_exchange="custom")
    fa, fb = random_field(a, seed=3), random_field(b, seed=3)
    fa.boundary_cyclic()
    fb.boundary_cyclic()
    np.testing.assert_array_equal(fa.view, fb.view)


def test_exchange_returns_time(make_grid):
    grid = make_grid()
    assert grid.boundary_cyclic(grid.allocate()) >= 0.0


def test_shape_mismatch_is_communication_error(make_grid):
    grid = make_grid(8, 8, 8)
    other = make_grid(4, 4, 4)
    with pytest.raises(CommunicationError, match="does not match grid shape"):
        grid.boundary_cyclic(other.allocate())


class TestBottop:
    """Vertical ghosts mirrored about the wall faces."""

    def test_dirichlet_ghost_formula(self, make_grid):
        grid = make_grid(4, 4, 6, kgc=2)
        f = random_field(grid)
        bc = BoundaryConfig(VerticalBC.DIRICHLET, VerticalBC.DIRICHLET, 1.5, -0.5)
        f.exchange(BoundaryKind.BOTTOP, bc)
        v, ks, ke = f.view, grid.kstart, grid.kend

        for g in range(2):
            np.testing.assert_allclose(v[ks - 1 - g], 2 * 1.5 - v[ks + g])
            np.testing.assert_allclose(v[ke + g], 2 * -0.5 - v[ke - 1 - g])

    def test_dirichlet_wall_value_on_face(self, make_grid):
        """Mean of the first owned cell and its ghost equals the wall value."""
        grid = make_grid(4, 4, 4)
        f = random_field(grid)
        f.exchange(BoundaryKind.BOTTOP, BoundaryConfig(bottom_value=2.0, top_value=3.0))
        v = f.view
        np.testing.assert_allclose(0.5 * (v[0] + v[1]), 2.0)
        np.testing.assert_allclose(0.5 * (v[-1] + v[-2]), 3.0)

    def test_neumann_ghost_formula(self, make_grid):
        grid = make_grid(4, 4, 6, kgc=2, zsize=3.0)
        f = random_field(grid)
        bc = BoundaryConfig(VerticalBC.NEUMANN, VerticalBC.NEUMANN, 0.25, -2.0)
        f.exchange(BoundaryKind.BOTTOP, bc)
        v, ks, ke, dz = f.view, grid.kstart, grid.kend, grid.dz

        for g in range(2):
            np.testing.assert_allclose(v[ks - 1 - g], v[ks + g] - (2 * g + 1) * 0.25 * dz)
            np.testing.assert_allclose(v[ke + g], v[ke - 1 - g] + (2 * g + 1) * -2.0 * dz)

    def test_neumann_gradient_across_wall(self, make_grid):
        grid = make_grid(4, 4, 4)
        f = random_field(grid)
        f.exchange(BoundaryKind.BOTTOP, BoundaryConfig("neumann", "dirichlet", 0.5, 0.0))
        v = f.view
        np.testing.assert_allclose((v[1] - v[0]) / grid.dz, 0.5)

    def test_bottop_covers_horizontal_ghost_columns(self, make_grid):
        """Cyclic runs first, so ghost columns also get the wall rule."""
        grid = make_grid(4, 4, 4)
        f = random_field(grid)
        f.exchange(BoundaryKind.BOTTOP, BoundaryConfig())
        v = f.view
        np.testing.assert_allclose(v[0, 0, :], -v[1, 0, :])
        np.testing.assert_array_equal(v[1, 0, 1:-1], v[1, grid.jend - 1, 1:-1])

    def test_cyclic_leaves_vertical_ghosts(self, make_grid):
        grid = make_grid(4, 4, 4)
        f = random_field(grid)
        f.exchange(BoundaryKind.CYCLIC)
        assert not f.view[0].any()
        assert not f.view[-1].any()

    def test_bottop_needs_boundary_config(self, make_grid):
        f = Field(make_grid(), "s")
        with pytest.raises(ConfigurationError, match="BoundaryConfig"):
            f.exchange(BoundaryKind.BOTTOP)

    def test_even_reflection(self, make_grid):
        grid = make_grid(4, 4, 4, kgc=2)
        arr = grid.allocate()
        arr[grid.interior] = np.random.default_rng(1).standard_normal(grid.local_shape)
        boundary_even(arr, grid)
        np.testing.assert_array_equal(arr[1], arr[2])
        np.testing.assert_array_equal(arr[0], arr[3])
        np.testing.assert_array_equal(arr[-1], arr[-4])


def test_mirror_sign():
    assert mirror_sign(VerticalBC.DIRICHLET) == -1.0
    assert mirror_sign("neumann") == 1.0
