"""Tests for the pencil transposes on a single rank."""

import numpy as np
import pytest

from Pressure import CommunicationError, ConfigurationError, Field, Pencil, Transposer


@pytest.fixture
def grid(make_grid):
    return make_grid(8, 6, 4)


@pytest.fixture
def z_data(grid):
    return np.random.default_rng(0).standard_normal(grid.local_shape)


class TestLayouts:
    def test_shapes(self, grid):
        t = grid.transposer
        assert t.layout_shape(Pencil.Z) == (4, 6, 8)
        assert t.layout_shape(Pencil.X) == (4, 6, 8)
        assert t.layout_shape("y") == (4, 6, 8)

    def test_transposer_is_cached(self, grid):
        assert grid.transposer is grid.transposer

    def test_allocate_dtype(self, grid):
        arr = grid.transposer.allocate(Pencil.Y, np.complex128)
        assert arr.dtype == np.complex128
        assert not arr.any()


class TestRoutes:
    """On one rank each route is a pure relayout: values are unchanged."""

    def test_z_to_x_and_back(self, grid, z_data):
        t = grid.transposer
        xp = t.allocate(Pencil.X)
        t.to_x_pencil(xp, z_data)
        np.testing.assert_array_equal(xp, z_data)

        back = t.allocate(Pencil.Z)
        t.to_z_pencil(back, xp)
        np.testing.assert_array_equal(back, z_data)

    def test_x_to_y_and_back(self, grid, z_data):
        t = grid.transposer
        yp = t.allocate(Pencil.Y)
        t.to_y_pencil(yp, z_data)
        xp = t.allocate(Pencil.X)
        t.from_y_pencil(xp, yp)
        np.testing.assert_array_equal(xp, z_data)

    @pytest.mark.parametrize(
        "src, dst",
        [(Pencil.Z, Pencil.Y), (Pencil.Y, Pencil.Z), (Pencil.X, Pencil.X), (Pencil.Z, Pencil.X)],
    )
    def test_generic_transpose(self, grid, z_data, src, dst):
        t = grid.transposer
        out = t.allocate(dst)
        t.transpose(out, z_data, src, dst)
        np.testing.assert_array_equal(out, z_data)

    def test_complex_round_trip(self, grid, z_data):
        t = grid.transposer
        src = z_data + 1j * z_data[::-1]
        yp = t.allocate(Pencil.Y, np.complex128)
        t.transpose(yp, src, Pencil.Z, Pencil.Y)
        back = t.allocate(Pencil.Z, np.complex128)
        t.transpose(back, yp, Pencil.Y, Pencil.Z)
        np.testing.assert_array_equal(back, src)

    def test_field_is_read_from_its_owned_block(self, grid, z_data):
        f = Field(grid, "s")
        f.interior[...] = z_data
        f.boundary_cyclic()
        xp = grid.transposer.allocate(Pencil.X)
        grid.transposer.to_x_pencil(xp, f)
        np.testing.assert_array_equal(xp, z_data)

    def test_field_as_destination(self, grid, z_data):
        f = Field(grid, "s")
        grid.transposer.transpose(f, z_data, Pencil.X, Pencil.Z)
        np.testing.assert_array_equal(f.interior, z_data)
        assert not f.view[0].any()

    def test_buffers_reused_per_route_and_dtype(self, grid, z_data):
        t = grid.transposer
        xp = t.allocate(Pencil.X)
        t.to_x_pencil(xp, z_data)
        t.to_x_pencil(xp, z_data)
        t.to_x_pencil(t.allocate(Pencil.X, np.complex128), z_data.astype(np.complex128))
        assert sorted(key[0] for key in t._buffers) == ["zx", "zx"]
        assert t.time >= 0.0


class TestErrors:
    def test_wrong_array_shape(self, grid):
        t = grid.transposer
        with pytest.raises(CommunicationError, match="x-pencil shape"):
            t.to_x_pencil(np.zeros((4, 6, 7)), np.zeros(grid.local_shape))

    def test_field_from_other_grid(self, grid, make_grid):
        other = Field(make_grid(4, 4, 4), "other")
        with pytest.raises(ConfigurationError, match="global extents"):
            grid.transposer.to_x_pencil(grid.transposer.allocate(Pencil.X), other)

    def test_field_as_x_pencil(self, grid):
        f = Field(grid, "s")
        with pytest.raises(ConfigurationError, match="z pencils"):
            grid.transposer.to_z_pencil(grid.transposer.allocate(Pencil.Z), f)

    def test_direct_construction(self, grid):
        t = Transposer(grid)
        assert (t.kblock, t.iblock) == (4, 8)
