"""Tests for the SolverDriver session object (single rank)."""

import numpy as np
import pytest
from mpi4py import MPI

from Pressure import (
    BoundaryConfig,
    BoundaryKind,
    ConfigurationError,
    Field,
    Grid,
    GridConfig,
    MultigridConfig,
    SolverDriver,
    SolverStatus,
    Topology,
    discrete_source_term,
    sinusoidal_source_term,
)


@pytest.fixture
def driver():
    return SolverDriver(
        GridConfig(16, 16, 8, zsize=0.5),
        BoundaryConfig(top_value=1.0),
        MultigridConfig(tolerance=1e-9),
        comm=MPI.COMM_SELF,
    )


def test_grid_built_from_config(driver):
    assert driver.grid.global_shape == (8, 16, 16)
    assert driver.grid.dz == pytest.approx(0.5 / 8)
    assert driver.topology.nprocs == 1


def test_new_field(driver):
    f = driver.new_field("divergence")
    assert f.name == "divergence"
    assert f.grid is driver.grid
    assert not f.data.any()


def test_solve_recovers_pressure(driver):
    grid = driver.grid
    p = np.random.default_rng(0).standard_normal(grid.local_shape)
    div = driver.new_field("divergence")
    div.interior[...] = discrete_source_term(grid, p, driver.bc)

    solution = driver.solve(div)
    assert solution.metrics.converged
    assert solution.pressure.name == "pressure"
    np.testing.assert_allclose(solution.pressure.interior, p, atol=1e-8)


def test_pressure_ghosts_follow_wall_rule(driver):
    div = driver.new_field()
    div.interior[...] = sinusoidal_source_term(driver.grid)
    v = driver.solve(div).pressure.view
    np.testing.assert_allclose(0.5 * (v[0] + v[1]), 0.0, atol=1e-12)
    np.testing.assert_allclose(0.5 * (v[-1] + v[-2]), 1.0, atol=1e-12)
    np.testing.assert_array_equal(v[1:-1, 0, 1:-1], v[1:-1, -2, 1:-1])


def test_pressure_is_independent_of_solver_state(driver):
    div = driver.new_field()
    div.interior[...] = sinusoidal_source_term(driver.grid)
    first = driver.solve(div).pressure
    saved = first.data.copy()
    driver.solve(driver.new_field())
    np.testing.assert_array_equal(first.data, saved)


def test_dt_scales_rhs(driver):
    div = driver.new_field()
    div.interior[...] = sinusoidal_source_term(driver.grid)
    p1 = driver.solve(div).pressure.interior.copy()
    p2 = driver.solve(div, dt=0.5).pressure.interior

    # Inhomogeneous top wall: only the difference to the harmonic part scales
    harmonic = driver.solve(driver.new_field()).pressure.interior
    np.testing.assert_allclose(p2 - harmonic, 2.0 * (p1 - harmonic), atol=1e-8)


def test_history(driver):
    div = driver.new_field()
    driver.solve(div)
    driver.solve(div, dt=2.0)
    assert [rec.index for rec in driver.history] == [0, 1]
    rec = driver.history[-1]
    assert rec.status == SolverStatus.CONVERGED
    assert rec.converged
    assert rec.final_residual < 1e-9


def test_history_keeps_residuals_per_solve(driver):
    div = driver.new_field()
    div.interior[...] = np.random.default_rng(3).standard_normal(div.interior.shape)
    driver.solve(div)
    driver.solve(div, dt=4.0)

    first, second = driver.history
    for rec in (first, second):
        assert len(rec.residual_history) == rec.cycles + 1
        assert rec.residual_history[0] == rec.initial_residual
        assert rec.residual_history[-1] == rec.final_residual
    # The first record is not overwritten by the second solve
    assert first.residual_history is not second.residual_history
    assert first.residual_history[0] != second.residual_history[0]


@pytest.mark.parametrize("dt", [0.0, -1.0])
def test_nonpositive_dt(driver, dt):
    with pytest.raises(ConfigurationError, match="dt must be positive"):
        driver.solve(driver.new_field(), dt=dt)


def test_mismatched_field(driver):
    other = Grid(8, 8, 8, Topology.single())
    with pytest.raises(ConfigurationError, match="global extents"):
        driver.solve(Field(other, "div"))


def test_process_grid_must_match_comm():
    with pytest.raises(ConfigurationError):
        SolverDriver(GridConfig(8, 8, 8, npx=2), comm=MPI.COMM_SELF)


def test_exchange_uses_pressure_bc(driver):
    f = driver.new_field()
    f.interior[...] = 1.0
    driver.exchange(f, BoundaryKind.BOTTOP)
    np.testing.assert_allclose(f.view[-1], 1.0)  # 2 * 1.0 - 1.0
    np.testing.assert_allclose(f.view[0], -1.0)
