"""Shared fixtures: single-rank topologies and grids on MPI.COMM_SELF."""

import pytest

from Pressure import Grid, Topology


@pytest.fixture
def topology():
    return Topology.single()


@pytest.fixture
def make_grid(topology):
    """Factory for single-rank grids; keeps every grid alive for the test."""
    grids = []

    def _make(itot=8, jtot=8, ktot=8, **kwargs):
        grid = Grid(itot, jtot, ktot, topology, **kwargs)
        grids.append(grid)
        return grid

    return _make
