"""MPI layer: process topology, distributed grid, halo exchange and transposes."""

from .topology import Topology
from .grid import Grid
from .halo import (
    HaloExchanger,
    NumpyHaloExchanger,
    DatatypeHaloExchanger,
    create_halo_exchanger,
)
from .transpose import Pencil, Transposer

__all__ = [
    "Topology",
    "Grid",
    "HaloExchanger",
    "NumpyHaloExchanger",
    "DatatypeHaloExchanger",
    "create_halo_exchanger",
    "Pencil",
    "Transposer",
]
