"""Distributed grid abstraction for the pressure solver.

This module provides the Grid class that encapsulates:
- Global and local extents of the x/y-decomposed, z-contiguous domain
- Halo widths, owned-region bounds and flat indexing
- The halo exchanger (staging buffers allocated once per Grid)
- Coarsening for the multigrid hierarchy

Solvers and Fields interact with this single interface rather than managing
MPI details directly.
"""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np
from mpi4py import MPI

from ..datastructures import GridConfig, RankGeometry
from ..errors import ConfigurationError
from .halo import create_halo_exchanger
from .topology import Topology

log = logging.getLogger(__name__)


class Grid:
    """Cell-centred grid decomposed over an ``npx x npy`` process grid.

    Parameters
    ----------
    itot, jtot, ktot : int
        Global number of cells in x, y, z.
    topology : Topology
        Position of this rank in the process grid.
    xsize, ysize, zsize : float
        Physical domain size.
    igc, jgc, kgc : int
        Halo (ghost cell) widths.
    halo_exchange : str
        'numpy' for buffer-based exchange (default),
        'custom' for MPI derived datatypes (zero-copy).
    stencil_halfwidth : int
        Half-width of the widest operator applied to fields on this grid;
        every halo must be at least this wide.

    Example
    -------
    >>> topo = Topology.create(MPI.COMM_WORLD, npx=2, npy=2)
    >>> grid = Grid(64, 64, 32, topo)
    >>> u = grid.allocate()          # (kcells, jcells, icells) with halos
    >>> grid.boundary_cyclic(u)      # exchange horizontal halos
    """

    def __init__(
        self,
        itot: int,
        jtot: int,
        ktot: int,
        topology: Topology,
        xsize: float = 1.0,
        ysize: float = 1.0,
        zsize: float = 1.0,
        igc: int = 1,
        jgc: int = 1,
        kgc: int = 1,
        halo_exchange: str = "numpy",
        stencil_halfwidth: int = 1,
    ):
        self.topology = topology
        self.itot, self.jtot, self.ktot = itot, jtot, ktot
        self.xsize, self.ysize, self.zsize = xsize, ysize, zsize
        self.igc, self.jgc, self.kgc = igc, jgc, kgc
        self.halo_exchange_type = halo_exchange
        self.stencil_halfwidth = stencil_halfwidth

        self._validate()

        npx, npy = topology.npx, topology.npy

        # Local extents (z is never decomposed)
        self.imax = itot // npx
        self.jmax = jtot // npy
        self.kmax = ktot

        # Extents including halos
        self.icells = self.imax + 2 * igc
        self.jcells = self.jmax + 2 * jgc
        self.kcells = self.kmax + 2 * kgc
        self.ijcells = self.icells * self.jcells
        self.ncells = self.ijcells * self.kcells

        # Owned region bounds
        self.istart, self.iend = igc, igc + self.imax
        self.jstart, self.jend = jgc, jgc + self.jmax
        self.kstart, self.kend = kgc, kgc + self.kmax

        # Pencil depths for the transposes (0 when the layout is not available)
        self.kblock = ktot // npx if ktot % npx == 0 else 0
        self.iblock = itot // npy if itot % npy == 0 else 0

        # Grid spacing
        self.dx = xsize / itot
        self.dy = ysize / jtot
        self.dz = zsize / ktot

        # Global index of the first owned cell
        self.i0 = topology.mpicoordx * self.imax
        self.j0 = topology.mpicoordy * self.jmax

        # Halo exchange strategy
        self._halo_exchanger = create_halo_exchanger(halo_exchange)
        self._halo_exchanger.setup(self)

        self._transposer = None
        log.debug("Created %r", self)

    @classmethod
    def from_config(cls, config: GridConfig, topology: Topology) -> "Grid":
        """Build the finest grid from a GridConfig."""
        if (config.npx, config.npy) != (topology.npx, topology.npy):
            raise ConfigurationError(
                f"GridConfig process grid {config.npx}x{config.npy} does not match "
                f"topology {topology.npx}x{topology.npy}"
            )
        return cls(
            config.itot,
            config.jtot,
            config.ktot,
            topology,
            xsize=config.xsize,
            ysize=config.ysize,
            zsize=config.zsize,
            igc=config.igc,
            jgc=config.jgc,
            kgc=config.kgc,
            halo_exchange=config.halo_exchange,
        )

    def _validate(self):
        """Check decomposition and halo invariants."""
        topo = self.topology
        if self.itot % topo.npx != 0:
            raise ConfigurationError(
                f"itot={self.itot} is not divisible by npx={topo.npx}"
            )
        if self.jtot % topo.npy != 0:
            raise ConfigurationError(
                f"jtot={self.jtot} is not divisible by npy={topo.npy}"
            )
        if self.stencil_halfwidth < 1:
            raise ConfigurationError("stencil_halfwidth must be >= 1")
        for name in ("igc", "jgc", "kgc"):
            gc = getattr(self, name)
            if gc < self.stencil_halfwidth:
                raise ConfigurationError(
                    f"Halo width {name}={gc} is smaller than the stencil half-width "
                    f"{self.stencil_halfwidth}"
                )
        if self.kgc > self.ktot:
            raise ConfigurationError(
                f"Vertical halo width kgc={self.kgc} exceeds ktot={self.ktot}"
            )
        if self.igc > self.itot // topo.npx or self.jgc > self.jtot // topo.npy:
            raise ConfigurationError(
                f"Halo widths ({self.igc}, {self.jgc}) exceed the local extent "
                f"({self.itot // topo.npx}, {self.jtot // topo.npy})"
            )
        if (topo.npx > 1 or topo.npy > 1) and not topo.has_comm:
            raise ConfigurationError(
                "A decomposed grid needs a Topology created with Topology.create()"
            )

    # ------------------------------------------------------------------
    # Shapes and indexing
    # ------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int, int]:
        """Array shape including halos, (kcells, jcells, icells)."""
        return (self.kcells, self.jcells, self.icells)

    @property
    def local_shape(self) -> Tuple[int, int, int]:
        """Owned-region shape, (kmax, jmax, imax)."""
        return (self.kmax, self.jmax, self.imax)

    @property
    def global_shape(self) -> Tuple[int, int, int]:
        return (self.ktot, self.jtot, self.itot)

    @property
    def interior(self) -> Tuple[slice, slice, slice]:
        """Slice tuple selecting the owned region of a 3-D view."""
        return (
            slice(self.kstart, self.kend),
            slice(self.jstart, self.jend),
            slice(self.istart, self.iend),
        )

    def index(self, i: int, j: int, k: int) -> int:
        """Flat index of local cell (i, j, k), halos included."""
        return i + j * self.icells + k * self.ijcells

    def allocate(self, dtype=np.float64) -> np.ndarray:
        """Allocate a local array with halo zones."""
        return np.zeros(self.shape, dtype=dtype)

    def cell_centers(self):
        """Physical coordinates of the owned cell centres as a (z, y, x) meshgrid."""
        x = (self.i0 + np.arange(self.imax) + 0.5) * self.dx
        y = (self.j0 + np.arange(self.jmax) + 0.5) * self.dy
        z = (np.arange(self.kmax) + 0.5) * self.dz
        return np.meshgrid(z, y, x, indexing="ij")

    # ------------------------------------------------------------------
    # Communication
    # ------------------------------------------------------------------

    def boundary_cyclic(self, arr: np.ndarray) -> float:
        """Fill horizontal halos (periodic wrap). Returns the exchange time."""
        t0 = MPI.Wtime()
        self._halo_exchanger.exchange(arr, self.topology)
        return MPI.Wtime() - t0

    @property
    def transposer(self):
        """Pencil transposer for this grid (created on first use)."""
        if self._transposer is None:
            from .transpose import Transposer

            self._transposer = Transposer(self)
        return self._transposer

    def sum_all(self, values) -> np.ndarray:
        """Sum a small vector of local values over all ranks."""
        local = np.asarray(values, dtype=np.float64)
        if self.topology.cart_comm is None:
            return local.copy()
        total = np.empty_like(local)
        self.topology.cart_comm.Allreduce(local, total, op=MPI.SUM)
        return total

    # ------------------------------------------------------------------
    # Multigrid
    # ------------------------------------------------------------------

    def can_coarsen(self) -> bool:
        """True if every local extent can be halved and stays >= 1."""
        return all(n >= 2 and n % 2 == 0 for n in (self.imax, self.jmax, self.kmax))

    def coarsen(self) -> "Grid":
        """Create a coarsened grid for multigrid.

        Returns a new Grid with every extent halved on the same topology.
        Coarse levels only carry the 7-point operators, so their halos are one
        cell wide.
        """
        if not self.can_coarsen():
            raise ConfigurationError(
                f"Grid with local extents {self.local_shape} cannot be coarsened further"
            )
        return Grid(
            self.itot // 2,
            self.jtot // 2,
            self.ktot // 2,
            self.topology,
            xsize=self.xsize,
            ysize=self.ysize,
            zsize=self.zsize,
            igc=1,
            jgc=1,
            kgc=1,
            halo_exchange=self.halo_exchange_type,
        )

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_rank_info(self) -> RankGeometry:
        """Layout info for this rank."""
        return RankGeometry(
            rank=self.topology.mpiid,
            coords=(self.topology.mpicoordx, self.topology.mpicoordy),
            neighbors=self.topology.neighbors,
            local_shape=self.local_shape,
            halo_shape=self.shape,
            global_start=(0, self.j0, self.i0),
            global_end=(self.ktot, self.j0 + self.jmax, self.i0 + self.imax),
            hostname=MPI.Get_processor_name(),
        )

    def describe_layout(self) -> str:
        """Layout line for this rank, as printed by the layout check."""
        return self.topology.describe()

    def get_halo_size_bytes(self) -> int:
        """Bytes sent per cyclic exchange (both directions, both axes)."""
        x_face = self.kcells * self.jcells * self.igc
        y_face = self.kcells * self.jgc * self.icells
        total = 0
        if self.topology.npx > 1:
            total += 2 * x_face * 8
        if self.topology.npy > 1:
            total += 2 * y_face * 8
        return total

    def __repr__(self):
        return (
            f"Grid(tot=({self.itot}, {self.jtot}, {self.ktot}), "
            f"max=({self.imax}, {self.jmax}, {self.kmax}), "
            f"gc=({self.igc}, {self.jgc}, {self.kgc}), rank={self.topology.mpiid})"
        )
