"""Process topology with MPI Cartesian communicators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from mpi4py import MPI

from ..errors import ConfigurationError


@dataclass(frozen=True)
class Topology:
    """Position of this rank in the 2D (npx x npy) process grid.

    Ranks are numbered x-fastest: ``mpiid = mpicoordx + mpicoordy * npx``.
    Both horizontal axes are periodic, so every rank has four neighbors
    (which may be itself when an axis holds a single rank).

    The communicators are carried along for the communication layer but do
    not take part in equality: two Topology values describing the same
    position compare equal.

    Example
    -------
    >>> topo = Topology.create(MPI.COMM_WORLD, npx=2, npy=2)
    >>> topo.neast, topo.nwest
    """

    npx: int
    npy: int
    mpiid: int
    mpicoordx: int
    mpicoordy: int
    neast: int
    nwest: int
    nnorth: int
    nsouth: int

    cart_comm: Optional[MPI.Comm] = field(default=None, compare=False, repr=False)
    row_comm: Optional[MPI.Comm] = field(default=None, compare=False, repr=False)
    col_comm: Optional[MPI.Comm] = field(default=None, compare=False, repr=False)

    @property
    def nprocs(self) -> int:
        return self.npx * self.npy

    @property
    def neighbors(self) -> Dict[str, int]:
        return {
            "east": self.neast,
            "west": self.nwest,
            "north": self.nnorth,
            "south": self.nsouth,
        }

    @property
    def has_comm(self) -> bool:
        return self.cart_comm is not None

    @classmethod
    def layout(cls, rank: int, npx: int, npy: int) -> "Topology":
        """Compute coordinates and neighbors arithmetically (no MPI calls).

        Matches the numbering produced by :meth:`create`.
        """
        _check_dims(npx, npy)
        if not 0 <= rank < npx * npy:
            raise ConfigurationError(f"Rank {rank} outside process grid {npx}x{npy}")

        cx, cy = rank % npx, rank // npx

        def rank_of(x, y):
            return (x % npx) + (y % npy) * npx

        return cls(
            npx=npx,
            npy=npy,
            mpiid=rank,
            mpicoordx=cx,
            mpicoordy=cy,
            neast=rank_of(cx + 1, cy),
            nwest=rank_of(cx - 1, cy),
            nnorth=rank_of(cx, cy + 1),
            nsouth=rank_of(cx, cy - 1),
        )

    @classmethod
    def create(cls, comm: MPI.Comm = MPI.COMM_WORLD, npx: int = 1, npy: int = 1) -> "Topology":
        """Create the periodic Cartesian communicator and its sub-communicators."""
        _check_dims(npx, npy)
        size = comm.Get_size()
        if size != npx * npy:
            raise ConfigurationError(
                f"Process grid {npx}x{npy} needs {npx * npy} ranks, communicator has {size}"
            )

        # dims in [npy, npx] order so that x is the fastest-varying coordinate
        cart_comm = comm.Create_cart(dims=[npy, npx], periods=[True, True], reorder=False)
        rank = cart_comm.Get_rank()
        cy, cx = cart_comm.Get_coords(rank)

        south, north = cart_comm.Shift(0, 1)
        west, east = cart_comm.Shift(1, 1)

        # Row: ranks sharing mpicoordy (vary x); column: ranks sharing mpicoordx
        row_comm = cart_comm.Sub([False, True])
        col_comm = cart_comm.Sub([True, False])

        return cls(
            npx=npx,
            npy=npy,
            mpiid=rank,
            mpicoordx=cx,
            mpicoordy=cy,
            neast=east,
            nwest=west,
            nnorth=north,
            nsouth=south,
            cart_comm=cart_comm,
            row_comm=row_comm,
            col_comm=col_comm,
        )

    @classmethod
    def single(cls) -> "Topology":
        """Single-rank topology on ``MPI.COMM_SELF``."""
        return cls.create(MPI.COMM_SELF, 1, 1)

    def describe(self) -> str:
        """One-line layout summary (id, coords, neighbors, nprocs)."""
        return (
            f"MPI id, mpicoordx, mpicoordy, neast, nwest, nnorth, nsouth, nprocs: "
            f"{self.mpiid:2d}, {self.mpicoordx:2d}, {self.mpicoordy:2d}, {self.neast:2d}, "
            f"{self.nwest:2d}, {self.nnorth:2d}, {self.nsouth:2d}, {self.nprocs:2d}"
        )


def _check_dims(npx: int, npy: int):
    if npx < 1 or npy < 1:
        raise ConfigurationError(f"Process grid dimensions must be >= 1, got {npx}x{npy}")
