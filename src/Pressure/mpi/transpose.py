"""Pencil transposes between the z-, x- and y-pencil layouts.

Layouts (owned cells only, C order):

    Z pencil  (ktot,   jmax, imax)    the default, z complete on each rank
    X pencil  (kblock, jmax, itot)    x complete; kblock = ktot / npx
    Y pencil  (kblock, jtot, iblock)  y complete; iblock = itot / npy

Z <-> X is an Alltoall on the row communicator (ranks sharing mpicoordy),
X <-> Y an Alltoall on the column communicator (ranks sharing mpicoordx).
Z <-> Y goes through an intermediate X pencil.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Tuple

import numpy as np
from mpi4py import MPI

from ..errors import CommunicationError, ConfigurationError

log = logging.getLogger(__name__)


class Pencil(str, Enum):
    """Which axis is complete on each rank."""

    Z = "z"
    X = "x"
    Y = "y"


class Transposer:
    """Redistributes owned data of a Grid between pencil layouts.

    Alltoall buffers are allocated on first use of a route and reused for the
    lifetime of the Transposer, one pair per (route, dtype).
    """

    def __init__(self, grid):
        topo = grid.topology
        if grid.ktot % topo.npx != 0:
            raise ConfigurationError(
                f"ktot={grid.ktot} is not divisible by npx={topo.npx}; no x-pencil layout"
            )
        if grid.itot % topo.npy != 0:
            raise ConfigurationError(
                f"itot={grid.itot} is not divisible by npy={topo.npy}; no y-pencil layout"
            )
        if (topo.npx > 1 or topo.npy > 1) and not topo.has_comm:
            raise ConfigurationError("Transposes need a Topology created with Topology.create()")

        self.grid = grid
        self.npx, self.npy = topo.npx, topo.npy
        self.kblock = grid.ktot // topo.npx
        self.iblock = grid.itot // topo.npy
        self.row_comm = topo.row_comm
        self.col_comm = topo.col_comm

        self._buffers: Dict[Tuple[str, np.dtype], Tuple[np.ndarray, np.ndarray]] = {}
        self.time = 0.0

    # ------------------------------------------------------------------
    # Layouts
    # ------------------------------------------------------------------

    def layout_shape(self, pencil: Pencil) -> Tuple[int, int, int]:
        g = self.grid
        pencil = Pencil(pencil)
        if pencil == Pencil.Z:
            return (g.ktot, g.jmax, g.imax)
        if pencil == Pencil.X:
            return (self.kblock, g.jmax, g.itot)
        return (self.kblock, g.jtot, self.iblock)

    def allocate(self, pencil: Pencil, dtype=np.float64) -> np.ndarray:
        """Zeroed array in the given layout."""
        return np.zeros(self.layout_shape(pencil), dtype=dtype)

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    def to_x_pencil(self, dst, src):
        """Z pencil -> X pencil."""
        src = self._resolve(src, Pencil.Z)
        dst = self._resolve(dst, Pencil.X)
        g = self.grid
        send, recv = self._arena("zx", (self.npx, self.kblock, g.jmax, g.imax), src.dtype)

        # Block p holds the k-range owned by row rank p in the x pencil
        send[...] = src.reshape(self.npx, self.kblock, g.jmax, g.imax)
        self._alltoall(self.row_comm, send, recv)
        dst[...] = recv.transpose(1, 2, 0, 3).reshape(self.kblock, g.jmax, g.itot)

    def to_z_pencil(self, dst, src):
        """X pencil -> Z pencil."""
        src = self._resolve(src, Pencil.X)
        dst = self._resolve(dst, Pencil.Z)
        g = self.grid
        send, recv = self._arena("xz", (self.npx, self.kblock, g.jmax, g.imax), src.dtype)

        send[...] = src.reshape(self.kblock, g.jmax, self.npx, g.imax).transpose(2, 0, 1, 3)
        self._alltoall(self.row_comm, send, recv)
        dst[...] = recv.reshape(g.ktot, g.jmax, g.imax)

    def to_y_pencil(self, dst, src):
        """X pencil -> Y pencil."""
        src = self._resolve(src, Pencil.X)
        dst = self._resolve(dst, Pencil.Y)
        g = self.grid
        send, recv = self._arena("xy", (self.npy, self.kblock, g.jmax, self.iblock), src.dtype)

        send[...] = src.reshape(self.kblock, g.jmax, self.npy, self.iblock).transpose(2, 0, 1, 3)
        self._alltoall(self.col_comm, send, recv)
        dst[...] = recv.transpose(1, 0, 2, 3).reshape(self.kblock, g.jtot, self.iblock)

    def from_y_pencil(self, dst, src):
        """Y pencil -> X pencil."""
        src = self._resolve(src, Pencil.Y)
        dst = self._resolve(dst, Pencil.X)
        g = self.grid
        send, recv = self._arena("yx", (self.npy, self.kblock, g.jmax, self.iblock), src.dtype)

        send[...] = src.reshape(self.kblock, self.npy, g.jmax, self.iblock).transpose(1, 0, 2, 3)
        self._alltoall(self.col_comm, send, recv)
        dst[...] = recv.transpose(1, 2, 0, 3).reshape(self.kblock, g.jmax, g.itot)

    def transpose(self, dst, src, from_layout: Pencil, to_layout: Pencil):
        """Move ``src`` in ``from_layout`` into ``dst`` in ``to_layout``."""
        from_layout, to_layout = Pencil(from_layout), Pencil(to_layout)
        route = (from_layout, to_layout)

        if from_layout == to_layout:
            self._resolve(dst, to_layout)[...] = self._resolve(src, from_layout)
        elif route == (Pencil.Z, Pencil.X):
            self.to_x_pencil(dst, src)
        elif route == (Pencil.X, Pencil.Z):
            self.to_z_pencil(dst, src)
        elif route == (Pencil.X, Pencil.Y):
            self.to_y_pencil(dst, src)
        elif route == (Pencil.Y, Pencil.X):
            self.from_y_pencil(dst, src)
        elif route == (Pencil.Z, Pencil.Y):
            src_arr = self._resolve(src, Pencil.Z)
            tmp = self._intermediate(src_arr.dtype)
            self.to_x_pencil(tmp, src_arr)
            self.to_y_pencil(dst, tmp)
        else:  # Y -> Z
            src_arr = self._resolve(src, Pencil.Y)
            tmp = self._intermediate(src_arr.dtype)
            self.from_y_pencil(tmp, src_arr)
            self.to_z_pencil(dst, tmp)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, obj, pencil: Pencil) -> np.ndarray:
        """Return the array behind ``obj`` and check it has the layout's shape.

        A Field stands for its owned block in the Z layout.
        """
        if hasattr(obj, "grid") and hasattr(obj, "interior"):
            if obj.grid.global_shape != self.grid.global_shape:
                raise ConfigurationError(
                    f"Field '{obj.name}' lives on a grid with global extents "
                    f"{obj.grid.global_shape}, transposer expects {self.grid.global_shape}"
                )
            if pencil != Pencil.Z:
                raise ConfigurationError(
                    f"Fields are stored as z pencils; cannot use one as a {pencil.value} pencil"
                )
            arr = obj.interior
        else:
            arr = obj

        expected = self.layout_shape(pencil)
        if arr.shape != expected:
            raise CommunicationError(
                f"Array shape {arr.shape} does not match {pencil.value}-pencil shape {expected}"
            )
        return arr

    def _arena(self, route: str, shape, dtype) -> Tuple[np.ndarray, np.ndarray]:
        key = (route, np.dtype(dtype))
        if key not in self._buffers:
            log.debug(f"Allocating {route} transpose buffers {shape} ({np.dtype(dtype)})")
            self._buffers[key] = (np.empty(shape, dtype=dtype), np.empty(shape, dtype=dtype))
        return self._buffers[key]

    def _intermediate(self, dtype) -> np.ndarray:
        key = ("x-intermediate", np.dtype(dtype))
        if key not in self._buffers:
            arr = self.allocate(Pencil.X, dtype)
            self._buffers[key] = (arr, arr)
        return self._buffers[key][0]

    def _alltoall(self, comm, send: np.ndarray, recv: np.ndarray):
        t0 = MPI.Wtime()
        if comm is None:
            # Single rank on this axis without a communicator
            np.copyto(recv, send)
        else:
            try:
                comm.Alltoall(send, recv)
            except MPI.Exception as exc:
                raise CommunicationError(f"Transpose Alltoall failed: {exc}") from exc
        self.time += MPI.Wtime() - t0
