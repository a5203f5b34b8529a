"""Halo exchange implementations for distributed grids.

Both horizontal axes are periodic. The x halos are exchanged first over the
full (k, j) range, then the y halos over the full (k, i) range, so corner
ghost cells end up holding the diagonal neighbor's values.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np
from mpi4py import MPI

from ..errors import CommunicationError

# Tags per direction of travel
_TAG_EAST, _TAG_WEST, _TAG_NORTH, _TAG_SOUTH = 1, 2, 3, 4


def _axis_slices(axis: int, start: int, end: int, gc: int) -> dict:
    """Owned slabs and ghost slabs of width gc along array axis 2 (x) or 1 (y)."""

    def at(s):
        sl = [slice(None)] * 3
        sl[axis] = s
        return tuple(sl)

    return {
        "send_hi": at(slice(end - gc, end)),  # owned slab next to the upper ghost
        "send_lo": at(slice(start, start + gc)),  # owned slab next to the lower ghost
        "recv_lo": at(slice(start - gc, start)),  # lower ghost
        "recv_hi": at(slice(end, end + gc)),  # upper ghost
    }


class HaloExchanger(ABC):
    """Abstract base for cyclic halo exchange strategies."""

    def setup(self, grid):
        """Pre-compute slices for this grid's shape."""
        self._shape = grid.shape
        self._x = _axis_slices(2, grid.istart, grid.iend, grid.igc)
        self._y = _axis_slices(1, grid.jstart, grid.jend, grid.jgc)

    def exchange(self, arr: np.ndarray, topology):
        """Fill the horizontal halos of ``arr`` (periodic wrap)."""
        if arr.shape != self._shape:
            raise CommunicationError(
                f"Array shape {arr.shape} does not match grid shape {self._shape}"
            )
        try:
            if topology.npx == 1:
                self._local_copy(arr, self._x)
            else:
                self._exchange_axis(arr, 0, topology.cart_comm, topology.neast, topology.nwest)

            if topology.npy == 1:
                self._local_copy(arr, self._y)
            else:
                self._exchange_axis(arr, 1, topology.cart_comm, topology.nnorth, topology.nsouth)
        except MPI.Exception as exc:
            raise CommunicationError(
                f"Halo exchange failed on rank {topology.mpiid}: {exc}"
            ) from exc

    @staticmethod
    def _local_copy(arr: np.ndarray, info: dict):
        """Single rank along the axis: wrap from the opposite owned edge."""
        arr[info["recv_lo"]] = arr[info["send_hi"]]
        arr[info["recv_hi"]] = arr[info["send_lo"]]

    @abstractmethod
    def _exchange_axis(self, arr: np.ndarray, axis: int, comm, hi: int, lo: int):
        """Exchange one axis with the upper (hi) and lower (lo) neighbor ranks."""


class NumpyHaloExchanger(HaloExchanger):
    """Halo exchange using pre-allocated staging buffers and Sendrecv."""

    def setup(self, grid):
        """Allocate one send and one receive buffer per axis, reused by every exchange."""
        super().setup(grid)
        kc, jc, ic = grid.shape
        self._buffers = [
            (np.empty((kc, jc, grid.igc)), np.empty((kc, jc, grid.igc))),
            (np.empty((kc, grid.jgc, ic)), np.empty((kc, grid.jgc, ic))),
        ]

    def _exchange_axis(self, arr, axis, comm, hi, lo):
        info = self._x if axis == 0 else self._y
        send, recv = self._buffers[axis]
        tag_up, tag_down = (_TAG_EAST, _TAG_WEST) if axis == 0 else (_TAG_NORTH, _TAG_SOUTH)

        # Send to upper, receive from lower
        np.copyto(send, arr[info["send_hi"]])
        comm.Sendrecv(send, hi, tag_up, recv, lo, tag_up)
        arr[info["recv_lo"]] = recv

        # Send to lower, receive from upper
        np.copyto(send, arr[info["send_lo"]])
        comm.Sendrecv(send, lo, tag_down, recv, hi, tag_down)
        arr[info["recv_hi"]] = recv


class DatatypeHaloExchanger(HaloExchanger):
    """Halo exchange using MPI subarray datatypes (zero-copy)."""

    def setup(self, grid):
        """Create and commit the send/recv datatypes for both axes."""
        super().setup(grid)
        sizes = list(grid.shape)
        kc, jc, ic = grid.shape

        def subarray(subsizes, starts):
            dt = MPI.DOUBLE.Create_subarray(sizes, subsizes, starts)
            dt.Commit()
            return dt

        x_sub = [kc, jc, grid.igc]
        y_sub = [kc, grid.jgc, ic]
        self._types = [
            {
                "send_hi": subarray(x_sub, [0, 0, grid.iend - grid.igc]),
                "send_lo": subarray(x_sub, [0, 0, grid.istart]),
                "recv_lo": subarray(x_sub, [0, 0, 0]),
                "recv_hi": subarray(x_sub, [0, 0, grid.iend]),
            },
            {
                "send_hi": subarray(y_sub, [0, grid.jend - grid.jgc, 0]),
                "send_lo": subarray(y_sub, [0, grid.jstart, 0]),
                "recv_lo": subarray(y_sub, [0, 0, 0]),
                "recv_hi": subarray(y_sub, [0, grid.jend, 0]),
            },
        ]

    def _exchange_axis(self, arr, axis, comm, hi, lo):
        if not arr.flags.c_contiguous:
            raise CommunicationError("Datatype halo exchange requires a C-contiguous array")
        dt = self._types[axis]
        tag_up, tag_down = (_TAG_EAST, _TAG_WEST) if axis == 0 else (_TAG_NORTH, _TAG_SOUTH)

        comm.Sendrecv([arr, 1, dt["send_hi"]], hi, tag_up, [arr, 1, dt["recv_lo"]], lo, tag_up)
        comm.Sendrecv([arr, 1, dt["send_lo"]], lo, tag_down, [arr, 1, dt["recv_hi"]], hi, tag_down)

    def __del__(self):
        """Free MPI datatypes."""
        if hasattr(self, "_types") and not MPI.Is_finalized():
            for types in self._types:
                for dt in types.values():
                    if dt != MPI.DATATYPE_NULL:
                        dt.Free()


def create_halo_exchanger(exchange_type: str) -> HaloExchanger:
    """Factory: 'numpy' for buffer-based, 'custom' for MPI datatypes."""
    from ..errors import ConfigurationError

    if exchange_type == "numpy":
        return NumpyHaloExchanger()
    elif exchange_type == "custom":
        return DatatypeHaloExchanger()
    else:
        raise ConfigurationError(f"Unknown halo_exchange type: {exchange_type}")
