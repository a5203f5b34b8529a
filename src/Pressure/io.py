"""Gathering distributed fields and writing them for postprocessing."""

from __future__ import annotations

from typing import Optional

import h5py
import numpy as np


def gather_field(field, root: int = 0) -> Optional[np.ndarray]:
    """Assemble the owned blocks of ``field`` into a global (ktot, jtot, itot) array.

    Returns the array on ``root`` and None on every other rank.
    """
    grid = field.grid
    comm = grid.topology.cart_comm
    block = np.ascontiguousarray(field.interior)

    if comm is None:
        return block.copy()

    pieces = comm.gather((grid.j0, grid.i0, block), root=root)
    if comm.Get_rank() != root:
        return None

    out = np.empty(grid.global_shape)
    for j0, i0, data in pieces:
        _, nj, ni = data.shape
        out[:, j0:j0 + nj, i0:i0 + ni] = data
    return out


def write_solution_hdf5(path, field, attrs: dict = None, root: int = 0):
    """Gather ``field`` and write it to ``/fields/<name>`` (root rank only).

    File structure:
    - /config: attributes from ``attrs``
    - /fields/<name>: global array (ktot, jtot, itot)
    """
    data = gather_field(field, root=root)
    if data is None:
        return

    with h5py.File(path, "w") as f:
        config_grp = f.create_group("config")
        for key, value in (attrs or {}).items():
            config_grp.attrs[key] = value
        fields_grp = f.create_group("fields")
        fields_grp.create_dataset(field.name, data=data, dtype="f8")


def read_solution_hdf5(path) -> dict:
    """Load a file written by :func:`write_solution_hdf5`.

    Returns a dictionary with keys 'config' and 'fields'.
    """
    with h5py.File(path, "r") as f:
        return {
            "config": dict(f["config"].attrs),
            "fields": {name: f["fields"][name][:] for name in f["fields"].keys()},
        }
