"""Layout, boundary and transpose self-check.

Invoked via: mpiexec -n X python -m Pressure.helpers.mpicheck '{"itot": .., "npx": .., ...}'

Every owned cell is set to ``mpiid * 1000 + k``. After a cyclic exchange each
ghost strip must hold the id of the neighbor it came from, and after the
pencil transposes every value must sit where its global (k, j, i) says it
should. Rank 0 prints ``mpicheck: OK`` when all ranks pass.
"""

import json
import logging
import sys

import numpy as np
from mpi4py import MPI

from Pressure import Field, Grid, Pencil, Topology

log = logging.getLogger("Pressure.mpicheck")


def encode(rank, k):
    return rank * 1000.0 + k


def owner(grid, jg, ig):
    """mpiid of the rank owning global column (jg, ig)."""
    return (ig // grid.imax) + (jg // grid.jmax) * grid.topology.npx


def check_layout(grid) -> list:
    log.info(grid.describe_layout())
    return []


def check_boundary(grid, s: Field) -> list:
    """Ghost strips after a cyclic exchange hold their source rank's id."""
    topo = grid.topology
    v = s.view
    v.fill(-1.0)
    s.interior[...] = encode(topo.mpiid, np.arange(grid.kmax)[:, None, None])
    s.boundary_cyclic()

    ks, ke = grid.kstart, grid.kend
    js, je, is_, ie = grid.jstart, grid.jend, grid.istart, grid.iend
    southwest = Topology.layout(topo.nsouth, topo.npx, topo.npy).nwest

    expected = {
        "west": (v[ks:ke, js:je, :is_], topo.nwest),
        "east": (v[ks:ke, js:je, ie:], topo.neast),
        "south": (v[ks:ke, :js, is_:ie], topo.nsouth),
        "north": (v[ks:ke, je:, is_:ie], topo.nnorth),
        "southwest": (v[ks:ke, :js, :is_], southwest),
    }

    # i-line and j-line through the first owned cell, as in the layout check output
    log.debug(f"MPI i-line id {topo.mpiid}: {v[ks, js, :]}")
    log.debug(f"MPI j-line id {topo.mpiid}: {v[ks, :, is_]}")

    errors = []
    for name, (block, src) in expected.items():
        want = encode(src, np.arange(grid.kmax))[:, None, None]
        if not np.array_equal(block, np.broadcast_to(want, block.shape)):
            errors.append(f"rank {topo.mpiid}: {name} ghost cells do not come from rank {src}")
    return errors


def check_transpose(grid, s: Field) -> list:
    """Z -> X -> Y -> X -> Z moves every value to its global position and back."""
    topo = grid.topology
    t = grid.transposer
    s.interior[...] = encode(topo.mpiid, np.arange(grid.kmax)[:, None, None])
    original = s.interior.copy()

    errors = []
    xp = t.allocate(Pencil.X)
    t.to_x_pencil(xp, s)
    k = topo.mpicoordx * t.kblock + np.arange(t.kblock)[:, None, None]
    jg = grid.j0 + np.arange(grid.jmax)[None, :, None]
    ig = np.arange(grid.itot)[None, None, :]
    if not np.array_equal(xp, encode(owner(grid, jg, ig), k)):
        errors.append(f"rank {topo.mpiid}: z->x transpose misplaced values")

    yp = t.allocate(Pencil.Y)
    t.to_y_pencil(yp, xp)
    jg = np.arange(grid.jtot)[None, :, None]
    ig = topo.mpicoordy * t.iblock + np.arange(t.iblock)[None, None, :]
    if not np.array_equal(yp, encode(owner(grid, jg, ig), k)):
        errors.append(f"rank {topo.mpiid}: x->y transpose misplaced values")

    back = t.allocate(Pencil.Z)
    t.transpose(back, yp, Pencil.Y, Pencil.Z)
    if not np.array_equal(back, original):
        errors.append(f"rank {topo.mpiid}: y->z round trip changed values")
    return errors


def main(config: dict, comm) -> int:
    topo = Topology.create(comm, config.get("npx", 1), config.get("npy", 1))
    grid = Grid(
        config["itot"],
        config["jtot"],
        config["ktot"],
        topo,
        igc=config.get("igc", 1),
        jgc=config.get("jgc", 1),
        kgc=config.get("kgc", 1),
        halo_exchange=config.get("halo_exchange", "numpy"),
    )
    s = Field(grid, "s")

    errors = check_layout(grid) + check_boundary(grid, s) + check_transpose(grid, s)
    for msg in errors:
        log.error(msg)

    n_failed = comm.allreduce(len(errors), op=MPI.SUM)
    if comm.Get_rank() == 0:
        print("mpicheck: OK" if n_failed == 0 else f"mpicheck: FAILED ({n_failed} errors)")
    return 0 if n_failed == 0 else 1


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    sys.exit(main(json.loads(sys.argv[1]), MPI.COMM_WORLD))
