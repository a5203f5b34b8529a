"""MPI worker - invoked via: mpiexec -n X python -m Pressure.helpers.runner_helper '{config}'"""

import json
import logging
import sys

import numpy as np
from mpi4py import MPI

from Pressure import (
    BoundaryConfig,
    GridConfig,
    MultigridConfig,
    PressureError,
    SolverDriver,
    discrete_source_term,
    point_source,
    sinusoidal_exact_solution,
)
from Pressure.io import gather_field, write_solution_hdf5

log = logging.getLogger("Pressure.runner_helper")

MG_KEYS = (
    "weighting", "n_pre_smooth", "n_post_smooth", "tolerance", "max_cycles", "max_levels",
    "coarse_solver", "coarse_tolerance", "coarse_max_sweeps", "use_numba", "numba_threads",
)


def build_driver(config: dict, comm) -> SolverDriver:
    grid_config = GridConfig(
        itot=config["itot"],
        jtot=config["jtot"],
        ktot=config["ktot"],
        npx=config.get("npx", 1),
        npy=config.get("npy", 1),
        xsize=config.get("xsize", 1.0),
        ysize=config.get("ysize", 1.0),
        zsize=config.get("zsize", 1.0),
        halo_exchange=config.get("halo_exchange", "numpy"),
    )
    bc = BoundaryConfig(
        bottom=config.get("bc_bottom", "dirichlet"),
        top=config.get("bc_top", "dirichlet"),
        bottom_value=config.get("bc_bottom_value", 0.0),
        top_value=config.get("bc_top_value", 0.0),
    )
    mg_config = MultigridConfig(**{k: config[k] for k in MG_KEYS if k in config})
    return SolverDriver(grid_config, bc, mg_config, comm=comm)


def point_source_diagnostics(p: np.ndarray, index) -> dict:
    """Symmetry and locality of the response to a single source cell."""
    k, j, i = index
    _, nj, ni = p.shape
    scale = np.max(np.abs(p))

    # Mirror about the source column (periodic) and swap x <-> y
    mirror_i = p[:, :, (2 * i - np.arange(ni)) % ni]
    mirror_j = p[:, (2 * j - np.arange(nj)) % nj, :]
    asym = max(np.max(np.abs(p - mirror_i)), np.max(np.abs(p - mirror_j)))
    if nj == ni and i == j:
        asym = max(asym, np.max(np.abs(p - p.transpose(0, 2, 1))))

    peak = np.unravel_index(np.argmax(np.abs(p)), p.shape)
    return {
        "asymmetry": float(asym / scale),
        "peak_at_source": int(tuple(int(v) for v in peak) == (k, j, i)),
        "far_field_ratio": float(np.abs(p[k, (j + nj // 2) % nj, (i + ni // 2) % ni]) / scale),
    }


def main(config: dict, comm) -> int:
    driver = build_driver(config, comm)
    grid = driver.grid

    problem = config.get("problem", "point")
    source_index = None
    exact = None
    if problem == "point":
        source_index = tuple(config.get("source_index", (grid.ktot // 2, grid.jtot // 2, grid.itot // 2)))
        rhs = point_source(grid, source_index, config.get("source_value", 1.0))
    elif problem == "sinusoidal":
        exact = sinusoidal_exact_solution(grid)
        rhs = discrete_source_term(grid, exact, driver.bc)
    else:
        raise ValueError(f"Unknown problem: {problem}")

    divergence = driver.new_field("divergence")
    divergence.interior[...] = rhs

    driver.solver.warmup()
    solution = driver.solve(divergence)

    extra = {"problem": problem}
    if exact is not None:
        err = grid.sum_all([np.sum((solution.pressure.interior - exact) ** 2), exact.size])
        extra["rms_error"] = float(np.sqrt(err[0] / err[1]))

    p = gather_field(solution.pressure)
    if comm.Get_rank() == 0 and source_index is not None:
        extra.update(point_source_diagnostics(p, source_index))

    output = config.get("output")
    if output:
        driver.solver.save_hdf5(output, extra=extra)
    if config.get("field_output"):
        write_solution_hdf5(config["field_output"], solution.pressure, attrs={"problem": problem})

    if comm.Get_rank() == 0:
        # Just print the path - runner.py will load the HDF5
        print(f"RESULT:{output}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    comm = MPI.COMM_WORLD
    try:
        sys.exit(main(json.loads(sys.argv[1]), comm))
    except PressureError as exc:
        log.error(f"Rank {comm.Get_rank()}: {exc}")
        comm.Abort(1)
