"""
Pressure Solver Runner - solves in-process for one rank, spawns mpiexec otherwise.

Usage:
    python run_solver.py grid.itot=96 grid.jtot=96 grid.ktot=48
    python run_solver.py grid.npx=3 grid.npy=3 problem=point
    python run_solver.py multigrid.weighting=half_weighting,full_weighting --multirun
"""

import json
import logging
import numbers
import os
import subprocess
import sys
from pathlib import Path

import hydra
from omegaconf import DictConfig, OmegaConf

log = logging.getLogger(__name__)

RESULTS_FILE = "results.h5"


def _get_hardware_info() -> dict:
    """Get hostname and CPU model for current process."""
    import platform
    import socket as sock

    return {"hostname": sock.gethostname(), "cpu_model": platform.processor() or "unknown"}


def _build_driver(cfg: DictConfig, comm):
    """Create the solver session from the grid/bc/multigrid config groups."""
    from Pressure import BoundaryConfig, GridConfig, MultigridConfig, SolverDriver

    grid_config = GridConfig(**OmegaConf.to_container(cfg.grid, resolve=True))
    bc = BoundaryConfig(**OmegaConf.to_container(cfg.bc, resolve=True))
    mg_config = MultigridConfig(**OmegaConf.to_container(cfg.multigrid, resolve=True))
    return SolverDriver(grid_config, bc, mg_config, comm=comm)


def _run_solve(cfg: DictConfig, comm, output: Path):
    """Build, solve and save results (called on every rank)."""
    from Pressure import discrete_source_term, point_source, sinusoidal_exact_solution

    driver = _build_driver(cfg, comm)
    grid = driver.grid

    if cfg.problem == "point":
        rhs = point_source(grid)
    elif cfg.problem == "sinusoidal":
        rhs = discrete_source_term(grid, sinusoidal_exact_solution(grid), driver.bc)
    else:
        raise ValueError(f"Unknown problem: {cfg.problem}")

    divergence = driver.new_field("divergence")
    divergence.interior[...] = rhs

    driver.solver.warmup()
    solution = driver.solve(divergence)

    all_hw = comm.gather({**_get_hardware_info(), "rank": comm.Get_rank()}, root=0)
    extra = {"problem": cfg.problem, "nodes": len({hw["hostname"] for hw in all_hw})} if all_hw else {}
    driver.solver.save_hdf5(str(output), extra=extra)

    if comm.Get_rank() == 0:
        m = solution.metrics
        log.info(
            f"Done: {m.cycles} cycles, {m.status.value}, residual={m.final_residual:.2e}, "
            f"time={m.wall_time:.3f}s"
        )


def _log_results(cfg: DictConfig, output: Path):
    """Log the saved results and residual timeseries to MLflow. Returns the run id."""
    import pandas as pd
    from Pressure import LocalMetrics
    from utils.mlflow.io import (
        log_metrics_dict,
        log_parameters,
        log_timeseries_metrics,
        setup_mlflow_tracking,
        start_mlflow_run_context,
    )

    row = pd.read_hdf(output, key="results").iloc[0].to_dict()
    ts = pd.read_hdf(output, key="timeseries")

    g = cfg.grid
    run_name = f"{g.itot}x{g.jtot}x{g.ktot}_p{g.npx}x{g.npy}_{cfg.multigrid.weighting}"

    setup_mlflow_tracking(mode=cfg.mlflow.mode)
    with start_mlflow_run_context(
        experiment_name=cfg.experiment_name,
        parent_run_name=f"{g.itot}x{g.jtot}x{g.ktot}",
        child_run_name=run_name,
    ) as run:
        params = {
            **OmegaConf.to_container(cfg.grid, resolve=True),
            **{f"bc_{k}": v for k, v in OmegaConf.to_container(cfg.bc, resolve=True).items()},
            **OmegaConf.to_container(cfg.multigrid, resolve=True),
            "problem": cfg.problem,
            "coarse_solver_used": row.get("coarse_solver_used"),
        }
        log_parameters({k: v for k, v in params.items() if v is not None})
        log_metrics_dict(
            {k: float(v) for k, v in row.items() if isinstance(v, numbers.Number) and k not in params}
        )
        log_timeseries_metrics(
            LocalMetrics(
                residual_history=ts["residual_history"].dropna().tolist(),
                cycle_times=ts["cycle_times"].dropna().tolist() if "cycle_times" in ts else [],
                halo_times=ts["halo_times"].dropna().tolist() if "halo_times" in ts else [],
            )
        )
        return run.info.run_id


@hydra.main(config_path="Experiments/hydra-conf", config_name="config", version_base=None)
def main(cfg: DictConfig):
    """Entry point - solves in-process or spawns MPI based on the process grid."""
    n_ranks = cfg.grid.npx * cfg.grid.npy
    output = Path.cwd() / RESULTS_FILE
    log.info(f"{cfg.problem}, grid={cfg.grid.itot}x{cfg.grid.jtot}x{cfg.grid.ktot}, ranks={n_ranks}")

    if n_ranks == 1:
        from mpi4py import MPI

        _run_solve(cfg, MPI.COMM_WORLD, output)
    elif not _spawn_mpi(cfg, n_ranks, output):
        return None

    if cfg.mlflow.mode == "off":
        return None
    return _log_results(cfg, output)


def _spawn_mpi(cfg: DictConfig, n_ranks: int, output: Path) -> bool:
    """Run this script under mpiexec with the resolved config. Returns success."""
    mpi = cfg.get("mpi", {})
    env = os.environ.copy()
    env["MPI_SUBPROCESS"] = "1"

    cmd = ["mpiexec", "-n", str(n_ranks)]
    if mpi.get("bind_to"):
        cmd.extend(["--report-bindings", "--bind-to", str(mpi.bind_to)])
    if mpi.get("oversubscribe"):
        cmd.append("--oversubscribe")

    payload = {"cfg": OmegaConf.to_container(cfg, resolve=True), "output": str(output)}
    cmd.extend([sys.executable, os.path.abspath(__file__), json.dumps(payload)])

    result = subprocess.run(cmd, capture_output=True, text=True, env=env, timeout=mpi.get("timeout", 600))
    for line in (result.stdout or "").strip().split("\n"):
        if line:
            log.info(line)
    for line in (result.stderr or "").strip().split("\n"):
        if line:
            log.warning(line) if "error" in line.lower() else log.info(line)

    if result.returncode != 0:
        log.error(f"mpiexec exited with code {result.returncode}")
        return False
    return True


def _run_mpi_worker(payload: dict, comm):
    """Solve inside the mpiexec subprocess; fatal setup/communication errors abort all ranks."""
    from Pressure import PressureError

    cfg = OmegaConf.create(payload["cfg"])
    try:
        _run_solve(cfg, comm, Path(payload["output"]))
    except PressureError as exc:
        log.error(f"Rank {comm.Get_rank()}: {type(exc).__name__}: {exc}")
        comm.Abort(1)


if __name__ == "__main__":
    if os.environ.get("MPI_SUBPROCESS"):
        from mpi4py import MPI

        logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
        _run_mpi_worker(json.loads(sys.argv[1]), MPI.COMM_WORLD)
    else:
        main()
