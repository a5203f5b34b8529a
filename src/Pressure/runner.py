"""Run the pressure solver via an mpiexec subprocess."""

import json
import os
import subprocess
import sys
import tempfile
from pathlib import Path


def mpiexec_command(n_ranks: int, module: str, *args: str) -> list:
    """``mpiexec -n N <python> -m <module> args...`` for the current interpreter."""
    return ["mpiexec", "-n", str(n_ranks), sys.executable, "-m", module, *args]


def mpi_env() -> dict:
    """Environment for spawned workers (allows more ranks than cores)."""
    env = os.environ.copy()
    src = str(Path(__file__).resolve().parents[1])
    env["PYTHONPATH"] = os.pathsep.join(p for p in (src, env.get("PYTHONPATH")) if p)
    env.setdefault("OMPI_MCA_rmaps_base_oversubscribe", "1")
    env.setdefault("PRTE_MCA_rmaps_default_mapping_policy", ":oversubscribe")
    return env


def run_solver(
    itot: int,
    jtot: int,
    ktot: int,
    npx: int = 1,
    npy: int = 1,
    output: str = None,
    timeout: float = 600,
    **kwargs,
) -> dict:
    """Solve on an ``npx x npy`` process grid and return the results row.

    Parameters
    ----------
    itot, jtot, ktot : int
        Global grid size.
    npx, npy : int
        Process grid; ``npx * npy`` ranks are spawned.
    output : str, optional
        Path to save HDF5 results (uses temp file if not provided)
    **kwargs
        Extra options passed to the worker: problem ('point' | 'sinusoidal'),
        halo_exchange, bc_bottom, bc_top, bc_bottom_value, bc_top_value and
        any MultigridConfig field.

    Returns
    -------
    dict
        Results with config and metrics (or 'error' key on failure)
    """
    import pandas as pd

    # Use temp file if no output path specified
    use_temp = output is None
    if use_temp:
        tmp = tempfile.NamedTemporaryFile(suffix=".h5", delete=False)
        output = tmp.name
        tmp.close()

    config = {"itot": itot, "jtot": jtot, "ktot": ktot, "npx": npx, "npy": npy, "output": output, **kwargs}
    cmd = mpiexec_command(npx * npy, "Pressure.helpers.runner_helper", json.dumps(config))

    proc = subprocess.run(cmd, capture_output=True, text=True, env=mpi_env(), timeout=timeout)

    if proc.returncode != 0:
        return {"error": proc.stderr or proc.stdout}

    # Load results from HDF5
    if not Path(output).exists():
        return {"error": "No output file created", "stderr": proc.stderr}

    result = pd.read_hdf(output, key="results").iloc[0].to_dict()

    # Clean up temp file if we created one
    if use_temp:
        Path(output).unlink(missing_ok=True)

    return result
