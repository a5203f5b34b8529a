"""Tests for the MPI worker entry points, run in-process on one rank."""

import json

import numpy as np
import pandas as pd
from mpi4py import MPI

from Pressure.helpers import mpicheck, runner_helper
from Pressure.runner import mpi_env, mpiexec_command


def test_point_source_diagnostics_symmetric():
    n = 8
    k, j, i = np.meshgrid(np.arange(n), np.arange(n), np.arange(n), indexing="ij")
    dist = (k - 4) ** 2 + np.minimum((j - 4) % n, (4 - j) % n) ** 2 + np.minimum((i - 4) % n, (4 - i) % n) ** 2
    p = -1.0 / (1.0 + dist)
    d = runner_helper.point_source_diagnostics(p, (4, 4, 4))
    assert d["asymmetry"] == 0.0
    assert d["peak_at_source"] == 1
    assert 0.0 < d["far_field_ratio"] < 0.1


def test_point_source_diagnostics_detects_asymmetry():
    p = np.zeros((4, 4, 4))
    p[2, 2, 2] = -1.0
    p[2, 2, 3] = -0.5
    d = runner_helper.point_source_diagnostics(p, (2, 2, 2))
    assert d["asymmetry"] == 0.5


def test_main_writes_results(tmp_path, capsys):
    output = tmp_path / "results.h5"
    config = {"itot": 8, "jtot": 8, "ktot": 8, "tolerance": 1e-10, "output": str(output)}
    assert runner_helper.main(config, MPI.COMM_SELF) == 0
    assert f"RESULT:{output}" in capsys.readouterr().out

    row = pd.read_hdf(output, key="results").iloc[0]
    assert bool(row["converged"])
    assert row["problem"] == "point"
    assert row["peak_at_source"] == 1
    assert row["asymmetry"] < 1e-6


def test_main_sinusoidal(tmp_path):
    output = tmp_path / "results.h5"
    config = {
        "itot": 8, "jtot": 8, "ktot": 8, "problem": "sinusoidal",
        "bc_bottom": "neumann", "tolerance": 1e-10, "output": str(output),
    }
    runner_helper.main(config, MPI.COMM_SELF)
    row = pd.read_hdf(output, key="results").iloc[0]
    assert row["rms_error"] < 1e-8
    assert row["bc_bottom"] == "neumann"


def test_mpicheck_single_rank(capsys):
    config = {"itot": 8, "jtot": 6, "ktot": 4, "igc": 2, "jgc": 2}
    assert mpicheck.main(config, MPI.COMM_SELF) == 0
    assert "mpicheck: OK" in capsys.readouterr().out


def test_mpiexec_command():
    cmd = mpiexec_command(9, "Pressure.helpers.mpicheck", json.dumps({"itot": 6}))
    assert cmd[:3] == ["mpiexec", "-n", "9"]
    assert cmd[4:6] == ["-m", "Pressure.helpers.mpicheck"]


def test_mpi_env_allows_oversubscription():
    env = mpi_env()
    assert env["OMPI_MCA_rmaps_base_oversubscribe"] == "1"
    assert "PYTHONPATH" in env
