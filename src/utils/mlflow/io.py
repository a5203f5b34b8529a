"""MLflow I/O utilities for pressure solver experiments.

This module provides helpers for:
- Setting up MLflow tracking (local file store or Databricks).
- Orchestrating MLflow runs (parent run per grid size, nested run per solve).
- Logging parameters, metrics and per-cycle timeseries.
"""

import logging
import os
import time
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path

import mlflow

log = logging.getLogger(__name__)

PROJECT_PREFIX = "/Shared/Pressure-Multigrid"


def setup_mlflow_tracking(mode: str = "local"):
    """Configure the MLflow tracking backend.

    Parameters
    ----------
    mode : str
        "databricks", "local" (./mlruns) or "off" (leave the URI untouched).
    """
    if mode == "databricks":
        try:
            mlflow.login(backend="databricks", interactive=False)
            mlflow.set_tracking_uri("databricks")
        except Exception as e:
            raise RuntimeError(
                "MLflow Databricks setup failed. Ensure credentials are configured."
            ) from e
        log.info("Connected to Databricks MLflow tracking.")
    elif mode == "local":
        mlruns_uri = f"file://{Path.cwd() / 'mlruns'}"
        mlflow.set_tracking_uri(mlruns_uri)
        log.info(f"Using local MLflow tracking backend: {mlruns_uri}")
    elif mode != "off":
        log.warning(f"Unknown MLflow mode '{mode}'. Using existing URI: {mlflow.get_tracking_uri()}")


def _experiment_name(name: str) -> str:
    if mlflow.get_tracking_uri() == "databricks" and not name.startswith("/"):
        return f"{PROJECT_PREFIX}/{name}"
    return name


@contextmanager
def start_mlflow_run_context(experiment_name: str, parent_run_name: str, child_run_name: str):
    """Start a nested run below the (reused) parent run ``parent_run_name``."""
    experiment_name = _experiment_name(experiment_name)
    mlflow.set_experiment(experiment_name)
    exp = mlflow.get_experiment_by_name(experiment_name)

    client = mlflow.tracking.MlflowClient()
    parent_runs = client.search_runs(
        experiment_ids=[exp.experiment_id],
        filter_string=f"tags.mlflow.runName = '{parent_run_name}' AND tags.is_parent = 'true'",
        max_results=1,
    )
    parent_run_id = parent_runs[0].info.run_id if parent_runs else None

    with mlflow.start_run(run_id=parent_run_id, run_name=parent_run_name, tags={"is_parent": "true"}):
        with mlflow.start_run(run_name=child_run_name, nested=True) as child_run:
            env = "hpc" if os.environ.get("LSB_JOBID") or os.environ.get("SLURM_JOB_ID") else "local"
            mlflow.set_tag("environment", env)
            log.info(f"Started MLflow run '{child_run.info.run_name}' ({child_run.info.run_id}) [{env}]")
            yield child_run


def log_parameters(params: dict):
    """Log a dictionary of parameters to the active MLflow run."""
    mlflow.log_params(params)


def log_metrics_dict(metrics: dict):
    """Log a dictionary of metrics to the active MLflow run, filtering out None values."""
    mlflow.log_metrics({k: v for k, v in metrics.items() if v is not None})


def log_timeseries_metrics(timeseries_data: object):
    """Log each list of a timeseries dataclass as a step-based metric."""
    if not mlflow.active_run():
        return
    client = mlflow.tracking.MlflowClient()
    run_id = mlflow.active_run().info.run_id
    timestamp = int(time.time() * 1000)

    metrics = [
        mlflow.entities.Metric(name, float(value), timestamp, step)
        for name, values in asdict(timeseries_data).items()
        for step, value in enumerate(values or [])
    ]
    for i in range(0, len(metrics), 1000):
        client.log_batch(run_id=run_id, metrics=metrics[i : i + 1000], synchronous=True)
    if metrics:
        log.info(f"Logged {len(metrics)} time-series metrics.")
