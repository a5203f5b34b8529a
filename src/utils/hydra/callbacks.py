"""Hydra callbacks for MLflow integration.

MLflowLogCallback uploads the Hydra job log, and any HDF5 result files the
job wrote into its output directory, to the MLflow run of the job once it
has finished. The job returns its MLflow run id, which is how the callback
finds the run after the job's own run context has closed.
"""

import logging
from pathlib import Path
from typing import Any

from hydra.core.utils import JobReturn
from hydra.experimental.callback import Callback
from omegaconf import DictConfig

log = logging.getLogger(__name__)


class MLflowLogCallback(Callback):
    """Attach job output to the MLflow run of a solver job.

    Configuration (in config.yaml):

    .. code-block:: yaml

        hydra:
          callbacks:
            mlflow_log:
              _target_: utils.hydra.callbacks.MLflowLogCallback
              artifact_path: logs
    """

    def __init__(self, artifact_path: str = "logs", results_path: str = "results") -> None:
        self.artifact_path = artifact_path
        self.results_path = results_path

    def on_job_end(self, config: DictConfig, job_return: JobReturn, **kwargs: Any) -> None:
        import mlflow
        from hydra.core.hydra_config import HydraConfig

        run_id = job_return.return_value if isinstance(job_return.return_value, str) else None
        if run_id is None:
            log.debug("Job did not report an MLflow run, skipping log upload")
            return

        hc = HydraConfig.get()
        output_dir = Path(hc.runtime.output_dir)
        log_file = output_dir / f"{hc.job.name}.log"

        client = mlflow.tracking.MlflowClient()
        if log_file.exists():
            client.log_artifact(run_id, str(log_file), artifact_path=self.artifact_path)
            log.info(f"Uploaded job log to MLflow: {log_file.name}")
        else:
            log.debug(f"Job log not found: {log_file}")

        for h5 in sorted(output_dir.glob("*.h5")):
            client.log_artifact(run_id, str(h5), artifact_path=self.results_path)
