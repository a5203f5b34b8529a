"""Experiment utilities.

Submodules:
- mlflow: MLflow run orchestration and logging
- hydra: Hydra callbacks (job log upload)

Import examples:
    from utils.mlflow import setup_mlflow_tracking, start_mlflow_run_context
"""

import warnings

# Suppress MLflow FutureWarning about filesystem backend deprecation
warnings.filterwarnings("ignore", category=FutureWarning, module="mlflow")
