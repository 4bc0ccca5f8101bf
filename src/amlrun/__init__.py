"""amlrun: submit training jobs and run parallel batch inference on Azure Machine Learning."""

from .compute import (
    ComputeSpec,
    create_aml_compute,
    delete_compute,
    get_compute,
    get_or_create_compute,
    list_nodes_in_compute,
    update_aml_compute,
    wait_for_provisioning_completion,
)
from .environment import EnvironmentSpec
from .estimator import Estimator
from .experiment import Experiment
from .parallel import foreach, register_do_azureml_parallel, register_parallel_backend
from .run import Run, RunStatus, get_run_metrics
from .workflow import WorkflowResult, run_training_workflow
from .workspace import (
    WorkspaceConfig,
    find_workspace_config,
    get_workspace,
    load_workspace_from_config,
    write_workspace_config,
)

__version__ = "0.1.0"

__all__ = [
    "ComputeSpec",
    "EnvironmentSpec",
    "Estimator",
    "Experiment",
    "Run",
    "RunStatus",
    "WorkflowResult",
    "WorkspaceConfig",
    "create_aml_compute",
    "delete_compute",
    "find_workspace_config",
    "foreach",
    "get_compute",
    "get_or_create_compute",
    "get_run_metrics",
    "get_workspace",
    "list_nodes_in_compute",
    "load_workspace_from_config",
    "register_do_azureml_parallel",
    "register_parallel_backend",
    "run_training_workflow",
    "update_aml_compute",
    "wait_for_provisioning_completion",
    "write_workspace_config",
]
