"""The end-to-end training sequence: workspace, compute, submit, wait, metrics, teardown."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .compute import ComputeSpec, delete_compute, get_or_create_compute
from .config.loader import save_run_config
from .config.schema import JobConfig
from .core.exceptions import ConfigError
from .core.logging import run_context
from .estimator import Estimator
from .experiment import Experiment
from .run import RunStatus
from .workspace import get_workspace, load_workspace_from_config

LOGGER = logging.getLogger(__name__)

__all__ = ["WorkflowResult", "open_workspace", "run_training_workflow"]


@dataclass
class WorkflowResult:
    run_name: str
    status: Optional[RunStatus]
    studio_url: Optional[str] = None
    metrics: Dict[str, Union[float, List[float]]] = field(default_factory=dict)
    compute_deleted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_name": self.run_name,
            "status": self.status.value if self.status else None,
            "studio_url": self.studio_url,
            "metrics": self.metrics,
            "compute_deleted": self.compute_deleted,
        }


def open_workspace(config: JobConfig, *, credential: Any = None) -> Any:
    section = config.workspace
    if section.subscription_id and section.resource_group and section.workspace_name:
        return get_workspace(
            section.workspace_name,
            section.subscription_id,
            section.resource_group,
            credential=credential,
        )
    return load_workspace_from_config(section.config_path, credential=credential)


def run_training_workflow(
    config: JobConfig,
    *,
    workspace: Any = None,
    credential: Any = None,
    teardown: Optional[bool] = None,
    config_dir: Optional[Path] = None,
) -> WorkflowResult:
    """Run the whole tutorial sequence described by ``config``.

    When ``teardown`` is enabled the compute cluster is deleted afterwards,
    including when submission or the run itself fails.
    """
    teardown = config.run.teardown if teardown is None else teardown
    if teardown and not config.run.wait:
        raise ConfigError(
            "run.teardown requires run.wait: deleting the compute would kill a run that is not awaited",
            metadata={"compute": config.compute.name},
        )
    ws = workspace or open_workspace(config, credential=credential)
    spec = ComputeSpec.from_section(config.compute)
    result: Optional[WorkflowResult] = None
    try:
        get_or_create_compute(ws, spec, timeout=config.compute.provisioning_timeout)
        experiment = Experiment(ws, config.experiment.name)
        estimator = Estimator.from_config(config, relative_to=config_dir)
        run = experiment.submit(estimator)
        result = WorkflowResult(run_name=run.name, status=None, studio_url=run.studio_url)
        if config.logging.log_dir:
            save_run_config(config, Path(config.logging.log_dir) / run.name)
        if not config.run.wait:
            return result
        with run_context(run.name):
            result.status = run.wait_for_completion(
                show_output=config.run.show_output,
                poll_interval=config.run.poll_interval,
                timeout=config.run.timeout,
            )
            result.metrics = run.get_metrics(history=config.run.metrics_history)
            for key, value in sorted(result.metrics.items()):
                LOGGER.info("metric %s = %s", key, value)
        return result
    finally:
        if teardown:
            deleted = delete_compute(ws, spec.name)
            if result is not None:
                result.compute_deleted = deleted
