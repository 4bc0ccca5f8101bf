"""Pydantic schemas defining job configuration contracts."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

EXPERIMENT_NAME_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_-]{0,254}")


class WorkspaceSection(BaseModel):
    config_path: Optional[str] = None
    subscription_id: Optional[str] = None
    resource_group: Optional[str] = None
    workspace_name: Optional[str] = None


class ExperimentSection(BaseModel):
    name: str = "amlrun-experiment"
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not EXPERIMENT_NAME_PATTERN.fullmatch(value):
            raise ValueError(
                f"Experiment name '{value}' must start with a letter or digit and contain only "
                "letters, digits, '-' or '_' (max 255 characters)"
            )
        return value


class ComputeSection(BaseModel):
    name: str = "cpu-cluster"
    vm_size: str = "STANDARD_D2_V2"
    min_nodes: int = Field(default=0, ge=0)
    max_nodes: int = Field(default=4, ge=1)
    idle_seconds_before_scaledown: int = Field(default=1800, ge=0)
    tier: Literal["dedicated", "low_priority"] = "dedicated"
    provisioning_timeout: Optional[float] = 1200.0

    @model_validator(mode="after")
    def _check_bounds(self) -> "ComputeSection":
        if self.min_nodes > self.max_nodes:
            raise ValueError("compute.min_nodes cannot exceed compute.max_nodes")
        return self


class EnvironmentSection(BaseModel):
    name: Optional[str] = None
    registered: Optional[str] = None
    image: str = "mcr.microsoft.com/azureml/openmpi4.1.0-ubuntu22.04:latest"
    python_version: str = "3.10"
    pip_packages: List[str] = Field(default_factory=list)
    conda_channels: List[str] = Field(default_factory=lambda: ["conda-forge"])
    environment_variables: Dict[str, str] = Field(default_factory=dict)


class EstimatorSection(BaseModel):
    source_directory: str = "."
    entry_script: str = "train.py"
    script_params: Dict[str, Any] = Field(default_factory=dict)
    environment: EnvironmentSection = Field(default_factory=EnvironmentSection)
    node_count: int = Field(default=1, ge=1)
    process_count_per_node: int = Field(default=1, ge=1)
    distributed_backend: Optional[Literal["mpi", "pytorch"]] = None
    max_run_duration_seconds: Optional[int] = Field(default=None, gt=0)
    inputs: Dict[str, str] = Field(default_factory=dict)
    environment_variables: Dict[str, str] = Field(default_factory=dict)


class RunSection(BaseModel):
    wait: bool = True
    show_output: bool = False
    poll_interval: float = Field(default=10.0, gt=0)
    timeout: Optional[float] = None
    teardown: bool = False
    metrics_history: bool = False


class LoggingSection(BaseModel):
    level: str = "INFO"
    log_dir: Optional[str] = None
    json_logs: bool = False


class JobConfig(BaseModel):
    workspace: WorkspaceSection = Field(default_factory=WorkspaceSection)
    experiment: ExperimentSection = Field(default_factory=ExperimentSection)
    compute: ComputeSection = Field(default_factory=ComputeSection)
    estimator: EstimatorSection = Field(default_factory=EstimatorSection)
    run: RunSection = Field(default_factory=RunSection)
    logging: LoggingSection = Field(default_factory=LoggingSection)

    model_config = {
        "extra": "forbid",
        "validate_assignment": True,
    }

    def source_directory(self, relative_to: Optional[Path] = None) -> Path:
        path = Path(self.estimator.source_directory).expanduser()
        if relative_to is not None and not path.is_absolute():
            path = Path(relative_to) / path
        return path
