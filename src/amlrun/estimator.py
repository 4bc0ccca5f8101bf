"""Estimator: a local description of how to run a training script remotely."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from azure.ai.ml import Input, MpiDistribution, PyTorchDistribution, command

from .environment import EnvironmentSpec

__all__ = ["Estimator", "render_script_params"]

DISTRIBUTED_BACKENDS = ("mpi", "pytorch")


def render_script_params(params: Mapping[str, Any]) -> List[str]:
    """Render a mapping as command-line arguments.

    Keys without a leading dash get ``--`` prepended. ``True`` becomes a bare
    flag, ``False`` and ``None`` are dropped, lists repeat their values after
    one flag.
    """
    args: List[str] = []
    for key, value in params.items():
        flag = key if key.startswith("-") else f"--{key}"
        if value is None or value is False:
            continue
        if value is True:
            args.append(flag)
        elif isinstance(value, (list, tuple)):
            args.append(flag)
            args.extend(str(item) for item in value)
        else:
            args.extend([flag, str(value)])
    return args


def _input_for(path: str) -> Input:
    basename = path.rstrip("/").rsplit("/", 1)[-1]
    if not path.endswith("/") and PurePosixPath(basename).suffix:
        return Input(type="uri_file", path=path)
    return Input(type="uri_folder", path=path)


@dataclass
class Estimator:
    source_directory: Union[str, Path]
    entry_script: str
    compute_target: str
    script_params: Dict[str, Any] = field(default_factory=dict)
    environment: Union[EnvironmentSpec, str, None] = None
    node_count: int = 1
    process_count_per_node: int = 1
    distributed_backend: Optional[str] = None
    max_run_duration_seconds: Optional[int] = None
    inputs: Dict[str, str] = field(default_factory=dict)
    environment_variables: Dict[str, str] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.node_count < 1:
            raise ValueError("node_count must be >= 1")
        if self.process_count_per_node < 1:
            raise ValueError("process_count_per_node must be >= 1")
        if self.distributed_backend is not None and self.distributed_backend not in DISTRIBUTED_BACKENDS:
            raise ValueError(f"distributed_backend must be one of {DISTRIBUTED_BACKENDS}, got '{self.distributed_backend}'")
        if self.distributed_backend is None and (self.node_count > 1 or self.process_count_per_node > 1):
            self.distributed_backend = "mpi"
        if self.max_run_duration_seconds is not None and self.max_run_duration_seconds <= 0:
            raise ValueError("max_run_duration_seconds must be > 0")
        if self.environment is None:
            self.environment = EnvironmentSpec()

    @classmethod
    def from_config(cls, config: Any, *, relative_to: Optional[Path] = None) -> "Estimator":
        section = config.estimator
        env_section = section.environment
        environment: Union[EnvironmentSpec, str] = (
            env_section.registered if env_section.registered else EnvironmentSpec.from_section(env_section)
        )
        return cls(
            source_directory=config.source_directory(relative_to),
            entry_script=section.entry_script,
            compute_target=config.compute.name,
            script_params=dict(section.script_params),
            environment=environment,
            node_count=section.node_count,
            process_count_per_node=section.process_count_per_node,
            distributed_backend=section.distributed_backend,
            max_run_duration_seconds=section.max_run_duration_seconds,
            inputs=dict(section.inputs),
            environment_variables=dict(section.environment_variables),
            tags=dict(config.experiment.tags),
        )

    def command_line(self, output_names: Sequence[str] = ()) -> str:
        parts = ["python", self.entry_script, *render_script_params(self.script_params)]
        rendered = " ".join(shlex.quote(part) for part in parts)
        # ${{...}} placeholders are substituted by the service and must stay unquoted
        for name in self.inputs:
            rendered += f" --{name} ${{{{inputs.{name}}}}}"
        for name in output_names:
            rendered += f" --{name} ${{{{outputs.{name}}}}}"
        return rendered

    def _distribution(self) -> Any:
        if self.distributed_backend == "mpi":
            return MpiDistribution(process_count_per_instance=self.process_count_per_node)
        if self.distributed_backend == "pytorch":
            return PyTorchDistribution(process_count_per_instance=self.process_count_per_node)
        return None

    def _environment(self) -> Any:
        if isinstance(self.environment, EnvironmentSpec):
            return self.environment.to_environment()
        return self.environment

    def to_job(
        self,
        experiment_name: str,
        *,
        display_name: Optional[str] = None,
        tags: Optional[Mapping[str, str]] = None,
        outputs: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Build the command job the service will execute."""
        env_vars = dict(self.environment_variables)
        if isinstance(self.environment, EnvironmentSpec):
            env_vars = {**self.environment.environment_variables, **env_vars}
        kwargs: Dict[str, Any] = {
            "code": str(self.source_directory),
            "command": self.command_line(list(outputs or ())),
            "environment": self._environment(),
            "compute": self.compute_target,
            "experiment_name": experiment_name,
            "instance_count": self.node_count,
            "tags": {**self.tags, **(tags or {})},
        }
        if display_name:
            kwargs["display_name"] = display_name
        if self.inputs:
            kwargs["inputs"] = {name: _input_for(path) for name, path in self.inputs.items()}
        if outputs:
            kwargs["outputs"] = dict(outputs)
        if env_vars:
            kwargs["environment_variables"] = env_vars
        distribution = self._distribution()
        if distribution is not None:
            kwargs["distribution"] = distribution
        job = command(**kwargs)
        if self.max_run_duration_seconds:
            job.set_limits(timeout=self.max_run_duration_seconds)
        return job
