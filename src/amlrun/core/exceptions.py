"""Common exception hierarchy used across amlrun."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(eq=False)
class AmlrunError(RuntimeError):
    message: str
    code: str = "amlrun_error"
    metadata: Dict[str, Any] = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.metadata is None:
            self.metadata = {}

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "metadata": self.metadata}


@dataclass(eq=False)
class ConfigError(AmlrunError):
    code: str = "config_error"


@dataclass(eq=False)
class WorkspaceConfigError(ConfigError):
    code: str = "workspace_config_error"


@dataclass(eq=False)
class ComputeProvisioningError(AmlrunError):
    code: str = "compute_provisioning_error"


@dataclass(eq=False)
class RunFailedError(AmlrunError):
    code: str = "run_failed"
    run_name: str = ""
    status: str = ""


@dataclass(eq=False)
class RunTimeoutError(AmlrunError):
    code: str = "run_timeout"


@dataclass(eq=False)
class ParallelTaskError(AmlrunError):
    """A task inside a parallel job raised and error handling was ``stop``."""

    code: str = "parallel_task_error"
    index: int = -1
    remote_traceback: Optional[str] = None


@dataclass(eq=False)
class IncompleteResultsError(AmlrunError):
    code: str = "incomplete_results"
    missing: List[int] = field(default_factory=list)
