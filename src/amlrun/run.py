"""Handles to remote job executions: status polling, metrics and artifacts."""

from __future__ import annotations

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from azure.ai.ml import MLClient
from mlflow.tracking import MlflowClient

from .core.exceptions import RunFailedError, RunTimeoutError
from .core.logging import run_context
from .core.retry import retry_call

LOGGER = logging.getLogger(__name__)

__all__ = ["Run", "RunStatus", "get_run_metrics"]


class RunStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    STARTING = "Starting"
    PROVISIONING = "Provisioning"
    PREPARING = "Preparing"
    QUEUED = "Queued"
    RUNNING = "Running"
    FINALIZING = "Finalizing"
    CANCEL_REQUESTED = "CancelRequested"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELED = "Canceled"
    NOT_RESPONDING = "NotResponding"
    PAUSED = "Paused"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RunStatus":
        if value is None:
            return cls.UNKNOWN
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_success(self) -> bool:
        return self is RunStatus.COMPLETED


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELED, RunStatus.NOT_RESPONDING})


def _tracking_uri(workspace: MLClient) -> str:
    ws = retry_call(workspace.workspaces.get, workspace.workspace_name)
    return ws.mlflow_tracking_uri


def get_run_metrics(workspace: MLClient, run_name: str, *, history: bool = False) -> Dict[str, Union[float, List[float]]]:
    """Read the metrics a job logged.

    Azure ML uses the job name as the mlflow run id. Without ``history`` each
    metric maps to its latest value; with it, to every logged value in step order.
    """
    client = MlflowClient(tracking_uri=_tracking_uri(workspace))
    mlflow_run = client.get_run(run_name)
    latest = dict(mlflow_run.data.metrics)
    if not history:
        return latest
    series: Dict[str, Union[float, List[float]]] = {}
    for key in sorted(latest):
        points = client.get_metric_history(run_name, key)
        series[key] = [point.value for point in sorted(points, key=lambda point: (point.step, point.timestamp))]
    return series


class Run:
    """A submitted job. Holds only the job name and the last fetched snapshot."""

    def __init__(self, workspace: MLClient, name: str, job: Any = None) -> None:
        self.workspace = workspace
        self.name = name
        self._job = job

    def __repr__(self) -> str:
        status = getattr(self._job, "status", None)
        return f"Run(name={self.name!r}, status={status!r})"

    @property
    def job(self) -> Any:
        if self._job is None:
            self.refresh()
        return self._job

    def refresh(self) -> "Run":
        self._job = retry_call(self.workspace.jobs.get, self.name)
        return self

    @property
    def status(self) -> RunStatus:
        self.refresh()
        return RunStatus.parse(getattr(self._job, "status", None))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def studio_url(self) -> Optional[str]:
        return getattr(self.job, "studio_url", None)

    def wait_for_completion(
        self,
        *,
        show_output: bool = False,
        poll_interval: float = 10.0,
        timeout: Optional[float] = None,
        raise_on_error: bool = True,
    ) -> RunStatus:
        """Block until the job reaches a terminal status."""
        with run_context(self.name):
            if show_output:
                self._stream()
            status = self._poll(poll_interval, timeout)
            LOGGER.info("Run %s finished with status %s", self.name, status.value)
            if raise_on_error and not status.is_success:
                raise RunFailedError(
                    f"Run {self.name} ended with status {status.value}; see {self.studio_url}",
                    run_name=self.name,
                    status=status.value,
                    metadata={"studio_url": self.studio_url},
                )
            return status

    def _stream(self) -> None:
        try:
            self.workspace.jobs.stream(self.name)
        except Exception as exc:
            # raised on job failure and on dropped connections alike; polling decides the outcome
            LOGGER.warning("Log stream for %s ended with error: %s", self.name, exc)

    def _poll(self, poll_interval: float, timeout: Optional[float]) -> RunStatus:
        deadline = time.monotonic() + timeout if timeout else None
        last_status: Optional[RunStatus] = None
        while True:
            status = self.status
            if status != last_status:
                LOGGER.info("Run %s status: %s", self.name, status.value)
                last_status = status
            if status.is_terminal:
                return status
            if deadline is not None and time.monotonic() >= deadline:
                raise RunTimeoutError(
                    f"Run {self.name} still {status.value} after {timeout:.0f}s",
                    metadata={"run": self.name, "status": status.value},
                )
            time.sleep(poll_interval)

    def get_metrics(self, *, history: bool = False) -> Dict[str, Union[float, List[float]]]:
        return get_run_metrics(self.workspace, self.name, history=history)

    def get_details(self) -> Dict[str, Any]:
        job = self.refresh().job
        creation = getattr(job, "creation_context", None)
        return {
            "name": self.name,
            "display_name": getattr(job, "display_name", None),
            "status": getattr(job, "status", None),
            "experiment_name": getattr(job, "experiment_name", None),
            "compute": getattr(job, "compute", None),
            "created_at": str(getattr(creation, "created_at", "")) or None,
            "tags": dict(getattr(job, "tags", None) or {}),
            "studio_url": getattr(job, "studio_url", None),
        }

    def cancel(self, *, wait: bool = True) -> None:
        LOGGER.info("Cancelling run %s", self.name)
        poller = retry_call(self.workspace.jobs.begin_cancel, self.name)
        if wait:
            poller.result()

    def download(self, path: Union[str, Path], *, output_name: Optional[str] = None, all: bool = False) -> Path:
        """Download job outputs into ``path`` and return it."""
        target = Path(path)
        target.mkdir(parents=True, exist_ok=True)
        kwargs: Dict[str, Any] = {"download_path": str(target)}
        if output_name:
            kwargs["output_name"] = output_name
        if all:
            kwargs["all"] = True
        retry_call(self.workspace.jobs.download, self.name, **kwargs)
        return target
