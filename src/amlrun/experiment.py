"""Experiments group related runs under one name in the workspace."""

from __future__ import annotations

import itertools
import logging
from typing import Any, List, Mapping, Optional

from azure.ai.ml import MLClient

from .config.schema import EXPERIMENT_NAME_PATTERN
from .core.logging import run_context
from .core.retry import retry_call
from .estimator import Estimator
from .run import Run

LOGGER = logging.getLogger(__name__)

__all__ = ["Experiment"]


class Experiment:
    def __init__(self, workspace: MLClient, name: str) -> None:
        if not EXPERIMENT_NAME_PATTERN.fullmatch(name):
            raise ValueError(
                f"Invalid experiment name '{name}': use letters, digits, '-' or '_', "
                "starting with a letter or digit"
            )
        self.workspace = workspace
        self.name = name

    def __repr__(self) -> str:
        return f"Experiment(name={self.name!r})"

    def submit(
        self,
        estimator: Estimator,
        *,
        tags: Optional[Mapping[str, str]] = None,
        display_name: Optional[str] = None,
        outputs: Optional[Mapping[str, Any]] = None,
    ) -> Run:
        job = estimator.to_job(self.name, display_name=display_name, tags=tags, outputs=outputs)
        submitted = retry_call(self.workspace.jobs.create_or_update, job)
        run = Run(self.workspace, submitted.name, job=submitted)
        with run_context(run.name):
            LOGGER.info(
                "Submitted %s to experiment '%s' on %s: %s",
                estimator.entry_script,
                self.name,
                estimator.compute_target,
                getattr(submitted, "studio_url", None),
            )
        return run

    def list_runs(self, max_results: int = 50) -> List[Run]:
        """Most recent runs first, as reported by the service."""
        jobs = retry_call(self.workspace.jobs.list)
        matching = (job for job in jobs if getattr(job, "experiment_name", None) == self.name)
        return [Run(self.workspace, job.name, job=job) for job in itertools.islice(matching, max_results)]
