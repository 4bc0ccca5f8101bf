"""Metric logging for code running inside a job.

Azure ML points mlflow at the workspace tracking server and starts the run
before the entry script executes, so these calls need no setup there. Run
locally they log to mlflow's default store.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

import mlflow

LOGGER = logging.getLogger(__name__)

__all__ = ["log_list", "log_metric", "log_metrics"]


def log_metric(name: str, value: float, step: Optional[int] = None) -> None:
    mlflow.log_metric(name, float(value), step=step)


def log_metrics(metrics: Mapping[str, float], step: Optional[int] = None) -> None:
    mlflow.log_metrics({key: float(value) for key, value in metrics.items()}, step=step)


def log_list(name: str, values: Iterable[float]) -> None:
    """Log a sequence as one metric series, using each position as the step."""
    count = 0
    for step, value in enumerate(values):
        mlflow.log_metric(name, float(value), step=step)
        count += 1
    LOGGER.debug("Logged %d values for %s", count, name)
