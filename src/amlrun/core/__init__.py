"""Shared building blocks: logging, exceptions and retry of SDK calls."""

from .exceptions import (
    AmlrunError,
    ComputeProvisioningError,
    ConfigError,
    IncompleteResultsError,
    ParallelTaskError,
    RunFailedError,
    RunTimeoutError,
    WorkspaceConfigError,
)
from .logging import configure_logging, get_logger, run_context
from .retry import RetryPolicy, retry, retry_call

__all__ = [
    "AmlrunError",
    "ComputeProvisioningError",
    "ConfigError",
    "IncompleteResultsError",
    "ParallelTaskError",
    "RetryPolicy",
    "RunFailedError",
    "RunTimeoutError",
    "WorkspaceConfigError",
    "configure_logging",
    "get_logger",
    "retry",
    "retry_call",
    "run_context",
]
