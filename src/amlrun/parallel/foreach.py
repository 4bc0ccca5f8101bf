"""``foreach``: apply a function to every item on the registered parallel backend."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from azure.ai.ml import MLClient

from ..core.exceptions import IncompleteResultsError, ParallelTaskError
from .backends import AzureMLParallelBackend, ParallelBackend, ParallelOptions, SequentialBackend

LOGGER = logging.getLogger(__name__)

ERROR_HANDLING_MODES = ("stop", "remove", "pass")

_LOCK = threading.Lock()
_REGISTERED: Optional[ParallelBackend] = None

__all__ = [
    "ERROR_HANDLING_MODES",
    "TaskFailure",
    "foreach",
    "register_do_azureml_parallel",
    "register_parallel_backend",
    "registered_backend",
    "reset_parallel_backend",
]


@dataclass(frozen=True)
class TaskFailure:
    """Placeholder kept in the results for a failed item when ``errorhandling="pass"``."""

    index: int
    error_type: str
    message: str
    traceback: str = ""

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TaskFailure":
        error = record.get("error") or {}
        return cls(
            index=record["index"],
            error_type=error.get("type", "Exception"),
            message=error.get("message", ""),
            traceback=error.get("traceback", ""),
        )


def register_parallel_backend(backend: ParallelBackend) -> ParallelBackend:
    """Make ``backend`` the default for every later :func:`foreach` call."""
    global _REGISTERED
    with _LOCK:
        _REGISTERED = backend
    LOGGER.info("Registered parallel backend '%s'", backend.name)
    return backend


def register_do_azureml_parallel(workspace: MLClient, compute: Any, **defaults: Any) -> AzureMLParallelBackend:
    """Register an Azure ML backend bound to ``workspace`` and ``compute``.

    Keyword arguments are forwarded to :class:`AzureMLParallelBackend`
    (``node_count``, ``process_count_per_node``, ``environment`` and so on).
    """
    backend = AzureMLParallelBackend(workspace, compute, **defaults)
    register_parallel_backend(backend)
    return backend


def registered_backend() -> ParallelBackend:
    with _LOCK:
        return _REGISTERED if _REGISTERED is not None else SequentialBackend()


def reset_parallel_backend() -> None:
    global _REGISTERED
    with _LOCK:
        _REGISTERED = None


def _collect(records: Dict[int, Dict[str, Any]], n_items: int, errorhandling: str) -> List[Any]:
    failures = sorted(index for index, record in records.items() if not record["ok"])
    if failures and errorhandling == "stop":
        failure = TaskFailure.from_record(records[failures[0]])
        raise ParallelTaskError(
            f"Task {failure.index} failed with {failure.error_type}: {failure.message}",
            index=failure.index,
            remote_traceback=failure.traceback,
            metadata={"failed_indices": failures},
        )

    missing = [index for index in range(n_items) if index not in records]
    if missing:
        raise IncompleteResultsError(
            f"{len(missing)} of {n_items} tasks returned no result (first missing: {missing[0]})",
            missing=missing,
        )

    results: List[Any] = []
    for index in range(n_items):
        record = records[index]
        if record["ok"]:
            results.append(record["value"])
        elif errorhandling == "pass":
            results.append(TaskFailure.from_record(record))
    if failures:
        LOGGER.warning("%d of %d tasks failed (errorhandling=%s)", len(failures), n_items, errorhandling)
    return results


def _pick(value: Any, defaults: Dict[str, Any], key: str, fallback: Any) -> Any:
    if value is not None:
        return value
    return defaults.get(key, fallback)


def foreach(
    fn: Callable[[Any], Any],
    items: Iterable[Any],
    *,
    combine: Optional[Callable[[List[Any]], Any]] = None,
    errorhandling: str = "stop",
    packages: Sequence[str] = (),
    node_count: Optional[int] = None,
    process_count_per_node: Optional[int] = None,
    experiment_name: Optional[str] = None,
    job_timeout: Optional[int] = None,
    backend: Optional[ParallelBackend] = None,
) -> Any:
    """Apply ``fn`` to every item and return the results in item order.

    Args:
        fn: Called once per item. On a remote backend it runs on the cluster,
            so everything it references must be serialisable with cloudpickle.
        items: The work items. Materialised into a list before dispatch.
        combine: Receives the ordered result list; its return value is returned.
        errorhandling: ``stop`` raises on the first failed item, ``remove``
            drops failed items, ``pass`` keeps a :class:`TaskFailure` in place.
        packages: Extra pip requirements installed on remote workers.
        node_count: Nodes to run on. Defaults to the backend's setting.
        process_count_per_node: Worker processes per node.
        experiment_name: Experiment the remote job is filed under.
        job_timeout: Seconds before the job is stopped.
        backend: Overrides the registered backend for this call.
    """
    if errorhandling not in ERROR_HANDLING_MODES:
        raise ValueError(f"errorhandling must be one of {ERROR_HANDLING_MODES}, got '{errorhandling}'")
    items = list(items)
    combine = combine or (lambda results: results)
    if not items:
        return combine([])

    active = backend or registered_backend()
    defaults = active.defaults()
    options = ParallelOptions(
        node_count=_pick(node_count, defaults, "node_count", 1),
        process_count_per_node=_pick(process_count_per_node, defaults, "process_count_per_node", 1),
        experiment_name=_pick(experiment_name, defaults, "experiment_name", None),
        job_timeout=_pick(job_timeout, defaults, "job_timeout", None),
        packages=tuple(packages),
        errorhandling=errorhandling,
    )
    LOGGER.info(
        "foreach over %d items on '%s' backend (%d x %d workers)",
        len(items),
        active.name,
        options.node_count,
        options.process_count_per_node,
    )
    records = active.execute(fn, items, options)
    return combine(_collect(records, len(items), errorhandling))
