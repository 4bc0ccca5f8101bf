"""Parallel batch execution with a ``foreach``-style interface.

Register a backend once, then call :func:`foreach` with a per-item function::

    register_do_azureml_parallel(ws, "r-cluster")
    predictions = foreach(predict_row, rows, node_count=3, process_count_per_node=2)
"""

from .backends import (
    AzureMLParallelBackend,
    LocalParallelBackend,
    ParallelBackend,
    ParallelOptions,
    SequentialBackend,
)
from .foreach import (
    TaskFailure,
    foreach,
    register_do_azureml_parallel,
    register_parallel_backend,
    registered_backend,
    reset_parallel_backend,
)
from .partition import chunk_bounds

__all__ = [
    "AzureMLParallelBackend",
    "LocalParallelBackend",
    "ParallelBackend",
    "ParallelOptions",
    "SequentialBackend",
    "TaskFailure",
    "chunk_bounds",
    "foreach",
    "register_do_azureml_parallel",
    "register_parallel_backend",
    "registered_backend",
    "reset_parallel_backend",
]
