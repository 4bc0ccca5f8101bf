"""Execution backends for :func:`amlrun.parallel.foreach`.

A backend receives the function, the items and the declared parallelism and
returns one record per processed item. Records are the dictionaries written by
the worker entry script: ``{"index", "ok", "value"}`` or ``{"index", "ok", "error"}``.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Literal, Optional, Sequence

import cloudpickle
from azure.ai.ml import MLClient, Output

from ..core.exceptions import RunTimeoutError
from ..environment import EnvironmentSpec
from ..estimator import Estimator
from ..experiment import Experiment
from . import _entry
from .bundle import BUNDLE_FILENAME, ENTRY_SCRIPT_NAME, TaskBundle, read_results
from .partition import chunk_bounds, total_workers

LOGGER = logging.getLogger(__name__)

RESULTS_OUTPUT = "results"

__all__ = [
    "AzureMLParallelBackend",
    "LocalParallelBackend",
    "ParallelBackend",
    "ParallelOptions",
    "SequentialBackend",
]


@dataclass
class ParallelOptions:
    node_count: int = 1
    process_count_per_node: int = 1
    experiment_name: Optional[str] = None
    job_timeout: Optional[int] = None
    packages: Sequence[str] = field(default_factory=tuple)
    errorhandling: str = "stop"

    def __post_init__(self) -> None:
        if self.node_count < 1 or self.process_count_per_node < 1:
            raise ValueError("node_count and process_count_per_node must be >= 1")
        if self.job_timeout is not None and self.job_timeout <= 0:
            raise ValueError("job_timeout must be > 0")

    @property
    def total_workers(self) -> int:
        return total_workers(self.node_count, self.process_count_per_node)


class ParallelBackend:
    """Base class; subclasses implement :meth:`execute`."""

    name = "base"

    def execute(
        self,
        fn: Callable[[Any], Any],
        items: Sequence[Any],
        options: ParallelOptions,
    ) -> Dict[int, Dict[str, Any]]:
        raise NotImplementedError

    def defaults(self) -> Dict[str, Any]:
        """Option values applied when the caller of ``foreach`` leaves them unset."""
        return {}


class SequentialBackend(ParallelBackend):
    """Runs every item in the calling process, in order."""

    name = "sequential"

    def execute(self, fn, items, options):
        records = _entry.run_chunk(fn, items, 0, len(items), options.errorhandling)
        return {record["index"]: record for record in records}


class LocalParallelBackend(ParallelBackend):
    """Fan items out over a local process or thread pool.

    Items are split exactly as on a cluster, one chunk per declared worker, so a
    dry run exercises the same partitioning and error handling as a remote job.
    """

    name = "local"

    def __init__(self, max_workers: Optional[int] = None, executor: Literal["process", "thread"] = "process") -> None:
        if executor not in ("process", "thread"):
            raise ValueError("executor must be 'process' or 'thread'")
        self.max_workers = max_workers
        self.executor = executor

    def execute(self, fn, items, options):
        chunks = [bounds for bounds in chunk_bounds(len(items), options.total_workers) if bounds[0] < bounds[1]]
        if not chunks:
            return {}
        workers = min(self.max_workers or len(chunks), len(chunks))
        LOGGER.info("Running %d items in %d chunks on %d local %s workers", len(items), len(chunks), workers, self.executor)
        if options.packages:
            LOGGER.debug("Local backend ignores packages %s", list(options.packages))

        if self.executor == "thread":
            pool: Any = ThreadPoolExecutor(max_workers=workers)
            futures = [
                pool.submit(_entry.run_chunk, fn, items, start, stop, options.errorhandling) for start, stop in chunks
            ]
        else:
            payload = cloudpickle.dumps((fn, list(items)))
            pool = ProcessPoolExecutor(max_workers=workers)
            futures = [
                pool.submit(_entry.run_serialized_chunk, payload, start, stop, options.errorhandling)
                for start, stop in chunks
            ]

        try:
            _, not_done = wait(futures, timeout=options.job_timeout)
            if not_done:
                raise RunTimeoutError(
                    f"Local parallel run exceeded {options.job_timeout}s",
                    metadata={"pending_chunks": len(not_done)},
                )
            records: Dict[int, Dict[str, Any]] = {}
            for future in futures:
                result = future.result()
                chunk_records = cloudpickle.loads(result) if isinstance(result, bytes) else result
                for record in chunk_records:
                    records[record["index"]] = record
            return records
        finally:
            pool.shutdown(wait=False, cancel_futures=True)


class AzureMLParallelBackend(ParallelBackend):
    """Run items as an MPI command job on an AmlCompute cluster.

    Every MPI process loads the same task bundle, picks its chunk by rank and
    writes ``results_<rank>.pkl`` to the job's ``results`` output, which is
    downloaded and merged once the job completes. The function is serialised
    with cloudpickle: functions defined in ``__main__`` travel by value, while
    functions from other modules need that module installed in the environment.
    """

    name = "azureml"

    def __init__(
        self,
        workspace: MLClient,
        compute: Any,
        *,
        environment: Optional[EnvironmentSpec] = None,
        experiment_name: str = "amlrun-foreach",
        node_count: int = 1,
        process_count_per_node: int = 1,
        job_timeout: Optional[int] = None,
        poll_interval: float = 15.0,
        show_output: bool = False,
        staging_root: Optional[Path] = None,
        keep_staging: bool = False,
    ) -> None:
        self.workspace = workspace
        self.compute_name = compute if isinstance(compute, str) else compute.name
        self.environment = environment or EnvironmentSpec()
        self.experiment_name = experiment_name
        self.node_count = node_count
        self.process_count_per_node = process_count_per_node
        self.job_timeout = job_timeout
        self.poll_interval = poll_interval
        self.show_output = show_output
        self.staging_root = Path(staging_root) if staging_root else None
        self.keep_staging = keep_staging
        self.last_run: Any = None

    def defaults(self) -> Dict[str, Any]:
        return {
            "node_count": self.node_count,
            "process_count_per_node": self.process_count_per_node,
            "experiment_name": self.experiment_name,
            "job_timeout": self.job_timeout,
        }

    def _estimator(self, staging: Path, options: ParallelOptions) -> Estimator:
        return Estimator(
            source_directory=staging,
            entry_script=ENTRY_SCRIPT_NAME,
            compute_target=self.compute_name,
            script_params={"bundle": BUNDLE_FILENAME},
            environment=self.environment.with_packages(options.packages),
            node_count=options.node_count,
            process_count_per_node=options.process_count_per_node,
            distributed_backend="mpi",
            max_run_duration_seconds=options.job_timeout,
        )

    def execute(self, fn, items, options):
        chunks = chunk_bounds(len(items), options.total_workers)
        if self.staging_root is not None:
            self.staging_root.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix="amlrun-foreach-", dir=self.staging_root))
        try:
            code_dir = staging / "code"
            TaskBundle(fn=fn, items=items, chunks=chunks, errorhandling=options.errorhandling).write(code_dir)
            experiment = Experiment(self.workspace, options.experiment_name or self.experiment_name)
            run = experiment.submit(
                self._estimator(code_dir, options),
                tags={"amlrun.foreach.items": str(len(items)), "amlrun.foreach.workers": str(len(chunks))},
                outputs={RESULTS_OUTPUT: Output(type="uri_folder")},
            )
            self.last_run = run
            LOGGER.info(
                "Dispatched %d items to %d x %d workers on '%s' as run %s",
                len(items),
                options.node_count,
                options.process_count_per_node,
                self.compute_name,
                run.name,
            )
            run.wait_for_completion(show_output=self.show_output, poll_interval=self.poll_interval)
            download_dir = run.download(staging / "download", output_name=RESULTS_OUTPUT)
            return read_results(download_dir)
        finally:
            if self.keep_staging:
                LOGGER.info("Kept staging directory %s", staging)
            else:
                shutil.rmtree(staging, ignore_errors=True)
