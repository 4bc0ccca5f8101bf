"""Worker entry point for parallel jobs.

This file is copied next to ``bundle.pkl`` in the job's code snapshot and run
by every MPI process on the cluster. It must import nothing beyond the
standard library and cloudpickle.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import traceback
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import cloudpickle

LOGGER = logging.getLogger("amlrun.worker")

RESULT_PREFIX = "results_"
RESULT_SUFFIX = ".pkl"

_RANK_VARS = (
    ("OMPI_COMM_WORLD_RANK", "OMPI_COMM_WORLD_SIZE"),
    ("PMI_RANK", "PMI_SIZE"),
    ("RANK", "WORLD_SIZE"),
)


def resolve_rank(environ: Optional[Dict[str, str]] = None) -> Tuple[int, int]:
    """Return ``(rank, world_size)`` from the launcher's environment."""
    environ = os.environ if environ is None else environ
    for rank_var, size_var in _RANK_VARS:
        if rank_var in environ:
            return int(environ[rank_var]), int(environ.get(size_var, "1"))
    return 0, 1


def run_chunk(
    fn: Callable[[Any], Any],
    items: Sequence[Any],
    start: int,
    stop: int,
    errorhandling: str = "stop",
) -> List[Dict[str, Any]]:
    records: List[Dict[str, Any]] = []
    for index in range(start, stop):
        try:
            value = fn(items[index])
        except Exception as exc:
            records.append(
                {
                    "index": index,
                    "ok": False,
                    "error": {
                        "type": type(exc).__name__,
                        "message": str(exc),
                        "traceback": traceback.format_exc(),
                    },
                }
            )
            if errorhandling == "stop":
                break
            continue
        records.append({"index": index, "ok": True, "value": value})
    return records


def run_serialized_chunk(payload: bytes, start: int, stop: int, errorhandling: str) -> bytes:
    """Process-pool friendly wrapper: cloudpickle in, cloudpickle out."""
    fn, items = cloudpickle.loads(payload)
    return cloudpickle.dumps(run_chunk(fn, items, start, stop, errorhandling))


def result_path(output_dir: Path, rank: int) -> Path:
    return Path(output_dir) / f"{RESULT_PREFIX}{rank}{RESULT_SUFFIX}"


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Run one rank's share of a parallel job")
    parser.add_argument("--bundle", required=True, help="Path to the cloudpickled task bundle")
    parser.add_argument("--results", required=True, help="Directory receiving results_<rank>.pkl")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    rank, world_size = resolve_rank()

    with open(args.bundle, "rb") as handle:
        bundle = cloudpickle.load(handle)
    chunks = bundle["chunks"]
    if world_size != len(chunks):
        LOGGER.warning("World size %d does not match the %d planned chunks", world_size, len(chunks))
    start, stop = chunks[rank] if rank < len(chunks) else (0, 0)
    LOGGER.info("Rank %d/%d processing items [%d, %d)", rank, world_size, start, stop)

    records = run_chunk(bundle["fn"], bundle["items"], start, stop, bundle["errorhandling"])
    failures = sum(1 for record in records if not record["ok"])

    output_dir = Path(args.results)
    output_dir.mkdir(parents=True, exist_ok=True)
    with result_path(output_dir, rank).open("wb") as handle:
        cloudpickle.dump(records, handle)
    LOGGER.info("Rank %d wrote %d records (%d failed)", rank, len(records), failures)
    return 0


if __name__ == "__main__":
    sys.exit(main())
