"""Task bundles shipped to the cluster and the result files they produce."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence, Tuple

import cloudpickle

from . import _entry

LOGGER = logging.getLogger(__name__)

BUNDLE_FILENAME = "bundle.pkl"
ENTRY_SCRIPT_NAME = "amlrun_foreach_entry.py"

__all__ = ["BUNDLE_FILENAME", "ENTRY_SCRIPT_NAME", "TaskBundle", "read_results"]


@dataclass
class TaskBundle:
    fn: Callable[[Any], Any]
    items: Sequence[Any]
    chunks: List[Tuple[int, int]]
    errorhandling: str = "stop"

    def write(self, staging_dir: Path) -> Path:
        """Write the bundle and the worker entry script into ``staging_dir``."""
        staging_dir = Path(staging_dir)
        staging_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(_entry.__file__, staging_dir / ENTRY_SCRIPT_NAME)
        path = staging_dir / BUNDLE_FILENAME
        with path.open("wb") as handle:
            cloudpickle.dump(
                {
                    "fn": self.fn,
                    "items": list(self.items),
                    "chunks": list(self.chunks),
                    "errorhandling": self.errorhandling,
                },
                handle,
            )
        LOGGER.debug("Wrote task bundle with %d items to %s", len(self.items), path)
        return path


def read_results(directory: Path) -> Dict[int, Dict[str, Any]]:
    """Collect every ``results_<rank>.pkl`` below ``directory``, keyed by item index."""
    records: Dict[int, Dict[str, Any]] = {}
    pattern = f"{_entry.RESULT_PREFIX}*{_entry.RESULT_SUFFIX}"
    files = sorted(Path(directory).rglob(pattern))
    for path in files:
        with path.open("rb") as handle:
            for record in cloudpickle.load(handle):
                records[record["index"]] = record
    LOGGER.debug("Read %d records from %d result files under %s", len(records), len(files), directory)
    return records
