"""Job configuration loading.

Loads and validates YAML job files with ``key=value`` override support using Pydantic.
"""

from .loader import load_config, save_run_config
from .schema import JobConfig

__all__ = ["JobConfig", "load_config", "save_run_config"]
