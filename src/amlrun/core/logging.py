"""Logging configuration with structured JSON support and run context."""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

# Name of the Azure ML job the current code path is acting on
_RUN_CONTEXT: ContextVar[str] = ContextVar("run_context", default="")

_NOISY_LOGGERS = (
    "azure",
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.identity",
    "msrest",
    "urllib3",
)


class JsonFormatter(logging.Formatter):
    """Format logs as structured JSON with the active run name."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "lineno": record.lineno,
            "run": _RUN_CONTEXT.get(),
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_context"):
            payload.update(record.extra_context)  # type: ignore

        return json.dumps(payload, default=str)


def get_run_context() -> str:
    return _RUN_CONTEXT.get()


@contextmanager
def run_context(run_name: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``run_name``."""
    token = _RUN_CONTEXT.set(run_name)
    try:
        yield
    finally:
        _RUN_CONTEXT.reset(token)


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    json_logs: bool = False,
) -> None:
    """Configure global logging."""
    handlers: list[Any] = [logging.StreamHandler(sys.stdout)]

    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "amlrun.log"))

    if json_logs:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level.upper(),
        handlers=handlers,
        force=True,
    )

    # The SDK logs every HTTP request at INFO
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_with_context(logger: logging.Logger, level: str, message: str, **context: Any) -> None:
    logger.log(getattr(logging, level.upper()), message, extra={"extra_context": context})


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance."""
    return logging.getLogger(name)
