"""
Retry helpers with exponential backoff and jitter for Azure ML control-plane calls.

Job submission, status polls and compute lookups go over HTTP to the workspace
and occasionally fail with throttling or gateway errors. Those are retried here;
everything else propagates to the caller unchanged.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Tuple, Type, TypeVar

from azure.core.exceptions import HttpResponseError, ServiceRequestError, ServiceResponseError

LOGGER = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass
class RetryPolicy:
    """Configuration for retry attempts."""

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.2
    retry_exceptions: Tuple[Type[BaseException], ...] = (
        ServiceRequestError,
        ServiceResponseError,
        HttpResponseError,
    )
    respect_retry_after: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be > 0")
        if self.max_delay < self.base_delay:
            self.max_delay = self.base_delay
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be between 0 and 1")


DEFAULT_POLICY = RetryPolicy()


def is_transient(exc: BaseException) -> bool:
    """Return True for errors worth another attempt."""
    if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
        return True
    if isinstance(exc, HttpResponseError):
        return getattr(exc, "status_code", None) in TRANSIENT_STATUS_CODES
    return False


def _compute_delay(policy: RetryPolicy, attempt: int, retry_after: Optional[float] = None) -> float:
    """Compute exponential backoff delay with optional jitter."""
    delay = min(policy.base_delay * (2 ** (attempt - 1)), policy.max_delay)
    if retry_after is not None:
        delay = max(delay, retry_after)
    if policy.jitter:
        jitter_amount = delay * policy.jitter
        delay = delay - jitter_amount + random.uniform(0, jitter_amount * 2)
    return max(delay, 0.0)


def _extract_retry_after(exc: BaseException) -> Optional[float]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or {}
    retry_after = headers.get("Retry-After") if hasattr(headers, "get") else None
    if retry_after is None:
        return None
    try:
        return float(retry_after)
    except (ValueError, TypeError):
        return None


def retry_call(
    func: Callable[..., Any],
    *args: Any,
    policy: RetryPolicy = DEFAULT_POLICY,
    is_retryable: Callable[[BaseException], bool] = is_transient,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    **kwargs: Any,
) -> Any:
    """Execute ``func`` and retry transient failures.

    The final exception is re-raised as is so callers can keep catching SDK
    error types such as ``ResourceNotFoundError``.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return func(*args, **kwargs)
        except policy.retry_exceptions as exc:
            if attempt >= policy.max_attempts or not is_retryable(exc):
                raise
            delay = _compute_delay(policy, attempt, _extract_retry_after(exc) if policy.respect_retry_after else None)
            LOGGER.warning(
                "Transient error from %s (attempt %d/%d), retrying in %.1fs: %s",
                getattr(func, "__qualname__", func),
                attempt,
                policy.max_attempts,
                delay,
                exc,
            )
            if on_retry:
                on_retry(attempt, exc, delay)
            time.sleep(delay)


def retry(
    *,
    policy: Optional[RetryPolicy] = None,
    is_retryable: Callable[[BaseException], bool] = is_transient,
) -> Callable[[F], F]:
    """Decorator applying retry logic to synchronous callables."""

    def decorator(func: F) -> F:
        effective_policy = policy or DEFAULT_POLICY

        def wrapped(*args: Any, **kwargs: Any) -> Any:
            return retry_call(func, *args, policy=effective_policy, is_retryable=is_retryable, **kwargs)

        wrapped.__name__ = getattr(func, "__name__", "wrapped")
        wrapped.__doc__ = func.__doc__
        return wrapped  # type: ignore[return-value]

    return decorator


def make_linearized_delays(policy: RetryPolicy, attempts: int) -> Iterable[float]:
    """Expose delays for testing purposes."""
    for attempt in range(1, attempts + 1):
        yield _compute_delay(policy, attempt)


__all__ = [
    "DEFAULT_POLICY",
    "RetryPolicy",
    "TRANSIENT_STATUS_CODES",
    "is_transient",
    "make_linearized_delays",
    "retry",
    "retry_call",
]
