"""Runtime error classification with exponential backoff retry.

Classifies container runtime failures as retryable (transient) or
permanent, and maps raw exceptions onto the flowhub error taxonomy so
callers see RUNTIME_UNAVAILABLE / OPERATION_TIMEOUT / RUNTIME_ERROR with
instance and operation context.

Usage:
    from flowhub.core.retryable import to_flowhub_error, with_retry

    try:
        await runtime.bring_up(descriptor)
    except Exception as exc:
        raise to_flowhub_error(exc, instance_id=iid, operation="start") from exc

    await with_retry(lambda: runtime.remove_volume(name))
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

from flowhub.core.errors import (
    FlowHubError,
    OperationTimeoutError,
    RuntimeUnavailableError,
    TransientRuntimeError,
)
from flowhub.core.logging_schema import ErrorClass

logger = logging.getLogger(__name__)

T = TypeVar("T")


class VolumeInUseError(Exception):
    """Volume still referenced by a container (Docker 409 on remove)."""


# =============================================================================
# httpx error classification
# =============================================================================

HTTPX_UNREACHABLE = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
)

HTTPX_RETRYABLE = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.RemoteProtocolError,
)


def is_httpx_retryable(exc: Exception) -> bool:
    """Check if httpx exception is retryable."""
    if isinstance(exc, HTTPX_RETRYABLE):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return True
        if 400 <= status < 500:
            return False
        return status >= 500
    return False


def is_retryable(exc: Exception) -> bool:
    """Check if error is retryable (transient)."""
    if isinstance(exc, (asyncio.TimeoutError, VolumeInUseError)):
        return True
    if isinstance(exc, FlowHubError):
        return exc.error_class in (ErrorClass.TRANSIENT, ErrorClass.TIMEOUT)
    return is_httpx_retryable(exc)


def classify_error(exc: Exception) -> ErrorClass:
    """Classify error for structured logging."""
    if isinstance(exc, FlowHubError):
        return exc.error_class
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorClass.TIMEOUT
    if isinstance(exc, HTTPX_UNREACHABLE):
        return ErrorClass.UNAVAILABLE
    if is_retryable(exc):
        return ErrorClass.TRANSIENT
    return ErrorClass.PERMANENT


def _reason(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            message = exc.response.json().get("message")
        except ValueError:
            message = None
        return f"HTTP {exc.response.status_code}: {message or exc.response.text[:200]}"
    return str(exc) or type(exc).__name__


def to_flowhub_error(
    exc: Exception,
    *,
    instance_id: str | None = None,
    operation: str | None = None,
    timeout: float | None = None,
) -> FlowHubError:
    """Map a raw runtime exception onto the error taxonomy.

    FlowHubError instances pass through unchanged.
    """
    if isinstance(exc, FlowHubError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return OperationTimeoutError(
            timeout or 0.0, instance_id=instance_id, operation=operation
        )
    if isinstance(exc, HTTPX_UNREACHABLE):
        return RuntimeUnavailableError(
            instance_id=instance_id, operation=operation, reason=_reason(exc)
        )
    return TransientRuntimeError(
        _reason(exc), instance_id=instance_id, operation=operation
    )


async def bounded(
    awaitable: Awaitable[T],
    timeout: float,
    *,
    instance_id: str | None = None,
    operation: str | None = None,
) -> T:
    """Await under a deadline, raising taxonomy errors on failure."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except Exception as exc:
        raise to_flowhub_error(
            exc, instance_id=instance_id, operation=operation, timeout=timeout
        ) from exc


# =============================================================================
# Retry utility
# =============================================================================


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> T:
    """Execute async operation with exponential backoff retry.

    Only retries for retryable errors (transient failures).
    Non-retryable errors are raised immediately.

    Args:
        coro_factory: Factory function that creates new coroutine for each attempt
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 30.0)
    """
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except Exception as exc:
            error_class = classify_error(exc)
            if not is_retryable(exc):
                logger.warning(
                    "Permanent error (not retrying): %s",
                    exc,
                    extra={"error_class": error_class, "attempt": attempt + 1},
                )
                raise

            if attempt == max_retries:
                logger.error(
                    "Max retries exceeded (%d attempts): %s",
                    max_retries + 1,
                    exc,
                    extra={"error_class": error_class, "attempt": attempt + 1},
                )
                raise

            delay = min(base_delay * (2**attempt), max_delay)
            # Jitter: 50% ~ 150% of delay
            jittered_delay = delay * (0.5 + random.random())
            logger.warning(
                "Retryable error (attempt %d/%d, retry in %.1fs): %s",
                attempt + 1,
                max_retries + 1,
                jittered_delay,
                exc,
                extra={
                    "error_class": error_class,
                    "attempt": attempt + 1,
                    "delay": jittered_delay,
                },
            )
            await asyncio.sleep(jittered_delay)

    raise RuntimeError("Unexpected state in with_retry")
