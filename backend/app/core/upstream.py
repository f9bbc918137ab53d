"""
Bounded calls to external collaborators (zone, promo and order stores).

Every call is limited by UPSTREAM_TIMEOUT_SECONDS. Timeouts and
connection-level database failures surface as UpstreamUnavailable so callers
can tell "not eligible" apart from "could not decide". Only idempotent reads
are retried.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

from backend.app.core.exceptions import UpstreamUnavailable
from backend.app.core.logging import get_logger
from backend.app.core.metrics import upstream_calls_total, upstream_call_duration_seconds

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 3.0
DEFAULT_READ_RETRIES = 1


def _limits() -> tuple[float, int]:
    try:
        from backend.app.core.settings import get_settings
        settings = get_settings()
        return settings.UPSTREAM_TIMEOUT_SECONDS, settings.UPSTREAM_READ_RETRIES
    except ValueError:
        # Settings not loadable (scripts, isolated unit tests)
        return DEFAULT_TIMEOUT_SECONDS, DEFAULT_READ_RETRIES


async def call_upstream(
    operation: str,
    call: Callable[[], Awaitable[T]],
    *,
    idempotent: bool = False,
    timeout: Optional[float] = None,
    retries: Optional[int] = None,
) -> T:
    """
    Run ``call()`` under a timeout.

    Args:
        operation: Name used in logs, metrics and the UpstreamUnavailable error.
        call: Zero-argument factory returning a fresh awaitable per attempt.
        idempotent: Reads may be retried, writes never are.
        timeout: Override of UPSTREAM_TIMEOUT_SECONDS.
        retries: Override of UPSTREAM_READ_RETRIES.
    """
    default_timeout, default_retries = _limits()
    timeout = default_timeout if timeout is None else timeout
    attempts = 1 + ((default_retries if retries is None else retries) if idempotent else 0)

    for attempt in range(1, attempts + 1):
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(call(), timeout=timeout)
        except asyncio.TimeoutError:
            upstream_calls_total.labels(operation=operation, result="timeout").inc()
            logger.warning("Upstream call timed out", operation=operation, attempt=attempt, timeout=timeout)
        except OperationalError as e:
            upstream_calls_total.labels(operation=operation, result="error").inc()
            logger.warning("Upstream call failed", operation=operation, attempt=attempt, error=str(e))
        except DBAPIError as e:
            if not e.connection_invalidated:
                raise
            upstream_calls_total.labels(operation=operation, result="error").inc()
            logger.warning("Upstream connection lost", operation=operation, attempt=attempt, error=str(e))
        else:
            upstream_calls_total.labels(operation=operation, result="ok").inc()
            upstream_call_duration_seconds.labels(operation=operation).observe(time.perf_counter() - started)
            return result

    upstream_calls_total.labels(operation=operation, result="unavailable").inc()
    logger.error("Upstream unavailable", operation=operation, attempts=attempts)
    raise UpstreamUnavailable(operation)
