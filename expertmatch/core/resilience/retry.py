"""
Retry With Backoff

Async retry policy for calls to slow or unreliable external systems (LLM
endpoint, embedding service, graph database).

Delay before attempt n (n >= 2) is
    min(base_delay * multiplier ** (n - 2), max_delay)
so with the defaults the waits are 1s, 2s, 4s ... capped at 10s.

Only transient failures are retried. Authentication and validation errors,
and every StructuralError, fail on the first attempt.
"""
import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from expertmatch.config import RetrySettings
from expertmatch.utils import get_logger
from expertmatch.utils.exceptions import LlmCallError, ProviderUnavailable, StructuralError

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})
NON_RETRYABLE_STATUS_CODES = frozenset({400, 401, 403, 404, 405, 413, 422})


def _status_code_of(exc: BaseException) -> Optional[int]:
    """Best-effort HTTP status extraction across client libraries."""
    for attr in ("status_code", "code", "http_status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(exc: BaseException) -> bool:
    """
    Classify an exception as transient (retry) or permanent (fail fast).

    Transient: timeouts, connection failures, httpx transport errors,
    HTTP 408/429/5xx, ProviderUnavailable.
    Permanent: StructuralError, auth/validation HTTP codes, ValueError/TypeError.
    """
    if isinstance(exc, StructuralError):
        return False
    if isinstance(exc, LlmCallError):
        return exc.retryable
    if isinstance(exc, ProviderUnavailable):
        return True
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError, httpx.TransportError)):
        return True

    status = _status_code_of(exc)
    if status is not None:
        if status in NON_RETRYABLE_STATUS_CODES:
            return False
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            return True

    if isinstance(exc, (ValueError, TypeError, KeyError, PermissionError)):
        return False

    # Unknown errors from remote clients are usually network hiccups
    return True


@dataclass(frozen=True)
class RetryWithBackoff:
    """Bounded exponential backoff."""
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    classifier: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    @classmethod
    def from_settings(cls, settings: RetrySettings, **overrides) -> "RetryWithBackoff":
        params = dict(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_seconds,
            multiplier=settings.multiplier,
            max_delay=settings.max_delay_seconds,
        )
        params.update(overrides)
        return cls(**params)

    def delay_for(self, attempt: int) -> float:
        """Delay before `attempt` (1-based; the first attempt has no delay)."""
        if attempt <= 1:
            return 0.0
        return min(self.base_delay * (self.multiplier ** (attempt - 2)), self.max_delay)

    async def execute(self, operation: Callable[[], Awaitable[T]], name: str = "operation") -> T:
        """
        Run `operation` until it succeeds, fails permanently, or attempts run out.

        Args:
            operation: zero-argument coroutine factory (called once per attempt)
            name: label used in log lines

        Returns:
            The operation's result.

        Raises:
            The last exception raised by the operation.
        """
        last_exc: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            delay = self.delay_for(attempt)
            if delay > 0:
                logger.debug(f"{name}: retry attempt {attempt} after {delay:.2f}s")
                await self.sleep(delay)
            try:
                result = await operation()
                if attempt > 1:
                    logger.info(f"{name}: succeeded after {attempt} attempt(s)")
                return result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_exc = exc
                if not self.classifier(exc):
                    logger.warning(f"{name}: non-retryable failure on attempt {attempt}: {exc}")
                    raise
                logger.warning(f"{name}: failed on attempt {attempt}/{self.max_attempts}: {exc}")

        logger.error(f"{name}: failed after {self.max_attempts} attempt(s)")
        raise last_exc


def retrying(policy: RetryWithBackoff, name: Optional[str] = None):
    """
    Decorator form of RetryWithBackoff for async callables.

        @retrying(RetryWithBackoff(max_attempts=2))
        async def fetch(...): ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        label = name or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await policy.execute(lambda: func(*args, **kwargs), name=label)

        return wrapper

    return decorator
