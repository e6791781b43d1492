"""
Retry handling with backoff.
Wraps a detail fetch so transient failures are retried and every call
ends in a structured outcome instead of an exception.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple

import httpx

from ..config import RetryConfig
from ..errors import HttpStatusError, TransientFetchError
from ..models import FetchFailure, FetchOutcome, FetchResult, WorkItem
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

_CONFIGURED = object()


def describe_error(exc: BaseException) -> str:
    """One-line description of an exception for logs and the ledger."""
    if isinstance(exc, asyncio.TimeoutError):
        return "Timed out"
    message = str(exc).strip()
    name = type(exc).__name__
    return f"{name}: {message}" if message else name


class RetryHandler:
    """Manages retry logic with backoff for one crawl run."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        backoff: Optional[Callable[[int], float]] = None,
    ):
        """
        Initialize retry handler.

        Args:
            config: RetryConfig instance, uses defaults if None
            rate_limiter: Shared RateLimiter, or None for no pacing
            backoff: Delay in seconds before retry k (1-based); overrides
                the configured strategy
        """
        self.config = config or RetryConfig()
        self.rate_limiter = rate_limiter
        self.backoff = backoff or self.config.delay_for
        self._total_attempts = 0
        self._total_retries = 0

    def is_transient(self, exc: BaseException) -> bool:
        """
        Whether a failure is worth retrying.

        Timeouts, connection problems and the configured status codes are
        transient. Everything else (other 4xx, parse errors, bad data) is not.
        """
        if isinstance(exc, (TransientFetchError, asyncio.TimeoutError)):
            return True
        if isinstance(exc, HttpStatusError):
            return exc.status_code in self.config.retryable_statuses
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code in self.config.retryable_statuses
        if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
            return True
        return False

    def next_delay(self, retry_number: int, exc: BaseException) -> float:
        """Delay before retry `retry_number`, honouring Retry-After."""
        delay = self.backoff(retry_number)
        retry_after = getattr(exc, "retry_after", None)
        if retry_after:
            delay = max(delay, min(retry_after, self.config.max_delay))
        return delay

    async def _run(
        self,
        func: Callable[..., Awaitable[Any]],
        args: tuple,
        kwargs: dict,
        label: str,
        timeout: Optional[float],
    ) -> Tuple[bool, Any, int, bool]:
        """
        Attempt loop shared by fetch() and execute_with_retry().

        Returns:
            Tuple of (success, result or last exception, attempts, retries_exhausted)
        """
        max_attempts = self.config.max_retries + 1
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_attempts + 1):
            if self.rate_limiter:
                await self.rate_limiter.wait()

            self._total_attempts += 1
            try:
                result = await asyncio.wait_for(func(*args, **kwargs), timeout)
            except Exception as e:
                last_error = e
            else:
                if self.rate_limiter:
                    self.rate_limiter.record_success()
                return True, result, attempt, False

            if not self.is_transient(last_error):
                logger.warning("  %s failed permanently: %s", label, describe_error(last_error))
                return False, last_error, attempt, False

            if self.rate_limiter:
                self.rate_limiter.record_failure()
                if self.rate_limiter.should_cooldown():
                    self.rate_limiter.cooldown()

            logger.warning(
                "  %s attempt %d/%d failed: %s",
                label, attempt, max_attempts, describe_error(last_error),
            )

            # Don't sleep after last attempt
            if attempt < max_attempts:
                delay = self.next_delay(attempt, last_error)
                self._total_retries += 1
                if delay > 0:
                    logger.debug("  Retrying %s in %.1fs...", label, delay)
                await asyncio.sleep(delay)

        return False, last_error, max_attempts, True

    async def fetch(
        self,
        item: WorkItem,
        fetch_detail: Callable[[WorkItem], Awaitable[dict]],
    ) -> FetchOutcome:
        """
        Fetch details for one work item.

        Never raises for fetch problems; the outcome says what happened.

        Args:
            item: WorkItem to fetch
            fetch_detail: Jurisdiction detail function

        Returns:
            FetchResult on success, FetchFailure otherwise
        """
        success, value, attempts, exhausted = await self._run(
            fetch_detail, (item,), {}, item.label, self.config.attempt_timeout,
        )
        if success:
            if not isinstance(value, dict):
                return FetchFailure(
                    item_id=item.id,
                    reason=f"Detail fetch returned {type(value).__name__}, expected dict",
                    attempts=attempts,
                )
            return FetchResult(item=item, payload=value, attempts=attempts)

        reason = describe_error(value)
        if exhausted:
            reason = f"{reason} (gave up after {attempts} attempts)"
        return FetchFailure(
            item_id=item.id,
            reason=reason,
            retries_exhausted=exhausted,
            attempts=attempts,
        )

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        label: str = "request",
        timeout: Any = _CONFIGURED,
        **kwargs
    ) -> Tuple[bool, Any]:
        """
        Execute an async function with retry logic.

        Args:
            func: Coroutine function to execute
            *args: Positional arguments for func
            label: Name used in log lines
            timeout: Per-attempt timeout; defaults to the configured one,
                None disables it
            **kwargs: Keyword arguments for func

        Returns:
            Tuple of (success: bool, result or last exception)
        """
        if timeout is _CONFIGURED:
            timeout = self.config.attempt_timeout
        success, value, _, _ = await self._run(func, args, kwargs, label, timeout)
        return success, value

    def get_stats(self) -> dict:
        return {
            'total_attempts': self._total_attempts,
            'total_retries': self._total_retries,
            'max_retries': self.config.max_retries,
            'base_delay': self.config.base_delay,
        }
