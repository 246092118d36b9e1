"""Retry handler with exponential backoff."""

import asyncio
import inspect
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

import httpx

from review_monitor.exceptions import (
    EmptyResponseError,
    ProviderError,
    ResponseDecodeError,
)


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: Optional[float] = None,
    jitter_max: float = 0.0
) -> float:
    """
    Calculate exponential backoff delay before the next attempt.

    Formula: base_delay * 2 ** (attempt - 1) + random_jitter, capped at max_delay

    Args:
        attempt: Number of the attempt that just failed (1-indexed)
        base_delay: Base delay in seconds
        max_delay: Optional maximum delay cap in seconds
        jitter_max: Maximum jitter to add in seconds

    Returns:
        Delay in seconds
    """
    exponential_delay = base_delay * (2 ** (attempt - 1))
    jitter = random.uniform(0, jitter_max) if jitter_max > 0 else 0.0
    delay = exponential_delay + jitter
    if max_delay is not None:
        delay = min(max_delay, delay)
    return delay


class RetryHandler:
    """
    Handles retry logic with exponential backoff for provider requests.

    Retries on: ProviderError, EmptyResponseError, ResponseDecodeError and
    httpx transport errors (timeouts, refused connections).
    Attempts: 3 in total (configurable)
    Backoff: base_delay * 2 ** (attempt - 1)
    """

    DEFAULT_RETRY_ON: Tuple[Type[BaseException], ...] = (
        ProviderError,
        EmptyResponseError,
        ResponseDecodeError,
        httpx.TransportError,
    )

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: Optional[float] = None,
        jitter_max: float = 0.0,
        retry_on: Optional[Tuple[Type[BaseException], ...]] = None,
        sleeper: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger=None
    ):
        """
        Initialize retry handler.

        Args:
            max_attempts: Total attempts including the first one
            base_delay: Base delay for exponential backoff
            max_delay: Optional maximum delay cap
            jitter_max: Maximum jitter to add
            retry_on: Exception types that count as retryable failures
            sleeper: Async sleep function (default: asyncio.sleep)
            logger: Optional structured logger
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_max = jitter_max
        self.retry_on = retry_on or self.DEFAULT_RETRY_ON
        self._sleep = sleeper
        self.logger = logger

    def is_retryable(self, error: BaseException) -> bool:
        """
        Check if error is retryable.

        Args:
            error: Exception raised by the attempt

        Returns:
            True if error should be retried
        """
        return isinstance(error, self.retry_on)

    async def execute(
        self,
        func: Callable[..., Any],
        *args,
        target: str = "request",
        **kwargs
    ) -> Any:
        """
        Execute function with retry logic.

        Args:
            func: Function or coroutine function to execute
            *args: Positional arguments for func
            target: Name used in retry log events
            **kwargs: Keyword arguments for func

        Returns:
            Result from successful function execution

        Raises:
            Exception: The last error once all attempts are exhausted, or the
                first non-retryable error
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as e:
                if not self.is_retryable(e) or attempt >= self.max_attempts:
                    raise

                delay = calculate_backoff_delay(
                    attempt,
                    self.base_delay,
                    self.max_delay,
                    self.jitter_max
                )
                if self.logger:
                    self.logger.request_retry(
                        target=target, attempt=attempt, delay=delay, error=str(e)
                    )
                await self._sleep(delay)
