"""Retry policy for object-store operations."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from brewsync.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Bounded retry with exponential backoff and jitter.

    Object-store calls report failure through their return value (False or
    None) instead of raising, so both a falsy result and an exception count
    as a failed attempt. The default of a single attempt means no retries.

    Attributes:
        max_attempts: Maximum number of attempts, including the first
        base_delay: Initial delay in seconds
        max_delay: Upper bound for any single delay in seconds
        exponential_base: Base for exponential backoff
        jitter: Scale each delay by a random factor in [0.5, 1.5)
    """

    max_attempts: int = 1
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before retrying after the given 0-based attempt."""
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation",
    ) -> T:
        """Run an async operation until it succeeds or attempts run out.

        Args:
            operation: Zero-argument coroutine factory
            description: Human-readable label for log messages

        Returns:
            The first truthy result of the operation

        Raises:
            RetryExhaustedError: If every attempt failed
        """
        last_exception: Exception | None = None

        for attempt in range(self.max_attempts):
            try:
                result = await operation()
                if result is not None and result is not False:
                    return result
                last_exception = None
                reason = "store reported failure"
            except Exception as e:
                last_exception = e
                reason = str(e)

            if attempt < self.max_attempts - 1:
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/{self.max_attempts}): "
                    f"{reason}. Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
            elif self.max_attempts > 1:
                logger.error(
                    f"{description} failed after {self.max_attempts} attempts: {reason}"
                )

        raise RetryExhaustedError(
            f"{description} failed after {self.max_attempts} attempt(s)",
            attempts=self.max_attempts,
        ) from last_exception

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        """Build a policy from Settings retry fields."""
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )
