"""
Retry Policy

Bounded retry with exponential backoff and jitter for storage calls,
driven by tenacity.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from docvault.domain.errors import (
    DomainError,
    StorageErrorKind,
    StorageNotFoundError,
    StorageOperationError,
    TRANSIENT_KINDS,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _always_io(error: BaseException) -> StorageErrorKind:
    return StorageErrorKind.IO_ERROR


class RetryPolicy:
    """
    Runs a coroutine factory until it succeeds or the attempt budget runs out.

    max_attempts counts every attempt including the first, so a call that
    fails transiently max_attempts - 1 times and then succeeds makes
    exactly max_attempts attempts.

    Only transient kinds (permission, capacity, busy, I/O) are retried.
    Domain errors raised by the callable propagate untouched.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        min_backoff: float = 1.0,
        max_backoff: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff
        self._sleep = sleep
        self._rng = rng

    @classmethod
    def from_settings(cls, retry_settings) -> 'RetryPolicy':
        return cls(
            max_attempts=retry_settings.max_attempts,
            min_backoff=retry_settings.min_backoff,
            max_backoff=retry_settings.max_backoff,
        )

    def single_attempt(self) -> 'RetryPolicy':
        """Return a policy with the same backoff that never retries."""
        return RetryPolicy(1, self.min_backoff, self.max_backoff, self._sleep, self._rng)

    def backoff(self, attempt: int) -> float:
        """
        Delay before the attempt following attempt number `attempt`.

        Exponential in the attempt number, capped at max_backoff, with the
        result drawn uniformly from the upper half of the window.
        """
        delay = min(self.max_backoff, self.min_backoff * (2 ** (attempt - 1)))
        return delay / 2 + self._rng() * delay / 2

    async def run(
        self,
        func: Callable[[], Awaitable[T]],
        classify: Callable[[BaseException], StorageErrorKind] = _always_io,
        operation: Optional[str] = None,
        backend: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> T:
        """
        Execute func with retries.

        Args:
            func: Zero-argument callable returning a fresh awaitable per attempt
            classify: Maps an exception onto StorageErrorKind
            operation: Operation name for error context
            backend: Backend identity for error context
            correlation_id: Correlation id for error context and logs

        Returns:
            The result of the first successful attempt

        Raises:
            StorageNotFoundError: The backend reported a missing object
            StorageOperationError: A permanent error, or the budget ran out
            DomainError: Raised by func itself, propagated as-is
        """
        attempts = 0

        async def attempt():
            nonlocal attempts
            attempts += 1
            return await func()

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            logger.warning(
                f"[{correlation_id}] {operation} on {backend} failed with {classify(error).value} "
                f"(attempt {retry_state.attempt_number}/{self.max_attempts}), "
                f"retrying in {retry_state.next_action.sleep:.2f}s: {error}"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=lambda retry_state: self.backoff(retry_state.attempt_number),
            retry=retry_if_exception(
                lambda e: not isinstance(e, DomainError) and classify(e) in TRANSIENT_KINDS
            ),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )

        try:
            return await retrying(attempt)
        except DomainError:
            raise
        except Exception as e:
            kind = classify(e)
            if kind is StorageErrorKind.NOT_FOUND:
                raise StorageNotFoundError(
                    f"Object not found: {e}",
                    operation=operation,
                    backend=backend,
                    correlation_id=correlation_id,
                    attempts=attempts,
                    original_error=e,
                ) from e
            raise StorageOperationError(
                f"Storage operation failed: {e}",
                kind=kind,
                operation=operation,
                backend=backend,
                correlation_id=correlation_id,
                attempts=attempts,
                original_error=e,
            ) from e
