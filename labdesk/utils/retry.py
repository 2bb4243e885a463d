"""Retry and timeout combinators for fallible async operations."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from labdesk.utils.logging import get_logger

logger = get_logger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class OperationTimeoutError(TimeoutError):
    """Raised when an awaited operation exceeds its time budget."""

    def __init__(self, description: str, seconds: float):
        super().__init__(f"{description} timed out after {seconds:.2f}s")
        self.description = description
        self.seconds = seconds


class RetriesExhaustedError(Exception):
    """Raised when every attempt allowed by a retry policy has failed."""

    def __init__(self, description: str, attempts: int, last_error: BaseException | None):
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")
        self.description = description
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry an operation.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Seconds to wait after the first failure
        backoff_multiplier: Growth factor applied to the delay per failure
        attempt_timeout: Per-attempt time budget in seconds, None for unbounded
    """

    max_attempts: int = 3
    base_delay: float = 0.3
    backoff_multiplier: float = 2.0
    attempt_timeout: float | None = 6.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given zero-based failed attempt."""
        return self.base_delay * (self.backoff_multiplier**attempt)


async def with_timeout[T](operation: Awaitable[T], seconds: float | None, description: str = "operation") -> T:
    """Await an operation, raising OperationTimeoutError past the deadline.

    The timed-out coroutine is cancelled; a request already handed to the
    transport may still complete on the remote side.
    """
    if seconds is None:
        return await operation

    try:
        return await asyncio.wait_for(operation, timeout=seconds)
    except TimeoutError as e:
        raise OperationTimeoutError(description, seconds) from e


async def with_retry[T](
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    description: str = "operation",
    sleep: Sleeper = asyncio.sleep,
) -> T:
    """Run an operation until it succeeds or the policy's attempts run out.

    Args:
        operation: Factory producing a fresh awaitable per attempt
        policy: Retry policy to apply
        description: Label used in logs and errors
        sleep: Coroutine used for backoff delays

    Returns:
        The first successful result

    Raises:
        RetriesExhaustedError: If every attempt failed
    """
    last_error: Exception | None = None

    for attempt in range(policy.max_attempts):
        try:
            return await with_timeout(operation(), policy.attempt_timeout, description)
        except Exception as e:
            last_error = e
            if attempt < policy.max_attempts - 1:
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/{policy.max_attempts}): {e}; "
                    f"retrying in {delay:.2f}s"
                )
                await sleep(delay)

    raise RetriesExhaustedError(description, policy.max_attempts, last_error)
