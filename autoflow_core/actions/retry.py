"""
Bounded retries for collaborator calls.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog
from pydantic import BaseModel

from ..config import RetryConfig
from ..errors import CollaboratorError, CollaboratorTimeoutError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Exponential backoff for idempotent collaborator calls."""

    max_attempts: int = 3
    base_delay_s: float = 0.5
    max_delay_s: float = 10.0
    multiplier: float = 2.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay_s=config.base_delay_s,
            max_delay_s=config.max_delay_s,
            multiplier=config.multiplier,
        )

    def get_delay(self, attempt: int) -> float:
        """Delay before retrying after ``attempt`` (1-based) failed."""
        return min(
            self.base_delay_s * (self.multiplier ** (attempt - 1)),
            self.max_delay_s,
        )


async def call_collaborator(
    operation: str,
    call: Callable[[], Awaitable[T]],
    *,
    timeout_s: float,
    policy: RetryPolicy,
    idempotent: bool,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run a collaborator call under a timeout.

    Only idempotent calls are retried, and only for timeouts and errors the
    collaborator marked retryable. The last error is re-raised.

    Raises:
        CollaboratorError: The call failed for good.
    """
    attempts = max(policy.max_attempts, 1) if idempotent else 1

    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(call(), timeout=timeout_s)
        except asyncio.TimeoutError:
            error: CollaboratorError = CollaboratorTimeoutError(
                f"{operation} timed out after {timeout_s}s"
            )
        except CollaboratorError as e:
            if not e.retryable:
                raise
            error = e

        if attempt >= attempts:
            raise error

        delay = policy.get_delay(attempt)
        logger.warning(
            "collaborator_retry",
            operation=operation,
            attempt=attempt,
            delay_s=delay,
            error=error.message,
        )
        await sleep(delay)

    raise CollaboratorError(f"{operation} was not attempted")
