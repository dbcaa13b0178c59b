from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    min_delay: float = 1.0
    max_delay: float = 3.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.min_delay < 0 or self.max_delay < self.min_delay:
            raise ValueError("require 0 <= min_delay <= max_delay")

    def delay_for(self, attempt: int) -> float:
        """Backoff after the given (1-based) failed attempt, capped at max_delay."""
        return min(self.min_delay * (2 ** (attempt - 1)), self.max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: Optional[str] = None,
) -> T:
    """
    Await operation() up to policy.max_attempts times.
    The last failure is re-raised as-is so callers still see the original type.
    """
    name = label or getattr(operation, "__name__", "operation")
    attempt = 1

    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            log.warning(
                "Retry attempt %d/%d for %s in %.2fs (%s)",
                attempt,
                policy.max_attempts,
                name,
                delay,
                e,
            )
            await sleep(delay)
            attempt += 1
