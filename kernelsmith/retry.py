"""Bounded retry with backoff for transient failures."""

from __future__ import annotations

import asyncio
import logging
import subprocess
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from kernelsmith.errors import RepositoryError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE: tuple[type[BaseException], ...] = (
    RepositoryError,
    subprocess.CalledProcessError,
    OSError,
)


def linear_backoff(attempt: int) -> float:
    """Sleep ``attempt`` seconds after the ``attempt``-th failure."""
    return float(attempt)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between."""

    max_attempts: int = 3
    delay_fn: Callable[[int], float] = linear_backoff

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay(self, attempt: int) -> float:
        return max(0.0, float(self.delay_fn(attempt)))


@dataclass
class RetryExecutor:
    """Invoke an operation until it succeeds or the policy is exhausted.

    Only exceptions in ``retryable`` trigger another attempt; anything else
    propagates immediately. After ``max_attempts`` consecutive failures the
    last exception is re-raised.
    """

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    retryable: tuple[type[BaseException], ...] = DEFAULT_RETRYABLE
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    blocking_sleep: Callable[[float], None] = time.sleep

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> T:
        """Run an async operation under the retry policy."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except self.retryable as e:
                if attempt >= self.policy.max_attempts:
                    logger.error(f"{description} failed after {attempt} attempt(s): {e}")
                    raise
                delay = self.policy.delay(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{self.policy.max_attempts}), "
                    f"retrying in {delay:g}s: {e}"
                )
                await self.sleep(delay)

    def run_sync(self, operation: Callable[[], T], description: str = "operation") -> T:
        """Blocking counterpart of ``run``."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except self.retryable as e:
                if attempt >= self.policy.max_attempts:
                    logger.error(f"{description} failed after {attempt} attempt(s): {e}")
                    raise
                delay = self.policy.delay(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{self.policy.max_attempts}), "
                    f"retrying in {delay:g}s: {e}"
                )
                self.blocking_sleep(delay)
