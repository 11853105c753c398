"""Exponential-backoff retry around one model invocation."""

from __future__ import annotations
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

_FATAL_MESSAGE = re.compile(
    r"invalid input|model not found|corrupt|out of memory|\boom\b|"
    r"invalid config|missing required|unsupported|\b(?:400|401|403|404|405|422)\b",
    re.IGNORECASE,
)
_FATAL_TYPES = (ValueError, TypeError, MemoryError, FileNotFoundError)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay_ms: float = 100
    backoff_multiplier: float = 2.0
    max_delay_ms: float = 5000

    def delay_ms(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based)."""
        return min(self.initial_delay_ms * self.backoff_multiplier ** (attempt - 1), self.max_delay_ms)


@dataclass(slots=True)
class RetryOutcome:
    value: Any = None
    attempts: int = 0            # total calls made
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)


def is_fatal(exc: BaseException) -> bool:
    """Errors that will fail the same way on every attempt."""
    if isinstance(exc, _FATAL_TYPES):
        return True
    return bool(_FATAL_MESSAGE.search(str(exc)))


async def call_with_retry(
    fn: Callable[[], Awaitable[Any]],
    policy: RetryPolicy | None = None,
    *,
    label: str = "inference",
) -> RetryOutcome:
    """Await ``fn()`` until it succeeds, fails fatally or retries run out."""
    policy = policy or RetryPolicy()
    attempts = 0
    while True:
        attempts += 1
        try:
            return RetryOutcome(value=await fn(), attempts=attempts)
        except Exception as exc:
            if is_fatal(exc):
                logger.error("%s failed (not retryable): %s", label, exc)
                return RetryOutcome(attempts=attempts, error=exc)
            if attempts > policy.max_retries:
                logger.error("%s failed after %d attempts: %s", label, attempts, exc)
                return RetryOutcome(attempts=attempts, error=exc)
            delay = policy.delay_ms(attempts)
            logger.warning("%s attempt %d failed (%s); retrying in %.0f ms", label, attempts, exc, delay)
            await asyncio.sleep(delay / 1000)
