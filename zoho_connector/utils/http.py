"""HTTP utilities providing retry/backoff semantics."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig:
    def __init__(
        self,
        *,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
    ) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds

    def delay_for(self, attempt: int) -> float:
        """Exponential delay before retry number ``attempt`` (1-based)."""
        return min(self.backoff_seconds * (2 ** (attempt - 1)), self.max_backoff_seconds)


def is_retryable(exc: BaseException) -> bool:
    """Transport failures and errors flagged ``retryable`` are worth another try."""
    if isinstance(exc, httpx.TransportError):
        return True
    return bool(getattr(exc, "retryable", False))


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    retry_config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``func`` until it succeeds, a non-retryable error occurs or attempts run out."""
    config = retry_config or RetryConfig()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= config.attempts:
                raise
            delay = config.delay_for(attempt)
            logger.warning(
                "Retrying after %s (attempt %s/%s, sleeping %.1fs)",
                exc,
                attempt,
                config.attempts,
                delay,
            )
            await sleep(delay)


__all__ = ["RetryConfig", "call_with_retry", "is_retryable"]
