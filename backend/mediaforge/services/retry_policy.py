"""Bounded exponential-backoff retry and primary/fallback execution.

Shared by the prediction orchestrator (submit/poll/cancel) and the asset
persistence service (download/upload). Both helpers take zero-argument
coroutine factories so a fresh awaitable is created for every attempt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from mediaforge.config import Settings
from mediaforge.services.error_handling import (
    StorageError,
    StorageErrorCode,
    classify,
    log_storage_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """Retry schedule. Delays are in milliseconds."""
    max_attempts: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: float = 10000
    backoff_multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryConfig:
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay_ms=settings.RETRY_BASE_DELAY_MS,
            max_delay_ms=settings.RETRY_MAX_DELAY_MS,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
        )

    def delay_ms(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        return min(
            self.base_delay_ms * self.backoff_multiplier ** (attempt - 1),
            self.max_delay_ms,
        )


DEFAULT_RETRY = RetryConfig()


async def with_retry(
    operation: Operation[T],
    operation_name: str,
    config: RetryConfig | None = None,
    *,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, fails non-retryably, or runs out of attempts.

    Raises:
        StorageError: the classified error from the last attempt.
    """
    cfg = config or DEFAULT_RETRY
    attempts = max(cfg.max_attempts, 1)
    last_error: StorageError | None = None

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            last_error = classify(exc, operation_name)
            if not last_error.retryable or attempt == attempts:
                if last_error is not exc:
                    raise last_error from exc
                raise

            delay = cfg.delay_ms(attempt)
            logger.warning(
                "%s failed (attempt %d/%d, code=%s): %s; retrying in %.0fms",
                operation_name, attempt, attempts, last_error.code.value,
                last_error.message, delay,
            )
            await sleep(delay / 1000.0)

    # Unreachable: the loop either returns or raises on the final attempt.
    raise last_error or StorageError(StorageErrorCode.UNKNOWN_ERROR, "Retry loop exited", operation_name)


async def with_fallback(
    primary: Operation[T],
    fallback: Operation[T],
    operation_name: str,
) -> T:
    """Run ``primary``; on failure run ``fallback``.

    If the fallback fails as well, the primary's classified error is raised.
    """
    try:
        return await primary()
    except Exception as exc:
        primary_error = classify(exc, operation_name)
        log_storage_error(primary_error, {"stage": "primary"})
        logger.warning("%s: primary failed, attempting fallback", operation_name)

        try:
            result = await fallback()
        except Exception as fb_exc:
            logger.error("%s: fallback also failed: %s", operation_name, fb_exc)
            raise primary_error from exc

        logger.info("%s: using fallback result", operation_name)
        return result
