"""Retry helper for calls to external gateways."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sandpool.config import get_settings
from sandpool.logging import get_logger
from sandpool.metrics import metrics

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    backoff_ms: int
    timeout_ms: int | None = None


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        max_attempts=settings.ou_move_max_attempts,
        backoff_ms=settings.ou_move_backoff_ms,
    )


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool],
    operation: str = "external_call",
) -> Any:
    """Await ``func`` until it succeeds, retrying transient failures with jittered backoff.

    Non-retryable errors and the last transient error propagate unchanged.
    """
    policy = policy or default_retry_policy()
    attempt = 1
    while True:
        try:
            if policy.timeout_ms is None:
                return await func()
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:
            if attempt >= max(policy.max_attempts, 1) or not retryable(exc):
                raise
            metrics.inc_counter("sandpool_external_retries_total", {"operation": operation})
            jitter = random.uniform(0.5, 1.5)
            sleep_s = (policy.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * jitter
            logger.info(
                "external_call_retrying",
                operation=operation,
                attempt=attempt,
                error=str(exc),
                sleep_seconds=round(sleep_s, 3),
            )
            await asyncio.sleep(sleep_s)
            attempt += 1
