"""Bounded exponential-backoff retry for async network operations."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx
import structlog

from gmail_thread_sync.config import Settings
from gmail_thread_sync.exceptions import GmailAPIError

logger = structlog.get_logger()

T = TypeVar("T")

# Transport failures worth another attempt: timeouts and dropped/refused connections.
_TRANSIENT_NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behavior for network requests.

    Attributes:
        max_retries: Maximum number of retry attempts after the first call.
        base_delay: Delay in seconds before the first retry (doubles each attempt).
        max_delay: Upper bound for the un-jittered delay.
        jitter_factor: Relative jitter (0.0 to 1.0) applied to each delay.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter_factor: float = 0.2

    @classmethod
    def none(cls) -> RetryPolicy:
        """Policy that never retries."""
        return cls(max_retries=0, base_delay=0.0, max_delay=0.0, jitter_factor=0.0)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter_factor=settings.retry_jitter_factor,
        )

    def delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Return the delay in seconds before retry number ``attempt`` (1-based)."""
        if attempt <= 0:
            return 0.0
        capped = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        uniform = rng.uniform if rng is not None else random.uniform
        jitter = capped * self.jitter_factor * uniform(-1.0, 1.0)
        return max(0.0, capped + jitter)


def is_retryable(exc: BaseException) -> bool:
    """Classify an error as retryable (transient) or fatal."""
    if isinstance(exc, GmailAPIError):
        return exc.status == 429 or 500 <= exc.status <= 599
    return isinstance(exc, _TRANSIENT_NETWORK_ERRORS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    classifier: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    name: str | None = None,
) -> T:
    """Execute an async operation, retrying retryable failures with backoff.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Retry policy. Defaults to ``RetryPolicy()``.
        classifier: Decides whether an error is worth retrying.
        sleep: Awaitable sleep used between attempts (injectable for tests).
        name: Operation name used in log events.

    Returns:
        The operation's result.

    Raises:
        The last error once retries are exhausted, or the first fatal error.
    """
    policy = policy or RetryPolicy()
    op_name = name or getattr(operation, "__name__", "operation")

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= policy.max_retries or not classifier(exc):
                if attempt > 0:
                    logger.error(
                        "operation_retry_exhausted",
                        operation=op_name,
                        attempts=attempt + 1,
                        error=str(exc),
                    )
                raise

            attempt += 1
            delay = policy.delay(attempt)
            logger.warning(
                "operation_retry",
                operation=op_name,
                attempt=attempt,
                max_retries=policy.max_retries,
                delay=round(delay, 3),
                error=str(exc),
            )
            await sleep(delay)
