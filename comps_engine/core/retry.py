"""
Resilient request executor.

Runs a zero-argument operation up to N times with pure exponential backoff
(base, 2x base, 4x base, ... no jitter). Knows nothing about providers,
quotas or caching. Sleeping goes through an injectable coroutine so tests can
record the delays instead of waiting.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from .config import Settings, settings as default_settings
from .errors import ProviderConfigurationError, RetryExhaustedError
from .metrics import RETRY_ATTEMPTS

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    # Never retried: re-raised untouched on the first failure
    fatal_exceptions: tuple = field(default=(ProviderConfigurationError,))

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings) -> "RetryPolicy":
        return cls(max_attempts=cfg.RETRY_MAX_ATTEMPTS, base_delay_ms=cfg.RETRY_BASE_DELAY_MS)

    def delay_seconds(self, attempt_index: int) -> float:
        """Backoff before the attempt that follows `attempt_index` (0-based)."""
        return self.base_delay_ms * (2 ** attempt_index) / 1000.0


class ResilientExecutor:
    def __init__(self, policy: RetryPolicy | None = None, sleep: Sleep = asyncio.sleep):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def execute(
        self,
        operation: Operation,
        max_attempts: int | None = None,
        base_delay_ms: int | None = None,
        label: str = "operation",
    ) -> Any:
        """
        Await `operation()` until it returns, sleeping `base * 2**i` seconds
        after failed attempt i. Raises RetryExhaustedError carrying the
        attempt count and the last error once attempts run out.

        Cancellation (e.g. a caller-level timeout) is not caught here, so an
        outer `asyncio.wait_for` aborts the loop mid-sleep.
        """
        attempts = max_attempts if max_attempts is not None else self.policy.max_attempts
        attempts = max(1, attempts)
        policy = self.policy
        if base_delay_ms is not None:
            policy = RetryPolicy(attempts, base_delay_ms, self.policy.fatal_exceptions)

        last_error: Exception | None = None
        for attempt in range(attempts):
            try:
                result = await operation()
            except policy.fatal_exceptions:
                RETRY_ATTEMPTS.labels(outcome="fatal").inc()
                raise
            except Exception as exc:
                last_error = exc
                RETRY_ATTEMPTS.labels(outcome="failed").inc()
                logger.warning(f"{label}: attempt {attempt + 1}/{attempts} failed: {exc}")
                if attempt < attempts - 1:
                    await self._sleep(policy.delay_seconds(attempt))
                continue
            RETRY_ATTEMPTS.labels(outcome="succeeded").inc()
            return result

        raise RetryExhaustedError(
            f"{label} failed after {attempts} attempts: {last_error}",
            attempts=attempts,
            last_exception=last_error,
        )
