"""Retry policy for stage calls.

Transient failures (network, timeout, rate limit, 429/502/503) are retried
with exponential backoff: delay = min(base * 2**(attempt-1), cap). Anything
else propagates on first occurrence. The last transient failure propagates
unchanged once attempts run out.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import anthropic

from toolfactory.config import FactoryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_MARKERS = ("network", "timeout", "rate limit", "429", "502", "503")

TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    ConnectionError,
    anthropic.APIConnectionError,  # includes APITimeoutError
)

TRANSIENT_STATUS_CODES = (429, 502, 503)


def is_transient_error(error: BaseException) -> bool:
    """True if the error is worth retrying.

    HTTP status errors count only for 429, 502 and 503; any other status
    (a plain 500 included) is permanent unless its message says otherwise.
    """
    if isinstance(error, TRANSIENT_TYPES):
        return True
    if isinstance(error, anthropic.APIStatusError) and error.status_code in TRANSIENT_STATUS_CODES:
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


RetryCallback = Callable[[int, float, BaseException], None]


@dataclass
class RetryPolicy:
    """Bounded exponential backoff around one async call.

    Holds no per-call state, so a single policy is shared by all runs.
    `sleep` is injectable so tests can record delays instead of waiting.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_config(cls, config: FactoryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_retries,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds after the given (1-based) failed attempt."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        label: str = "call",
        on_retry: Optional[RetryCallback] = None,
    ) -> T:
        """Call fn until it succeeds, fails permanently, or attempts run out.

        Args:
            fn: Zero-argument coroutine factory; called once per attempt
            label: Prefix for log messages
            on_retry: Called with (attempt, delay, error) before each backoff sleep

        Raises:
            The permanent error, or the last transient error
        """
        attempt = 1
        while True:
            try:
                return await fn()
            except Exception as e:
                if not is_transient_error(e):
                    logger.error(f"[{label}] Permanent error (not retrying): {e}")
                    raise
                if attempt >= self.max_attempts:
                    logger.error(
                        f"[{label}] Failed after {self.max_attempts} attempts. Last error: {e}"
                    )
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    f"[{label}] Attempt {attempt}/{self.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                if on_retry is not None:
                    on_retry(attempt, delay, e)
                await self.sleep(delay)
                attempt += 1
