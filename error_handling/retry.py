"""Exponential backoff retry policy for watcher setup."""
import asyncio
from typing import Any, Awaitable, Callable, List, Optional

import structlog

logger = structlog.get_logger()

class RetryExhausted(Exception):
    """Raised when every attempt allowed by a RetryPolicy has failed."""

    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class RetryPolicy:
    """
    Exponential backoff: retry ``attempt`` waits ``base_delay * 2**attempt``.

    With the defaults the schedule is 1s, 2s, 4s: one initial attempt
    followed by three retries.
    """

    def __init__(self, max_retries: int = 3, base_delay: float = 1.0):
        """
        Args:
            max_retries: Number of retries after the initial attempt
            base_delay: Delay in seconds before the first retry
        """
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if base_delay <= 0:
            raise ValueError("base_delay must be positive")
        self.max_retries = max_retries
        self.base_delay = base_delay

    def should_retry(self, attempt: int) -> bool:
        """Whether a failure of retry number ``attempt`` (0-based) may be retried."""
        return attempt < self.max_retries

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    def delays(self) -> List[float]:
        return [self.delay_for(attempt) for attempt in range(self.max_retries)]

    async def run(
        self,
        operation: Callable[[], Awaitable[Any]],
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "operation",
    ) -> Any:
        """
        Run ``operation`` until it succeeds or the retries are used up.

        Raises:
            RetryExhausted: After the last retry fails
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if not self.should_retry(attempt):
                    logger.error("retries_exhausted", operation=name,
                                 attempts=attempt + 1, error=str(e))
                    raise RetryExhausted(attempt + 1, e) from e
                delay = self.delay_for(attempt)
                logger.warning("retry_scheduled", operation=name, attempt=attempt + 1,
                               max_retries=self.max_retries, delay=delay, error=str(e))
                await sleep(delay)
                attempt += 1

    def get_state(self):
        return {
            'max_retries': self.max_retries,
            'base_delay': self.base_delay,
            'schedule': self.delays(),
        }
