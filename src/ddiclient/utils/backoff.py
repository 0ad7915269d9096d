"""Reusable exponential backoff policy."""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar
import logging

from ddiclient.errors import TransportError

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    """Attempt ceiling plus exponentially growing delay between attempts.

    Attempt ``n`` (1-based) that fails waits ``base_delay * multiplier ** (n - 1)``
    seconds, capped at ``max_delay``, before attempt ``n + 1``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        if attempt < 1 or self.base_delay <= 0:
            return 0.0
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_on: tuple[type[BaseException], ...] = (TransportError,),
        description: str = "operation",
        logger: Optional[logging.Logger] = None,
    ) -> T:
        """Run an async operation, retrying on the given exceptions.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            retry_on: Exception types that trigger a retry; permanent 4xx
                ``TransportError``s are raised at once
            description: Used in log messages
            logger: Logger for retry warnings

        Returns:
            The operation's result

        Raises:
            The last exception once ``max_attempts`` attempts have failed
        """
        logger = logger or logging.getLogger("ddiclient.backoff")
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except retry_on as e:
                if isinstance(e, TransportError) and e.permanent:
                    logger.error(f"{description} failed: {e}")
                    raise
                if attempt >= attempts:
                    logger.error(f"{description} failed after {attempt} attempts: {e}")
                    raise
                wait = self.delay(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{attempts}): {e}. "
                    f"Retrying in {wait:.1f}s"
                )
                await asyncio.sleep(wait)
        raise RuntimeError("unreachable")
