"""
Bounded exponential-backoff retries for idempotent async operations.

`RetryPolicy` invokes a zero-argument coroutine factory and, on failure, waits
`base_delay * 2**attempt` plus a random jitter before trying again. After the
attempt budget is spent the last exception is re-raised unchanged.

The policy has no notion of which operations are safe to repeat. Callers decide
what to wrap and may narrow the retried failures with `retry_if`; the
transaction broadcast, for instance, is never wrapped at all.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration plus the loop that applies it.

    Attributes:
        attempts: Number of retries after the first call. `0` disables retrying.
        base_delay: Delay in seconds before the first retry; doubles each time.
        max_jitter: Upper bound of the uniform random delay added to each wait.
            Defaults to `base_delay`.
        sleep: Awaitable sleep function, injectable for tests.
        rng: Random source used for jitter.
    """

    attempts: int = 5
    base_delay: float = 0.1
    max_jitter: Optional[float] = None
    sleep: Callable[[float], Awaitable[None]] = field(
        default=asyncio.sleep, repr=False, compare=False
    )
    rng: random.Random = field(
        default_factory=random.Random, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.attempts < 0:
            raise ValueError("attempts must be >= 0")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (0-based), jitter included."""
        jitter = self.base_delay if self.max_jitter is None else self.max_jitter
        return self.base_delay * 2**attempt + self.rng.uniform(0, jitter)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        retry_if: Optional[Callable[[Exception], bool]] = None,
        label: str = "operation",
    ) -> T:
        """
        Run `operation` until it succeeds or the budget is exhausted.

        Args:
            operation: Zero-argument callable returning a fresh awaitable on
                every call.
            retry_if: Predicate deciding whether a failure is retried. Failures
                it rejects propagate immediately. Defaults to retrying every
                `Exception`.
            label: Name used in log lines.

        Returns:
            The operation's result.

        Raises:
            Exception: The last error raised by `operation`.

        Example:
            >>> bill = await RetryPolicy().run(billing.fetch_current_bill)
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if retry_if is not None and not retry_if(e):
                    raise
                if attempt >= self.attempts:
                    logger.warning(
                        f"{label} failed after {attempt + 1} attempts: {e}"
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.debug(
                    f"{label} attempt {attempt + 1} failed ({e}); retrying in {delay:.2f}s"
                )
                attempt += 1
                await self.sleep(delay)
