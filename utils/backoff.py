"""
Retry/backoff policy for provider calls.

The policy only answers "how long to wait before attempt n+1"; the loop that
uses it lives in utils.call_llm and takes an injectable sleep.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator, TypeVar

from errors import ProviderError

logger = logging.getLogger("code2tutorial.llm")

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    attempts: int = 3
    delay: float = 1.0
    factor: float = 2.0

    def delays(self) -> Iterator[float]:
        """Yield the wait before each retry: delay, delay*factor, ... (attempts - 1 values)."""
        current = self.delay
        for _ in range(max(self.attempts, 1) - 1):
            yield current
            current *= self.factor

    @classmethod
    def from_settings(cls, retry) -> "BackoffPolicy":
        return cls(attempts=retry.attempts, delay=retry.delay, factor=retry.factor)


def run_with_retry(
    fn: Callable[[], T],
    policy: BackoffPolicy,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "LLM call",
) -> T:
    """
    Call fn, retrying ProviderError per policy.

    Other exceptions propagate immediately. After the last attempt the final
    ProviderError is re-raised unchanged.
    """
    delays = policy.delays()
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except ProviderError as e:
            wait = next(delays, None)
            if wait is None:
                raise
            if e.retry_after:
                wait = max(wait, e.retry_after)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                label,
                attempt,
                policy.attempts,
                wait,
                str(e)[:200],
            )
            sleep(wait)
