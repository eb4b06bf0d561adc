"""
Backoff Policy - bounded exponential backoff with jitter

Used by the provider client to space out retries of transient failures
(network errors, HTTP 5xx, HTTP 429).
"""
import random
import time
from typing import Callable, Optional

from ...utils.logger import get_logger

logger = get_logger('backoff')


class BackoffPolicy:
    """Exponential backoff with full jitter and a hard attempt cap.

    delay(n) = uniform(0.5, 1.0) * min(base * 2 ** n, max_delay)

    A Retry-After hint from the server overrides the computed delay but is
    still capped at max_delay.

    Example:
        >>> policy = BackoffPolicy(max_retries=3, base_delay=1.0, max_delay=30.0)
        >>> policy.should_retry(0)
        True
        >>> policy.wait(0)  # sleeps between 0.5s and 1.0s
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Optional[Callable[[float], None]] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            max_retries: retries allowed after the first attempt
            base_delay: delay before the first retry, in seconds
            max_delay: upper bound for any single delay
            sleep: sleep function, replaceable in tests
            rng: random source for jitter
        """
        self.max_retries = max(0, max_retries)
        self.base_delay = max(0.0, base_delay)
        self.max_delay = max(0.0, max_delay)
        self._sleep = sleep or time.sleep
        self._rng = rng or random.Random()

    def should_retry(self, attempt: int) -> bool:
        """attempt is the zero-based index of the attempt that just failed"""
        return attempt < self.max_retries

    def compute_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        if retry_after is not None and retry_after >= 0:
            return min(float(retry_after), self.max_delay)
        capped = min(self.base_delay * (2 ** attempt), self.max_delay)
        return capped * self._rng.uniform(0.5, 1.0)

    def wait(self, attempt: int, retry_after: Optional[float] = None, reason: str = '') -> float:
        delay = self.compute_delay(attempt, retry_after)
        logger.warning(
            f"[Backoff] Retry {attempt + 1}/{self.max_retries} in {delay:.2f}s"
            + (f" ({reason})" if reason else '')
        )
        if delay > 0:
            self._sleep(delay)
        return delay
