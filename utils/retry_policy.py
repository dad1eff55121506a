# utils/retry_policy.py
from dataclasses import dataclass
from datetime import timedelta

MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 5


def next_retry_delay(attempt, max_attempts=MAX_ATTEMPTS, base_delay=BASE_DELAY_SECONDS):
    """
    Delay before the next attempt once `attempt` (1-based) has failed.
    Exponential: base, 2*base, 4*base ...; None when no attempts are left.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    if attempt >= max_attempts:
        return None
    return timedelta(seconds=base_delay * 2 ** (attempt - 1))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = MAX_ATTEMPTS
    base_delay: int = BASE_DELAY_SECONDS

    def next_delay(self, attempt):
        return next_retry_delay(attempt, self.max_attempts, self.base_delay)

    @property
    def max_retries(self):
        return max(self.max_attempts - 1, 0)

    def intervals(self):
        """Retry intervals in seconds, in the shape rq.Retry expects."""
        return [
            int(self.next_delay(attempt).total_seconds())
            for attempt in range(1, self.max_attempts)
        ]

    def attempt_number(self, retries_left):
        """Map rq's remaining retry counter to the current 1-based attempt."""
        if retries_left is None:
            return 1
        return min(max(self.max_attempts - retries_left, 1), self.max_attempts)
