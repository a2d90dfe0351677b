"""Retry policy and per-task retry state machine.

The fetcher never loops on its own; it asks a RetryState what to do after
each failed attempt. That keeps the backoff schedule testable without any
network I/O.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from ..common.errors import ErrorClass, RepoBuildError


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    Attributes:
        max_retries: Retries allowed after the first attempt
        backoff: Delay in seconds before the first retry
        multiplier: Factor applied to the delay after every retry
        max_backoff: Upper bound for any single delay
    """

    max_retries: int = 3
    backoff: float = 1.0
    multiplier: float = 2.0
    max_backoff: float = 60.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay_for(self, retry: int) -> float:
        """Delay before retry number ``retry`` (1-based)."""
        return min(self.backoff * (self.multiplier ** (retry - 1)), self.max_backoff)

    def new_state(self) -> "RetryState":
        return RetryState(policy=self)


def is_retryable(error: BaseException) -> bool:
    """Only transient failures are worth another attempt."""
    if isinstance(error, RepoBuildError):
        return error.error_class is ErrorClass.TRANSIENT
    return False


@dataclass
class RetryState:
    """Attempt bookkeeping for one fetch task."""

    policy: RetryPolicy
    attempts: int = 0
    delays: List[float] = field(default_factory=list)
    last_error: Optional[BaseException] = None

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)

    @property
    def remaining(self) -> int:
        """Retries left in the budget."""
        return max(self.policy.max_retries - self.retries, 0)

    def start_attempt(self) -> int:
        self.attempts += 1
        return self.attempts

    def next_delay(self) -> Optional[float]:
        """Delay before the next retry, or None when the budget is spent."""
        if self.retries >= self.policy.max_retries:
            return None
        return self.policy.delay_for(self.retries + 1)

    def record_failure(self, error: BaseException) -> Optional[float]:
        """Record a failed attempt.

        Args:
            error: The failure of the attempt just made

        Returns:
            Seconds to wait before retrying, or None if the task is finished
            (terminal error or exhausted budget)
        """
        self.last_error = error
        if not is_retryable(error):
            return None
        delay = self.next_delay()
        if delay is not None:
            self.delays.append(delay)
        return delay

    @property
    def exhausted(self) -> bool:
        return self.last_error is not None and is_retryable(self.last_error) and self.next_delay() is None
