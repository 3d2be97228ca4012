from dataclasses import dataclass
from typing import Optional

from outbox_service.core.config import (
    ATTEMPTS_PER_TICK,
    MAX_RETRIES,
    PUBLISH_TIMEOUT,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
)
from outbox_service.core.errors import PermanentPublishError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Decides what happens after a failed publish attempt.

    Retries happen at two layers: up to ``attempts_per_tick`` attempts with
    exponential delay inside one tick, then the next tick picks the row up
    again because it is still unpublished. ``max_retries`` is the dead-letter
    ceiling; None means rows are retried forever. ``attempt_timeout`` bounds a
    single publish attempt.
    """
    attempts_per_tick: int = 1
    base_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0
    max_retries: Optional[int] = None
    attempt_timeout: float = 10.0

    def __post_init__(self):
        if self.attempts_per_tick < 1:
            raise ValueError("attempts_per_tick must be at least 1")
        if self.max_retries is not None and self.max_retries < 1:
            raise ValueError("max_retries must be positive or None")
        if self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be positive")

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        return cls(
            attempts_per_tick=ATTEMPTS_PER_TICK,
            base_delay=RETRY_BASE_DELAY,
            max_delay=RETRY_MAX_DELAY,
            max_retries=MAX_RETRIES or None,
            attempt_timeout=PUBLISH_TIMEOUT,
        )

    @property
    def dead_letter_enabled(self) -> bool:
        return self.max_retries is not None

    def backoff(self, attempt: int) -> float:
        """Delay before in-tick attempt ``attempt + 1``."""
        return min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))

    def worst_case_duration(self) -> float:
        """Longest time one row can spend in a tick: every attempt times out, plus the delays between them."""
        delays = sum(self.backoff(n) for n in range(1, self.attempts_per_tick))
        return self.attempts_per_tick * self.attempt_timeout + delays

    def should_retry_in_tick(self, attempt: int, error: BaseException) -> bool:
        if isinstance(error, PermanentPublishError):
            return False
        return attempt < self.attempts_per_tick

    def should_dead_letter(self, retry_count: int, error: BaseException) -> bool:
        if not self.dead_letter_enabled:
            return False
        if isinstance(error, PermanentPublishError):
            return True
        return retry_count >= self.max_retries
