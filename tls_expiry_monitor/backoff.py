"""
Retry backoff policy for certificate probes.
"""

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from tls_expiry_monitor.config import Config


@dataclass(frozen=True)
class RetryState:
    """Attempt counter and the wait before the next attempt. Lives for one probe only."""

    attempt: int = 0
    next_delay: float = 0.0


class BackoffPolicy:
    """
    Exponential backoff with additive jitter.

    ``delay(attempt) = base * 2**attempt + uniform[0, jitter)``

    Args:
        max_retries: Retries after the first attempt
        base: Base delay in seconds
        jitter: Upper bound (exclusive) of the random offset in seconds
        rng: Random source, injectable for deterministic tests
    """

    def __init__(
        self,
        max_retries: int = 3,
        base: float = 0.1,
        jitter: float = 0.1,
        rng: Optional[random.Random] = None,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if base < 0 or jitter < 0:
            raise ValueError("base and jitter must be >= 0")

        self.max_retries = max_retries
        self.base = base
        self.jitter = jitter
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: "Config") -> "BackoffPolicy":
        return cls(
            max_retries=config.max_retries,
            base=config.backoff_base,
            jitter=config.backoff_jitter,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def base_delay(self, attempt: int) -> float:
        """Delay without jitter."""
        return self.base * (2**attempt)

    def delay(self, attempt: int) -> float:
        return self.base_delay(attempt) + self._rng.random() * self.jitter

    def scheduled_delays(self) -> List[float]:
        """Jitter-free waits between every attempt of a fully failing probe."""
        return [self.base_delay(attempt) for attempt in range(self.max_retries)]

    def can_retry(self, state: RetryState) -> bool:
        return state.attempt < self.max_retries

    def advance(self, state: RetryState) -> RetryState:
        """Move to the next attempt, computing the wait that precedes it."""
        if not self.can_retry(state):
            raise ValueError(f"Retries exhausted after {state.attempt + 1} attempts")
        return RetryState(attempt=state.attempt + 1, next_delay=self.delay(state.attempt))
