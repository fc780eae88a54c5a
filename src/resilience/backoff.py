# src/resilience/backoff.py
# Exponential backoff with bounded jitter
#
# Retrying immediately after a failure hammers a database that is already
# struggling, and every process retrying on the same schedule produces
# synchronized retry storms. The delay therefore doubles on each attempt and
# gets a small random multiplicative bump:
#
#   delay(k) = min(base * 2^(k-1) * (1 + jitter * random), cap)
#
# With base=2000ms, jitter=0.1, cap=30000ms:
#   attempt 1 -> 2000..2200ms
#   attempt 2 -> 4000..4400ms
#   attempt 3 -> 8000..8800ms
#   attempt 5 -> capped at 30000ms

import random
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Backoff schedule for connection retries.

    Attributes:
        base_delay_ms: Delay before the second attempt (attempt 1 failed)
        jitter_fraction: Upper bound of the random multiplicative bump (0.1 = +10%)
        cap_delay_ms: No delay ever exceeds this
    """
    base_delay_ms: float
    jitter_fraction: float = 0.1
    cap_delay_ms: float = 30000

    def __post_init__(self):
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if not (0 <= self.jitter_fraction <= 1):
            raise ValueError(f"jitter_fraction must be between 0 and 1, got {self.jitter_fraction}")
        if self.cap_delay_ms < 0:
            raise ValueError(f"cap_delay_ms must be >= 0, got {self.cap_delay_ms}")

    def delay_ms(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """
        Delay to wait after failed attempt number `attempt` (1-based).

        Args:
            attempt: The attempt that just failed, starting at 1
            rand: Source of uniform [0, 1) values, injectable for tests

        Returns:
            Delay in milliseconds

        Raises:
            ValueError: If attempt < 1
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")

        # Exponent clamped so huge attempt numbers saturate at the cap instead of overflowing
        exponential = self.base_delay_ms * (2.0 ** min(attempt - 1, 1000))
        jittered = exponential * (1 + self.jitter_fraction * rand())
        return min(jittered, self.cap_delay_ms)
