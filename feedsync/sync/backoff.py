"""
Exponential backoff for failing sources.

Delay after N consecutive failures is min(base * multiplier^N, max_delay),
optionally with jitter. Unlike a retry loop, the sync engine persists the
failure count in SyncState, so the calculation is stateless.
"""

import random
from datetime import datetime, timedelta


class ExponentialBackoff:
    """
    Exponential backoff with optional jitter.

    Usage:
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=1800.0)
        retry_at = backoff.next_retry_at(now, consecutive_failures)
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 1800.0,
        multiplier: float = 2.0,
        jitter_range: float = 0.0,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter_range = jitter_range

    def delay_for(self, failures: int) -> float:
        """Return the delay in seconds after `failures` consecutive failures."""
        delay = min(
            self.base_delay * (self.multiplier ** failures),
            self.max_delay,
        )
        if self.jitter_range:
            jitter = delay * random.uniform(-self.jitter_range, self.jitter_range)
            delay = max(0.0, delay + jitter)
        return delay

    def next_retry_at(self, now: datetime, failures: int) -> datetime:
        """Timestamp before which a source with `failures` failures is not retried."""
        return now + timedelta(seconds=self.delay_for(failures))
