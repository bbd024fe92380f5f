"""Per-kind tracking of API rate budgets reported by adapters."""

import logging
from datetime import datetime, timedelta

from feedsync.sync.schemas import RateBudget

logger = logging.getLogger(__name__)


class RateBudgetTracker:
    """
    Remembers the lowest remaining-call count per adapter kind.

    A budget lives until its reset time; a report arriving inside a live
    window only replaces it when it is lower. Nothing here is persisted.
    """

    def __init__(self, threshold: int, default_reset_seconds: float = 3600.0) -> None:
        self._threshold = threshold
        self._default_reset = timedelta(seconds=default_reset_seconds)
        self._budgets: dict[str, RateBudget] = {}

    @property
    def threshold(self) -> int:
        return self._threshold

    def get(self, kind: str) -> RateBudget | None:
        return self._budgets.get(kind)

    def record(
        self,
        kind: str,
        remaining: int,
        reset_at: datetime | None,
        now: datetime,
    ) -> RateBudget:
        """Record a remaining-count observation for a kind."""
        reset_at = reset_at or (now + self._default_reset)
        current = self._budgets.get(kind)

        if current is not None and now < current.reset_at and current.remaining <= remaining:
            return current

        budget = RateBudget(remaining=remaining, reset_at=reset_at, threshold=self._threshold)
        self._budgets[kind] = budget
        if budget.remaining <= self._threshold:
            logger.warning(
                "Rate budget for %s low: %d remaining until %s",
                kind, remaining, reset_at.isoformat(),
            )
        return budget

    def is_limited(self, kind: str, now: datetime) -> bool:
        """True if non-forced syncs of this kind should be skipped right now."""
        budget = self._budgets.get(kind)
        if budget is None:
            return False
        if now >= budget.reset_at:
            del self._budgets[kind]
            return False
        return budget.is_exhausted(now)

    def clear(self) -> None:
        self._budgets.clear()
