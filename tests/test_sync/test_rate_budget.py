"""Tests for RateBudgetTracker."""

from datetime import datetime, timedelta, timezone

from feedsync.sync.rate_budget import RateBudgetTracker

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestRecord:
    """Tests for recording remaining-count observations."""

    def test_first_report_stored(self):
        tracker = RateBudgetTracker(threshold=50)

        budget = tracker.record("github", 4000, NOW + timedelta(minutes=20), NOW)

        assert budget.remaining == 4000
        assert tracker.get("github") is budget

    def test_missing_reset_uses_default_horizon(self):
        tracker = RateBudgetTracker(threshold=50, default_reset_seconds=3600)

        budget = tracker.record("github", 10, None, NOW)

        assert budget.reset_at == NOW + timedelta(hours=1)

    def test_lower_report_replaces(self):
        tracker = RateBudgetTracker(threshold=50)
        reset = NOW + timedelta(minutes=20)
        tracker.record("github", 100, reset, NOW)

        tracker.record("github", 30, reset, NOW + timedelta(minutes=1))

        assert tracker.get("github").remaining == 30

    def test_higher_report_ignored_within_window(self):
        tracker = RateBudgetTracker(threshold=50)
        reset = NOW + timedelta(minutes=20)
        tracker.record("github", 30, reset, NOW)

        tracker.record("github", 4999, reset, NOW + timedelta(minutes=1))

        assert tracker.get("github").remaining == 30

    def test_report_after_reset_starts_new_window(self):
        tracker = RateBudgetTracker(threshold=50)
        tracker.record("github", 3, NOW + timedelta(minutes=5), NOW)

        later = NOW + timedelta(minutes=6)
        tracker.record("github", 4999, later + timedelta(hours=1), later)

        assert tracker.get("github").remaining == 4999


class TestIsLimited:
    """Tests for the skip decision."""

    def test_unknown_kind_not_limited(self):
        assert not RateBudgetTracker(threshold=50).is_limited("rss", NOW)

    def test_at_threshold_is_limited(self):
        tracker = RateBudgetTracker(threshold=50)
        tracker.record("github", 50, NOW + timedelta(minutes=5), NOW)

        assert tracker.is_limited("github", NOW)

    def test_above_threshold_not_limited(self):
        tracker = RateBudgetTracker(threshold=50)
        tracker.record("github", 51, NOW + timedelta(minutes=5), NOW)

        assert not tracker.is_limited("github", NOW)

    def test_expired_budget_dropped(self):
        tracker = RateBudgetTracker(threshold=50)
        tracker.record("github", 0, NOW + timedelta(minutes=5), NOW)

        assert not tracker.is_limited("github", NOW + timedelta(minutes=5))
        assert tracker.get("github") is None

    def test_clear(self):
        tracker = RateBudgetTracker(threshold=50)
        tracker.record("github", 0, NOW + timedelta(minutes=5), NOW)

        tracker.clear()

        assert not tracker.is_limited("github", NOW)
