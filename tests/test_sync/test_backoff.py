"""Tests for ExponentialBackoff."""

from datetime import datetime, timedelta, timezone

import pytest

from feedsync.sync.backoff import ExponentialBackoff


class TestExponentialBackoff:
    """Tests for the stateless delay calculation."""

    def test_delay_doubles_per_failure(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=1800.0)

        assert backoff.delay_for(0) == 1.0
        assert backoff.delay_for(1) == 2.0
        assert backoff.delay_for(2) == 4.0
        assert backoff.delay_for(5) == 32.0

    def test_delay_capped(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=1800.0)

        assert backoff.delay_for(11) == 1800.0
        assert backoff.delay_for(50) == 1800.0

    def test_custom_multiplier(self):
        backoff = ExponentialBackoff(base_delay=2.0, max_delay=100.0, multiplier=3.0)

        assert backoff.delay_for(2) == 18.0

    @pytest.mark.parametrize("failures", [1, 3, 6])
    def test_jitter_stays_within_range(self, failures):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=1800.0, jitter_range=0.1)
        nominal = 2.0 ** failures

        for _ in range(20):
            delay = backoff.delay_for(failures)
            assert nominal * 0.9 <= delay <= nominal * 1.1

    def test_next_retry_at(self):
        backoff = ExponentialBackoff()
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)

        assert backoff.next_retry_at(now, 3) == now + timedelta(seconds=8)
