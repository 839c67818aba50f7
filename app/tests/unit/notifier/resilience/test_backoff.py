"""Unit tests for the retry backoff policy."""

import pytest

from notifier.resilience import BackoffPolicy


@pytest.mark.unit
class TestBackoffPolicy:
    def test_exponential_growth(self):
        policy = BackoffPolicy(base_delay_ms=5000, multiplier=2.0, max_delay_ms=60000)

        assert [policy.delay_for(n) for n in range(4)] == [5000, 10000, 20000, 40000]

    def test_delay_is_capped(self):
        policy = BackoffPolicy(base_delay_ms=5000, multiplier=2.0, max_delay_ms=60000)

        assert policy.delay_for(4) == 60000
        assert policy.delay_for(30) == 60000

    def test_delays_are_non_decreasing_and_bounded(self):
        policy = BackoffPolicy(base_delay_ms=700, multiplier=1.7, max_delay_ms=9000)

        delays = list(policy.schedule(12))

        assert delays == sorted(delays)
        assert all(delay <= 9000 for delay in delays)

    def test_retry_after_overrides_computed_delay(self):
        policy = BackoffPolicy(base_delay_ms=5000, multiplier=2.0, max_delay_ms=60000)

        assert policy.delay_for(3, retry_after_ms=1234) == 1234

    def test_multiplier_of_one_is_constant(self):
        policy = BackoffPolicy(base_delay_ms=100, multiplier=1.0, max_delay_ms=100)

        assert list(policy.schedule(3)) == [100, 100, 100]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"base_delay_ms": -1},
            {"multiplier": 0.5},
            {"base_delay_ms": 1000, "max_delay_ms": 10},
        ],
    )
    def test_invalid_configuration(self, kwargs):
        with pytest.raises(ValueError):
            BackoffPolicy(**kwargs)

    def test_negative_retry_count_rejected(self):
        with pytest.raises(ValueError):
            BackoffPolicy().delay_for(-1)
