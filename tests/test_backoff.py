"""
Tests for the retry backoff policy.
"""

import random

import pytest

from tls_expiry_monitor.backoff import BackoffPolicy, RetryState


class TestBackoffPolicy:
    """Test backoff delays and retry accounting."""

    def test_defaults(self):
        policy = BackoffPolicy()
        assert policy.max_retries == 3
        assert policy.max_attempts == 4
        assert policy.base == 0.1
        assert policy.jitter == 0.1

    def test_delay_without_jitter_doubles(self):
        policy = BackoffPolicy(max_retries=3, base=0.1, jitter=0.0)
        assert policy.delay(0) == pytest.approx(0.1)
        assert policy.delay(1) == pytest.approx(0.2)
        assert policy.delay(2) == pytest.approx(0.4)
        assert policy.scheduled_delays() == pytest.approx([0.1, 0.2, 0.4])

    def test_jitter_is_bounded(self):
        policy = BackoffPolicy(base=0.1, jitter=0.1, rng=random.Random(42))
        for attempt in range(4):
            delay = policy.delay(attempt)
            assert policy.base_delay(attempt) <= delay < policy.base_delay(attempt) + 0.1

    def test_seeded_rng_is_deterministic(self):
        first = BackoffPolicy(rng=random.Random(7))
        second = BackoffPolicy(rng=random.Random(7))
        assert [first.delay(a) for a in range(3)] == [second.delay(a) for a in range(3)]

    def test_advance_until_exhausted(self):
        policy = BackoffPolicy(max_retries=2, base=0.1, jitter=0.0)
        state = RetryState()

        assert policy.can_retry(state)
        state = policy.advance(state)
        assert state.attempt == 1
        assert state.next_delay == pytest.approx(0.1)

        state = policy.advance(state)
        assert state.attempt == 2
        assert state.next_delay == pytest.approx(0.2)

        assert not policy.can_retry(state)
        with pytest.raises(ValueError):
            policy.advance(state)

    def test_zero_retries(self):
        policy = BackoffPolicy(max_retries=0)
        assert policy.max_attempts == 1
        assert not policy.can_retry(RetryState())
        assert policy.scheduled_delays() == []

    @pytest.mark.parametrize(
        "kwargs", [{"max_retries": -1}, {"base": -0.1}, {"jitter": -0.1}]
    )
    def test_rejects_negative_values(self, kwargs):
        with pytest.raises(ValueError):
            BackoffPolicy(**kwargs)

    def test_from_config(self, config):
        policy = BackoffPolicy.from_config(config)
        assert policy.max_retries == 2
        assert policy.base == 0.01
        assert policy.jitter == 0.0
