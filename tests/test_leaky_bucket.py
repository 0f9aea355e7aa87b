"""Tests for the leaky bucket limiter."""

from unittest.mock import MagicMock

import pytest
import redis

from flowlimiter.limiters.leaky_bucket import LeakyBucket


@pytest.fixture
def bucket(store, clock):
    return LeakyBucket(store, "test", rate=1, burst=3, clock=clock)


class TestLeakyBucketConfiguration:
    """Constructor defaults and key layout."""

    def test_defaults_for_non_positive_values(self, store):
        bucket = LeakyBucket(store, "api", rate=0, burst=-5)
        assert bucket.rate == 20
        assert bucket.burst == 10

    def test_keys_include_suffix(self, store):
        bucket = LeakyBucket(store, "api")
        assert bucket.refresh_time_key == "flowlimit:lkbucket:refresh:lasttime:api"
        assert bucket.water_level_key == "flowlimit:lkbucket:water:has:count:api"


class TestLeakyBucketAdmission:
    """Admission decisions against an in-memory store."""

    def test_admits_burst_then_denies_in_same_second(self, bucket, store):
        for _ in range(3):
            assert bucket.permission_granted().allowed is True

        result = bucket.permission_granted()
        assert result.allowed is False
        assert result.error is None
        assert store.get(bucket.water_level_key) == 3

    def test_still_full_later_in_same_second(self, bucket, clock):
        for _ in range(3):
            bucket.permission_granted()
        clock.advance(0.5)
        assert bucket.permission_granted().allowed is False

    def test_new_second_empties_bucket(self, bucket, clock, store):
        for _ in range(4):
            bucket.permission_granted()

        clock.advance(1)
        assert bucket.permission_granted().allowed is True
        assert store.get(bucket.water_level_key) == 1

    def test_refresh_persists_both_keys_with_timeout(self, bucket, store, clock):
        bucket.permission_granted()
        assert store.get(bucket.refresh_time_key) == int(clock())
        assert store.time_to_live(bucket.refresh_time_key) == 6
        assert store.time_to_live(bucket.water_level_key) == 6

    def test_cold_start_after_expiry(self, store, clock):
        """Draining alone would leave 3 units; expiry empties the bucket."""
        bucket = LeakyBucket(store, "cold", rate=1, burst=10, proportional_drain=True, clock=clock)
        for _ in range(10):
            assert bucket.permission_granted().allowed is True

        clock.advance(7)
        assert store.get(bucket.water_level_key) is None
        assert bucket.refresh_water() == 0
        assert bucket.permission_granted().allowed is True

    def test_independent_buckets(self, store, clock):
        first = LeakyBucket(store, "first", rate=1, burst=1, clock=clock)
        second = LeakyBucket(store, "second", rate=1, burst=1, clock=clock)
        assert first.permission_granted().allowed is True
        assert first.permission_granted().allowed is False
        assert second.permission_granted().allowed is True


class TestProportionalDrain:
    """Opt-in draining of rate units per elapsed second."""

    def test_partial_drain_carries_over(self, store, clock):
        bucket = LeakyBucket(store, "drain", rate=2, burst=5, proportional_drain=True, clock=clock)
        for _ in range(5):
            assert bucket.permission_granted().allowed is True
        assert bucket.permission_granted().allowed is False

        clock.advance(1)
        assert bucket.permission_granted().allowed is True
        assert bucket.permission_granted().allowed is True
        assert bucket.permission_granted().allowed is False

    def test_drain_never_goes_negative(self, store, clock):
        bucket = LeakyBucket(store, "drain", rate=10, burst=5, proportional_drain=True, clock=clock)
        bucket.permission_granted()
        clock.advance(3)
        assert bucket.refresh_water() == 0


class TestLeakyBucketErrors:
    """Failures are reported in the result, never raised."""

    def test_missing_store(self):
        result = LeakyBucket(None, "api").permission_granted()
        assert result.allowed is False
        assert result.error == "10030:invalid store connection"

    def test_refresh_failure(self):
        store = MagicMock()
        store.get_multiple.side_effect = redis.ConnectionError("Connection refused")

        result = LeakyBucket(store, "api").permission_granted()

        assert result.allowed is False
        assert result.error == "Connection refused"
        store.increment.assert_not_called()

    def test_admit_failure(self):
        store = MagicMock()
        store.get_multiple.return_value = [None, None]
        store.increment.side_effect = redis.TimeoutError("Timeout writing to socket")

        result = LeakyBucket(store, "api").permission_granted()

        assert result.allowed is False
        assert result.error == "Timeout writing to socket"
