"""Unit tests for the rate-limit tracker."""

from unittest.mock import Mock

import pytest

from hevy_sync.fetcher.rate_limiter import RATE_LIMIT_CACHE_KEY, RateLimitTracker
from hevy_sync.storage.kv_store import MemoryKVStore, TTLCache
from tests.fixtures.fakes import FakeClock


@pytest.fixture
def clock():
    return FakeClock(initial_time=1_750_000_000.0)


@pytest.fixture
def tracker(clock):
    return RateLimitTracker(
        cache=TTLCache(MemoryKVStore(), clock=clock),
        ttl_seconds=600.0,
        default_delay=0.05,
        throttle_delay=0.1,
        clock=clock,
    )


class TestHeaderExtraction:

    @pytest.mark.parametrize("headers", [
        {"X-RateLimit-Remaining": "90", "X-RateLimit-Limit": "100", "X-RateLimit-Reset": "30"},
        {"x-ratelimit-remaining": "90", "x-ratelimit-limit": "100", "x-ratelimit-reset": "30"},
        {"X-RATELIMIT-REMAINING": "90", "X-RATELIMIT-LIMIT": "100", "X-RATELIMIT-RESET": "30"},
    ])
    def test_header_names_are_case_insensitive(self, headers):
        assert RateLimitTracker.extract(headers) == {"remaining": 90, "limit": 100, "reset": 30}

    def test_no_headers_means_nothing_extracted(self):
        assert RateLimitTracker.extract({"Content-Type": "application/json"}) is None

    def test_unparseable_values_are_ignored(self):
        extracted = RateLimitTracker.extract({"X-RateLimit-Remaining": "lots", "X-RateLimit-Limit": "100"})
        assert extracted == {"remaining": None, "limit": 100, "reset": None}


class TestObserve:

    def test_observe_persists_budget(self, tracker, clock):
        budget = tracker.observe({"X-RateLimit-Remaining": "80", "X-RateLimit-Limit": "100"})

        assert budget.remaining == 80
        assert budget.limit == 100
        assert budget.observed_at == clock.now()
        assert tracker.current_budget() == budget

    def test_relative_reset_is_added_to_observation_time(self, tracker, clock):
        budget = tracker.observe({"X-RateLimit-Remaining": "80", "X-RateLimit-Reset": "60"})
        assert budget.reset_at == clock.now() + 60

    def test_epoch_reset_is_taken_as_is(self, tracker):
        budget = tracker.observe({"X-RateLimit-Remaining": "80", "X-RateLimit-Reset": "1750000600"})
        assert budget.reset_at == 1_750_000_600.0

    def test_response_without_headers_keeps_previous_budget(self, tracker):
        tracker.observe({"X-RateLimit-Remaining": "80", "X-RateLimit-Limit": "100"})
        assert tracker.observe({}) is None
        assert tracker.current_budget().remaining == 80

    def test_budget_expires_after_ttl(self, tracker, clock):
        tracker.observe({"X-RateLimit-Remaining": "10", "X-RateLimit-Limit": "100"})

        clock.advance(601.0)

        assert tracker.current_budget() is None
        assert tracker.should_throttle() is False

    def test_low_budget_is_logged(self, clock):
        logger = Mock()
        tracker = RateLimitTracker(clock=clock, logger=logger)

        tracker.observe({"X-RateLimit-Remaining": "5", "X-RateLimit-Limit": "100"})

        logger.rate_limit_low.assert_called_once_with(5, 100)

    def test_clear_forgets_budget(self, tracker):
        tracker.observe({"X-RateLimit-Remaining": "5", "X-RateLimit-Limit": "100"})
        tracker.clear()
        assert tracker.cache.get(RATE_LIMIT_CACHE_KEY) is None


class TestThrottling:

    def test_unknown_budget_does_not_throttle_but_still_delays(self, tracker):
        assert tracker.should_throttle() is False
        assert tracker.delay_before_next_request() == 0.05

    def test_healthy_budget_uses_default_delay(self, tracker):
        tracker.observe({"X-RateLimit-Remaining": "900", "X-RateLimit-Limit": "1000"})
        assert tracker.should_throttle() is False
        assert tracker.delay_before_next_request() == 0.05

    def test_throttles_below_twenty_percent(self, tracker):
        tracker.observe({"X-RateLimit-Remaining": "150", "X-RateLimit-Limit": "1000"})
        assert tracker.should_throttle() is True
        assert tracker.delay_before_next_request() == 0.1

    def test_throttles_below_fifty_remaining(self, tracker):
        tracker.observe({"X-RateLimit-Remaining": "49"})
        assert tracker.should_throttle() is True

    def test_budget_survives_a_new_tracker_on_the_same_store(self, clock):
        store = MemoryKVStore()
        RateLimitTracker(cache=TTLCache(store, clock=clock), clock=clock).observe(
            {"X-RateLimit-Remaining": "10", "X-RateLimit-Limit": "100"}
        )

        fresh = RateLimitTracker(cache=TTLCache(store, clock=clock), clock=clock)
        assert fresh.should_throttle() is True
