"""Unit tests for retry policy with exponential backoff."""

import pytest

from hevy_sync.fetcher.retry_handler import RetryPolicy, calculate_backoff_delay
from hevy_sync.models.errors import (
    ApiError,
    InvalidCredentialError,
    TransportError,
    ValidationError,
)
from tests.fixtures.fakes import FakeSleeper


class TestBackoffCalculation:
    """Test exponential backoff formula: min(max_delay, base * 2 ** attempt) * jitter."""

    def test_deterministic_backoff_formula_verification(self):
        test_cases = [
            (0, 1.0),   # 1 * 2^0
            (1, 2.0),   # 1 * 2^1
            (2, 4.0),   # 1 * 2^2
            (3, 8.0),   # 1 * 2^3
            (4, 10.0),  # 16, capped at 10
            (5, 10.0),
        ]
        for attempt, expected in test_cases:
            assert calculate_backoff_delay(attempt, base_delay=1.0, max_delay=10.0, jitter=1.0) == expected

    def test_jitter_scales_delay(self):
        assert calculate_backoff_delay(2, base_delay=1.0, max_delay=10.0, jitter=0.5) == 2.0

    def test_random_jitter_stays_within_half_to_full(self, deterministic_seed):
        delays = [calculate_backoff_delay(1, base_delay=1.0, max_delay=10.0) for _ in range(200)]

        assert all(1.0 <= d <= 2.0 for d in delays)
        assert len(set(delays)) > 1

    def test_jitter_never_exceeds_max_delay(self, deterministic_seed):
        delays = [calculate_backoff_delay(8, base_delay=1.0, max_delay=10.0) for _ in range(100)]
        assert all(5.0 <= d <= 10.0 for d in delays)


class TestRetryPolicy:

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_retryable_statuses(self, status):
        assert RetryPolicy().is_retryable(ApiError("boom", status))

    @pytest.mark.parametrize("status", [400, 403, 404, 422])
    def test_other_client_errors_are_not_retried(self, status):
        assert not RetryPolicy().is_retryable(ApiError("boom", status))

    def test_invalid_credential_never_retried(self):
        assert not RetryPolicy().is_retryable(InvalidCredentialError())

    def test_transport_errors_are_retried(self):
        assert RetryPolicy().is_retryable(TransportError("dns failure"))

    def test_non_sync_errors_are_not_retried(self):
        assert not RetryPolicy().is_retryable(RuntimeError("bug"))
        assert not RetryPolicy().is_retryable(ValidationError("bad batch"))

    def test_should_retry_respects_max_retries(self):
        policy = RetryPolicy(max_retries=3)
        error = ApiError("unavailable", 503)

        assert policy.should_retry(error, 0)
        assert policy.should_retry(error, 2)
        assert not policy.should_retry(error, 3)

    @pytest.mark.asyncio
    async def test_backoff_sleeps_for_computed_delay(self):
        sleeper = FakeSleeper()
        policy = RetryPolicy(base_delay=1.0, max_delay=10.0, sleeper=sleeper)

        delay = await policy.backoff(2)

        assert sleeper.delays == [delay]
        assert 2.0 <= delay <= 4.0
