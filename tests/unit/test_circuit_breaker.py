"""Unit tests for circuit breaker."""

import pytest

from hevy_sync.fetcher.circuit_breaker import CircuitBreaker, failure_weight
from hevy_sync.models.clock import MonotonicClock
from hevy_sync.models.data_models import CircuitState
from hevy_sync.models.errors import (
    ApiError,
    CircuitOpenError,
    InvalidCredentialError,
    TransportError,
)
from tests.fixtures.fakes import FakeClock


def api_error(status: int) -> ApiError:
    return ApiError(f"status {status}", status)


class TestCircuitBreakerBasics:

    def test_initial_state_is_closed(self):
        cb = CircuitBreaker()
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_weight == 0.0

    def test_closed_circuit_allows_requests(self):
        cb = CircuitBreaker()
        cb.check("/workouts")  # does not raise

    def test_uses_monotonic_clock_by_default(self):
        cb = CircuitBreaker()
        assert isinstance(cb.clock, MonotonicClock)

    def test_accepts_custom_clock(self):
        fake_clock = FakeClock()
        cb = CircuitBreaker(clock=fake_clock)
        assert cb.clock is fake_clock


class TestFailureWeights:

    @pytest.mark.parametrize("status", [429, 502, 503, 504])
    def test_transient_statuses_weigh_half(self, status):
        assert failure_weight(api_error(status)) == 0.5

    @pytest.mark.parametrize("status", [400, 403, 500, 408])
    def test_other_statuses_weigh_one(self, status):
        assert failure_weight(api_error(status)) == 1.0

    def test_transport_error_weighs_one(self):
        assert failure_weight(TransportError("connection reset")) == 1.0

    def test_credential_error_weighs_one(self):
        assert failure_weight(InvalidCredentialError()) == 1.0

    def test_own_rejections_weigh_nothing(self):
        assert failure_weight(CircuitOpenError(10.0)) == 0.0


class TestCircuitBreakerStateTransitions:

    def test_ten_503s_open_exactly_at_the_tenth(self):
        cb = CircuitBreaker(failure_threshold=5.0, clock=FakeClock())

        for _ in range(9):
            cb.record_failure(api_error(503))
            assert cb.state == CircuitState.CLOSED

        cb.record_failure(api_error(503))
        assert cb.state == CircuitState.OPEN

    def test_five_400s_open_exactly_at_the_fifth(self):
        cb = CircuitBreaker(failure_threshold=5.0, clock=FakeClock())

        for _ in range(4):
            cb.record_failure(api_error(400))
        assert cb.state == CircuitState.CLOSED

        cb.record_failure(api_error(400))
        assert cb.state == CircuitState.OPEN

    def test_success_resets_accumulated_weight(self):
        cb = CircuitBreaker(failure_threshold=5.0, clock=FakeClock())

        for _ in range(4):
            cb.record_failure(api_error(500))
        cb.record_success()

        assert cb.failure_weight == 0.0
        cb.record_failure(api_error(500))
        assert cb.state == CircuitState.CLOSED

    def test_circuit_open_errors_do_not_count(self):
        cb = CircuitBreaker(failure_threshold=1.0, clock=FakeClock())
        cb.record_failure(CircuitOpenError(5.0))
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_weight == 0.0


class TestCircuitBreakerRecovery:

    def open_breaker(self, clock, reset_timeout=60.0):
        cb = CircuitBreaker(failure_threshold=1.0, reset_timeout=reset_timeout, clock=clock)
        cb.record_failure(api_error(500))
        assert cb.state == CircuitState.OPEN
        return cb

    def test_open_circuit_rejects_before_reset_timeout(self):
        clock = FakeClock()
        cb = self.open_breaker(clock)

        clock.advance(30.0)
        with pytest.raises(CircuitOpenError) as exc_info:
            cb.check("/workouts")

        assert exc_info.value.retry_after == pytest.approx(30.0)
        assert cb.state == CircuitState.OPEN

    def test_reset_timeout_must_be_exceeded(self):
        clock = FakeClock()
        cb = self.open_breaker(clock)

        clock.advance(60.0)
        with pytest.raises(CircuitOpenError):
            cb.check()

    def test_moves_to_half_open_lazily_after_timeout(self):
        clock = FakeClock()
        cb = self.open_breaker(clock)

        clock.advance(61.0)
        assert cb.state == CircuitState.OPEN  # nothing changes until checked

        cb.check()
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_allows_exactly_one_probe(self):
        clock = FakeClock()
        cb = self.open_breaker(clock)
        clock.advance(61.0)

        cb.check()
        with pytest.raises(CircuitOpenError):
            cb.check()

    def test_successful_probe_closes_circuit(self):
        clock = FakeClock()
        cb = self.open_breaker(clock)
        clock.advance(61.0)

        cb.check()
        cb.record_success()

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_weight == 0.0
        cb.check()

    def test_failed_probe_reopens_circuit(self):
        clock = FakeClock()
        cb = self.open_breaker(clock)
        clock.advance(61.0)

        cb.check()
        cb.record_failure(api_error(503))

        assert cb.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            cb.check()

    def test_released_probe_can_be_claimed_again(self):
        clock = FakeClock()
        cb = self.open_breaker(clock)
        clock.advance(61.0)

        cb.check()
        cb.release_probe()
        cb.check()
        assert cb.state == CircuitState.HALF_OPEN

    def test_check_reports_which_caller_holds_the_half_open_slot(self):
        clock = FakeClock()
        cb = self.open_breaker(clock)

        assert CircuitBreaker().check() is False
        clock.advance(61.0)
        assert cb.check() is True
        cb.record_success()
        assert cb.check() is False

    def test_retry_after_counts_down(self):
        clock = FakeClock()
        cb = self.open_breaker(clock, reset_timeout=60.0)

        clock.advance(20.0)
        assert cb.retry_after() == pytest.approx(40.0)

    def test_reset_returns_to_closed(self):
        cb = self.open_breaker(FakeClock())
        cb.reset()
        assert cb.state == CircuitState.CLOSED
        cb.check()
