"""Circuit breaker implementation with weighted failures."""

from dataclasses import dataclass
from typing import Optional

from hevy_sync.models.clock import Clock, MonotonicClock
from hevy_sync.models.data_models import CircuitState
from hevy_sync.models.errors import (
    ApiError,
    CircuitOpenError,
    TRANSIENT_STATUS_CODES,
)


@dataclass
class CircuitBreakerState:
    """Mutable breaker state."""
    state: CircuitState = CircuitState.CLOSED
    failure_weight: float = 0.0
    last_failure_at: Optional[float] = None
    probe_in_flight: bool = False


def failure_weight(error: BaseException) -> float:
    """
    Weight a failure contributes toward the threshold.

    Errors raised by the breaker itself weigh nothing, transient server-side
    overload (429, 502, 503, 504) weighs 0.5, anything else weighs 1.0.
    """
    if isinstance(error, CircuitOpenError):
        return 0.0
    if isinstance(error, ApiError) and error.status_code in TRANSIENT_STATUS_CODES:
        return 0.5
    return 1.0


class CircuitBreaker:
    """
    Circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    - Opens once the accumulated failure weight reaches failure_threshold
    - Stays open until reset_timeout seconds have passed since the last failure
    - Then moves to HALF_OPEN lazily on the next check and lets one probe through
    - Closes on a successful probe, reopens on a failed one

    Instances are injected into the executor; nothing here is global.
    """

    def __init__(
        self,
        failure_threshold: float = 5.0,
        reset_timeout: float = 60.0,
        clock: Optional[Clock] = None,
        logger: Optional['StructuredLogger'] = None
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Accumulated failure weight that opens the circuit
            reset_timeout: Seconds after the last failure before a probe is allowed
            clock: Clock interface for time management (defaults to MonotonicClock)
            logger: Optional structured logger for state transitions
        """
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.clock = clock or MonotonicClock()
        self.logger = logger
        self._state = CircuitBreakerState()

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def failure_weight(self) -> float:
        return self._state.failure_weight

    def _transition(self, new_state: CircuitState) -> None:
        self._state.state = new_state
        if self.logger:
            self.logger.circuit_breaker_state(new_state.value, self._state.failure_weight)

    def retry_after(self) -> float:
        """Seconds until the circuit will allow a probe (0 when not open)."""
        if self._state.state is not CircuitState.OPEN or self._state.last_failure_at is None:
            return 0.0
        elapsed = self.clock.now() - self._state.last_failure_at
        return max(0.0, self.reset_timeout - elapsed)

    def check(self, endpoint: Optional[str] = None) -> bool:
        """
        Gate a request.

        Returns:
            True when the caller now holds the single half-open probe slot

        Raises:
            CircuitOpenError: If the circuit is open and the reset window has not
                elapsed, or a half-open probe is already in flight
        """
        circuit = self._state

        if circuit.state is CircuitState.OPEN:
            elapsed = self.clock.now() - (circuit.last_failure_at or 0.0)
            if elapsed > self.reset_timeout:
                self._transition(CircuitState.HALF_OPEN)
                circuit.probe_in_flight = False
            else:
                raise CircuitOpenError(
                    self.reset_timeout - elapsed,
                    context={"endpoint": endpoint, "last_failure_at": circuit.last_failure_at},
                )

        if circuit.state is CircuitState.HALF_OPEN:
            if circuit.probe_in_flight:
                raise CircuitOpenError(0.0, context={"endpoint": endpoint, "probe_in_flight": True})
            circuit.probe_in_flight = True
            return True

        return False

    def record_success(self) -> None:
        """Record a successful request."""
        circuit = self._state

        if circuit.state is CircuitState.HALF_OPEN:
            circuit.failure_weight = 0.0
            circuit.probe_in_flight = False
            circuit.last_failure_at = None
            self._transition(CircuitState.CLOSED)
            return

        if circuit.state is CircuitState.CLOSED:
            circuit.failure_weight = 0.0

    def record_failure(self, error: BaseException) -> None:
        """Record a failed request, weighted by what kind of failure it was."""
        weight = failure_weight(error)
        if weight == 0.0:
            return

        circuit = self._state
        circuit.failure_weight += weight
        circuit.last_failure_at = self.clock.now()

        if circuit.state is CircuitState.CLOSED:
            if circuit.failure_weight >= self.failure_threshold:
                self._transition(CircuitState.OPEN)

        elif circuit.state is CircuitState.HALF_OPEN:
            circuit.probe_in_flight = False
            self._transition(CircuitState.OPEN)

    def release_probe(self) -> None:
        """Give back a half-open probe slot whose call never reached the API."""
        self._state.probe_in_flight = False

    def reset(self) -> None:
        """Return to a fresh CLOSED state."""
        self._state = CircuitBreakerState()
