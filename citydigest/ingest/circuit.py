"""Per-source circuit breaker."""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum

from ..config import CircuitConfig
from ..logging import LoggingMixin
from ..utils import utc_now


class CircuitStatus(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitState:
    """Failure memory for one source."""
    failures: int = 0
    last_failure: datetime | None = None
    last_error: str | None = None
    state: CircuitStatus = CircuitStatus.CLOSED
    opened_at: datetime | None = None
    probes_in_flight: int = 0


class CircuitBreakerRegistry(LoggingMixin):
    """Holds circuit state for every source seen by this process.

    State transitions:
    - closed -> open after ``failure_threshold`` consecutive failures
    - open -> half_open once ``reset_timeout`` has elapsed
    - half_open -> closed on probe success, -> open on probe failure
    """

    def __init__(self, config: CircuitConfig | None = None):
        self.config = config or CircuitConfig()
        self._circuits: dict[str, CircuitState] = {}

    def _circuit(self, source_id: str) -> CircuitState:
        return self._circuits.setdefault(source_id, CircuitState())

    def get_state(self, source_id: str, now: datetime | None = None) -> CircuitStatus:
        """Current state, moving an expired open circuit to half_open."""
        circuit = self._circuits.get(source_id)
        if circuit is None:
            return CircuitStatus.CLOSED

        if circuit.state == CircuitStatus.OPEN and circuit.opened_at is not None:
            elapsed = (now or utc_now()) - circuit.opened_at
            if elapsed >= timedelta(seconds=self.config.reset_timeout):
                circuit.state = CircuitStatus.HALF_OPEN
                circuit.probes_in_flight = 0
                self.logger.info("Circuit half-open", source_id=source_id)

        return circuit.state

    def allow_request(self, source_id: str, now: datetime | None = None) -> bool:
        """Whether a call to the source may proceed right now.

        A half-open circuit admits at most ``half_open_requests`` probes.
        """
        state = self.get_state(source_id, now)
        if state == CircuitStatus.CLOSED:
            return True
        if state == CircuitStatus.OPEN:
            return False

        circuit = self._circuit(source_id)
        if circuit.probes_in_flight >= self.config.half_open_requests:
            return False
        circuit.probes_in_flight += 1
        return True

    def record_success(self, source_id: str) -> None:
        circuit = self._circuit(source_id)
        if circuit.state != CircuitStatus.CLOSED:
            self.logger.info("Circuit closed", source_id=source_id)
        circuit.failures = 0
        circuit.state = CircuitStatus.CLOSED
        circuit.opened_at = None
        circuit.probes_in_flight = 0

    def record_failure(self, source_id: str, error: str, now: datetime | None = None) -> None:
        """Count a failed call, opening the circuit at the threshold."""
        now = now or utc_now()
        circuit = self._circuit(source_id)
        circuit.failures += 1
        circuit.last_failure = now
        circuit.last_error = error

        if circuit.state == CircuitStatus.HALF_OPEN:
            circuit.state = CircuitStatus.OPEN
            circuit.opened_at = now
            circuit.probes_in_flight = 0
            self.logger.warning("Circuit probe failed, reopening", source_id=source_id, error=error)
        elif circuit.failures >= self.config.failure_threshold and circuit.state != CircuitStatus.OPEN:
            circuit.state = CircuitStatus.OPEN
            circuit.opened_at = now
            self.logger.error(
                "Circuit opened",
                source_id=source_id,
                failures=circuit.failures,
                error=error
            )

    def snapshot(self, source_id: str) -> CircuitState:
        """Copy of a source's circuit state."""
        return replace(self._circuits.get(source_id, CircuitState()))

    def states(self) -> dict[str, CircuitState]:
        """Copies of every tracked circuit."""
        return {source_id: replace(state) for source_id, state in self._circuits.items()}

    def reset(self, source_id: str | None = None) -> None:
        """Forget circuit state for one source, or for all sources."""
        if source_id is None:
            self._circuits.clear()
        else:
            self._circuits.pop(source_id, None)


# Circuit state outlives a single pipeline run within the process
_circuit_registry: CircuitBreakerRegistry | None = None


def get_circuit_registry(config: CircuitConfig | None = None) -> CircuitBreakerRegistry:
    """Get the process-wide circuit breaker registry.

    Args:
        config: Thresholds to apply; existing circuit state is kept
    """
    global _circuit_registry
    if _circuit_registry is None:
        _circuit_registry = CircuitBreakerRegistry(config)
    elif config is not None:
        _circuit_registry.config = config
    return _circuit_registry
