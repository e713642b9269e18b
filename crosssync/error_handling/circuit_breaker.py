"""
Circuit breakers guarding calls to external systems.

One breaker per connector stops hammering a system that keeps failing and
lets it recover before requests are allowed through again.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Optional

from .exceptions import ConnectorError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation, requests allowed
    OPEN = "open"            # Requests blocked
    HALF_OPEN = "half_open"  # Probing whether the system has recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""
    failure_threshold: int = 5   # Consecutive failures before opening
    success_threshold: int = 2   # Consecutive successes to close from half-open
    timeout: float = 60.0        # Seconds to stay open before probing
    # Decides which exceptions count toward opening; None counts them all
    is_failure: Optional[Callable[[BaseException], bool]] = None


@dataclass
class CircuitBreakerStats:
    """Statistics for circuit breaker monitoring."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None


class CircuitBreakerError(ConnectorError):
    """Raised instead of calling an external system whose circuit is open."""

    def __init__(self, message: str, circuit_name: str, retry_after: float):
        super().__init__(message, system=circuit_name)
        self.circuit_name = circuit_name
        self.retry_after = retry_after


class CircuitBreaker:
    """Tracks consecutive failures of one external system."""

    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.stats = CircuitBreakerStats()
        self.state = CircuitState.CLOSED
        self._clock = clock
        self._lock = Lock()
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._opened_at = 0.0

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute a function through the circuit breaker.

        Raises:
            CircuitBreakerError: If circuit is open
            Exception: Any exception raised by the function
        """
        with self._lock:
            self.stats.total_requests += 1
            self._check_timeout_state()

            if self.state == CircuitState.OPEN:
                self.stats.rejected_requests += 1
                retry_after = max(0.0, self.config.timeout - (self._clock() - self._opened_at))
                logger.warning(f"Circuit breaker '{self.name}' is OPEN, rejecting request. "
                               f"Retry after {retry_after:.1f}s")
                raise CircuitBreakerError(
                    f"Circuit breaker '{self.name}' is open",
                    self.name,
                    retry_after
                )

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            if self.config.is_failure is None or self.config.is_failure(e):
                self._record_failure(e)
            else:
                logger.debug(f"Circuit breaker '{self.name}' ignoring {type(e).__name__}: {e}")
            raise
        self._record_success()
        return result

    def _record_success(self) -> None:
        with self._lock:
            self.stats.successful_requests += 1
            self.stats.last_success_time = self._clock()
            self._consecutive_failures = 0
            self._consecutive_successes += 1

            if (self.state == CircuitState.HALF_OPEN and
                    self._consecutive_successes >= self.config.success_threshold):
                self._transition(CircuitState.CLOSED)

    def _record_failure(self, error: Exception) -> None:
        with self._lock:
            self.stats.failed_requests += 1
            self.stats.last_failure_time = self._clock()
            self._consecutive_successes = 0
            self._consecutive_failures += 1

            logger.debug(f"Circuit breaker '{self.name}' recorded failure: {error}. "
                         f"Consecutive failures: {self._consecutive_failures}")

            if (self.state == CircuitState.HALF_OPEN or
                    self._consecutive_failures >= self.config.failure_threshold):
                self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        if self.state == new_state:
            return
        old_state = self.state
        self.state = new_state
        self.stats.state_changes += 1
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.HALF_OPEN:
            self._consecutive_successes = 0
        else:
            self._consecutive_failures = 0

        log = logger.error if new_state == CircuitState.OPEN else logger.info
        log(f"Circuit breaker '{self.name}' transitioned from {old_state.value} to {new_state.value}")

    def _check_timeout_state(self) -> None:
        if self.state == CircuitState.OPEN and self._clock() - self._opened_at >= self.config.timeout:
            self._transition(CircuitState.HALF_OPEN)

    def get_state(self) -> CircuitState:
        """Get current circuit breaker state."""
        with self._lock:
            self._check_timeout_state()
            return self.state

    def reset(self) -> None:
        """Reset circuit breaker to initial state."""
        with self._lock:
            self.state = CircuitState.CLOSED
            self.stats = CircuitBreakerStats()
            self._consecutive_failures = 0
            self._consecutive_successes = 0
            logger.info(f"Circuit breaker '{self.name}' has been reset")


class CircuitBreakerManager:
    """Creates and monitors one circuit breaker per external system."""

    def __init__(self):
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = Lock()

    def get_breaker(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """Get or create a circuit breaker; ``config`` only applies on creation."""
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(name, config)
                logger.info(f"Created new circuit breaker: {name}")
            return self._breakers[name]

    def get_health_status(self) -> Dict[str, Any]:
        """Summarize the state of every breaker."""
        with self._lock:
            breakers = dict(self._breakers)

        details = {}
        for name, breaker in breakers.items():
            stats = breaker.stats
            details[name] = {
                'state': breaker.get_state().value,
                'total_requests': stats.total_requests,
                'failed_requests': stats.failed_requests,
                'rejected_requests': stats.rejected_requests,
            }

        open_breakers = sum(1 for d in details.values() if d['state'] == 'open')
        half_open_breakers = sum(1 for d in details.values() if d['state'] == 'half_open')

        overall_health = "healthy"
        if open_breakers > 0:
            overall_health = "degraded" if open_breakers < len(details) else "unhealthy"
        elif half_open_breakers > 0:
            overall_health = "recovering"

        return {
            'overall_health': overall_health,
            'total_breakers': len(details),
            'open_breakers': open_breakers,
            'half_open_breakers': half_open_breakers,
            'breaker_details': details
        }
