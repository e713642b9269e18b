"""
Retry-with-backoff execution for connector calls.

Combines error classification, exponential backoff with jitter and a
per-system circuit breaker. The sync orchestrator never sleeps or retries
itself; it only sees the final outcome.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from .circuit_breaker import CircuitBreakerConfig, CircuitBreakerError, CircuitBreakerManager
from .error_classifier import ErrorClassification, ErrorClassifier

logger = logging.getLogger(__name__)


@dataclass
class RecoveryConfig:
    """Configuration for error recovery behavior."""
    max_retry_attempts: int = 3
    base_retry_delay: float = 2.0
    max_retry_delay: float = 60.0
    jitter_factor: float = 0.1
    circuit_breaker_enabled: bool = True
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_timeout: float = 60.0

    def __post_init__(self):
        if self.max_retry_attempts < 1:
            raise ValueError("max_retry_attempts must be at least 1")
        if self.max_retry_delay < self.base_retry_delay:
            raise ValueError("max_retry_delay must be >= base_retry_delay")


@dataclass
class RecoveryAttempt:
    """Information about one attempt."""
    attempt_number: int
    timestamp: datetime
    error: Optional[BaseException] = None
    success: bool = False
    delay_after_attempt: float = 0.0
    recovery_action: Optional[str] = None


@dataclass
class RecoveryResult:
    """Outcome of a call executed with recovery."""
    success: bool
    result: Any = None
    error: Optional[BaseException] = None
    attempts: List[RecoveryAttempt] = field(default_factory=list)
    total_duration: float = 0.0
    recovery_strategy: Optional[str] = None


class RecoveryManager:
    """Executes calls with classification-driven retries and circuit breaking."""

    def __init__(self,
                 config: Optional[RecoveryConfig] = None,
                 error_classifier: Optional[ErrorClassifier] = None,
                 circuit_breaker_manager: Optional[CircuitBreakerManager] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize recovery manager.

        Args:
            config: Recovery configuration
            error_classifier: Error classifier instance
            circuit_breaker_manager: Circuit breaker manager instance
            sleep: Function used to wait between attempts
        """
        self.config = config or RecoveryConfig()
        self.error_classifier = error_classifier or ErrorClassifier()
        self.circuit_breaker_manager = circuit_breaker_manager or CircuitBreakerManager()
        self._sleep = sleep

    def execute_with_recovery(self,
                              operation_name: str,
                              operation_func: Callable,
                              *args,
                              breaker_name: Optional[str] = None,
                              **kwargs) -> RecoveryResult:
        """
        Execute an operation, retrying retryable failures.

        Args:
            operation_name: Name of the operation for logging
            operation_func: Function to execute
            breaker_name: Circuit breaker to route the call through
                (defaults to ``operation_name``)

        Returns:
            RecoveryResult containing execution results
        """
        start_time = time.monotonic()
        attempts: List[RecoveryAttempt] = []
        last_error: Optional[BaseException] = None

        circuit_breaker = None
        if self.config.circuit_breaker_enabled:
            circuit_breaker = self.circuit_breaker_manager.get_breaker(
                breaker_name or operation_name,
                CircuitBreakerConfig(
                    failure_threshold=self.config.circuit_breaker_failure_threshold,
                    timeout=self.config.circuit_breaker_timeout,
                    is_failure=self.trips_breaker
                )
            )

        for attempt_num in range(1, self.config.max_retry_attempts + 1):
            attempt = RecoveryAttempt(attempt_number=attempt_num, timestamp=datetime.now(timezone.utc))
            attempts.append(attempt)

            try:
                if circuit_breaker is not None:
                    result = circuit_breaker.call(operation_func, *args, **kwargs)
                else:
                    result = operation_func(*args, **kwargs)
            except CircuitBreakerError as e:
                logger.error(f"Circuit breaker is open for '{operation_name}': {e}")
                attempt.error = e
                attempt.recovery_action = "circuit_breaker_open"
                return RecoveryResult(
                    success=False,
                    error=e,
                    attempts=attempts,
                    total_duration=time.monotonic() - start_time,
                    recovery_strategy="circuit_breaker_blocked"
                )
            except Exception as e:
                last_error = e
                classification = self.error_classifier.classify_error(e)
                attempt.error = e
                attempt.recovery_action = classification.recovery_action

                logger.warning(f"Operation '{operation_name}' failed on attempt {attempt_num}: "
                               f"{type(e).__name__}: {e}")

                if not classification.is_retryable:
                    logger.debug(f"Non-retryable error for '{operation_name}': {classification.user_message}")
                    break

                if attempt_num >= self.config.max_retry_attempts:
                    logger.error(f"All retry attempts exhausted for '{operation_name}'")
                    break

                delay = self._calculate_retry_delay(attempt_num, classification)
                attempt.delay_after_attempt = delay
                logger.info(f"Retrying '{operation_name}' in {delay:.2f}s "
                            f"(attempt {attempt_num + 1}/{self.config.max_retry_attempts})")
                self._sleep(delay)
                continue

            attempt.success = True
            total_duration = time.monotonic() - start_time
            if attempt_num > 1:
                logger.info(f"Operation '{operation_name}' succeeded after {attempt_num} attempts "
                            f"in {total_duration:.2f}s")
            return RecoveryResult(
                success=True,
                result=result,
                attempts=attempts,
                total_duration=total_duration,
                recovery_strategy="retry_success" if attempt_num > 1 else "direct_success"
            )

        return RecoveryResult(
            success=False,
            error=last_error,
            attempts=attempts,
            total_duration=time.monotonic() - start_time,
            recovery_strategy="retry_exhausted"
        )

    def trips_breaker(self, error: BaseException) -> bool:
        """Only failures that say the system itself is unwell count toward opening its breaker."""
        classification = self.error_classifier.classify_error(error)
        return classification.should_circuit_break or classification.is_retryable

    def _calculate_retry_delay(self, attempt_num: int, classification: ErrorClassification) -> float:
        """Exponential backoff: base_delay * multiplier^(attempt_num - 1), capped, with jitter."""
        delay = self.config.base_retry_delay * (classification.retry_delay_multiplier ** (attempt_num - 1))
        delay = min(delay, self.config.max_retry_delay)

        if self.config.jitter_factor > 0 and delay > 0:
            jitter_range = delay * self.config.jitter_factor
            delay = max(0.0, delay + random.uniform(-jitter_range, jitter_range))

        return delay
