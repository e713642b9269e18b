"""
Retry, timeout and circuit breaking around a connector.

The sync engine stays free of timing logic: it calls a ResilientConnector
exactly like any other connector and only sees FetchError / WriteError once
every retry has been spent.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, List, Optional, Type

from ..config.config_manager import EngineSettings, RetryConfig
from ..error_handling.circuit_breaker import CircuitBreakerManager
from ..error_handling.error_classifier import ErrorClassifier
from ..error_handling.exceptions import ConnectorError, FetchError, WriteError
from ..error_handling.recovery_manager import RecoveryConfig, RecoveryManager
from ..models.sync_models import ConnectorQuery
from .base import Connector, ConnectorRegistry

logger = logging.getLogger(__name__)


class ResilientConnector(Connector):
    """Decorates a connector with per-call timeout, retries and a circuit breaker."""

    def __init__(self,
                 connector: Connector,
                 retry_config: Optional[RetryConfig] = None,
                 timeout: Optional[float] = None,
                 circuit_breaker_manager: Optional[CircuitBreakerManager] = None,
                 circuit_breaker_enabled: bool = True,
                 circuit_breaker_failure_threshold: int = 5,
                 circuit_breaker_timeout: float = 60.0,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            connector: The connector to wrap
            retry_config: Attempts and backoff delays
            timeout: Seconds allowed per call, None for no limit
            circuit_breaker_manager: Shared breaker registry (one breaker per system)
            sleep: Function used to wait between attempts
        """
        self.connector = connector
        self.system = connector.system
        self.timeout = timeout
        retry_config = retry_config or RetryConfig()
        self.circuit_breaker_manager = circuit_breaker_manager or CircuitBreakerManager()
        self.recovery_manager = RecoveryManager(
            config=RecoveryConfig(
                max_retry_attempts=retry_config.max_attempts,
                base_retry_delay=retry_config.base_delay,
                max_retry_delay=retry_config.max_delay,
                circuit_breaker_enabled=circuit_breaker_enabled,
                circuit_breaker_failure_threshold=circuit_breaker_failure_threshold,
                circuit_breaker_timeout=circuit_breaker_timeout
            ),
            error_classifier=ErrorClassifier(),
            circuit_breaker_manager=self.circuit_breaker_manager,
            sleep=sleep
        )
        self._executor: Optional[ThreadPoolExecutor] = None

    def fetch_all(self, query: Optional[ConnectorQuery] = None) -> List[Dict[str, Any]]:
        return self._execute("fetch_all", FetchError, self.connector.fetch_all, query)

    def fetch_by_id(self, key: Any) -> Optional[Dict[str, Any]]:
        return self._execute("fetch_by_id", FetchError, self.connector.fetch_by_id, key)

    def create(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return self._execute("create", WriteError, self.connector.create, record)

    def update(self, key: Any, partial_record: Dict[str, Any]) -> Dict[str, Any]:
        return self._execute("update", WriteError, self.connector.update, key, partial_record)

    def check_connection(self) -> bool:
        return self.connector.check_connection()

    def _execute(self, operation: str, error_type: Type[ConnectorError], func: Callable, *args) -> Any:
        operation_name = f"{self.system.value}.{operation}"
        result = self.recovery_manager.execute_with_recovery(
            operation_name,
            self._call_with_timeout,
            operation_name,
            error_type,
            func,
            *args,
            breaker_name=self.system.value
        )
        if result.success:
            return result.result

        error = result.error
        if isinstance(error, error_type):
            raise error
        # Circuit breaker rejections and unexpected exceptions surface as the operation's error type
        if isinstance(error, ConnectorError):
            raise error_type(
                f"{operation_name} failed: {error}",
                system=self.system.value,
                status_code=error.status_code,
                timed_out=error.timed_out,
                cause=error
            ) from error
        raise error_type(
            f"{operation_name} failed after {len(result.attempts)} attempt(s): {error}",
            system=self.system.value,
            cause=error
        ) from error

    def _call_with_timeout(self, operation_name: str, error_type: Type[ConnectorError],
                           func: Callable, *args) -> Any:
        if self.timeout is None:
            return func(*args)

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix=f"connector-{self.system.value}")
        future = self._executor.submit(func, *args)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            future.cancel()
            logger.warning(f"{operation_name} timed out after {self.timeout}s")
            raise error_type(
                f"{operation_name} timed out after {self.timeout}s",
                system=self.system.value,
                timed_out=True,
                cause=e
            ) from e

    def close(self) -> None:
        """Stop the timeout worker pool and close the wrapped connector.

        Calls that already timed out may still be running; they are not waited for.
        """
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        self.connector.close()


def wrap_connectors(connectors: Dict[Any, Connector],
                    settings: Optional[EngineSettings] = None,
                    circuit_breaker_manager: Optional[CircuitBreakerManager] = None,
                    sleep: Callable[[float], None] = time.sleep) -> ConnectorRegistry:
    """Wrap every connector with the retry, timeout and breaker policy from ``settings``."""
    settings = settings or EngineSettings()
    circuit_breaker_manager = circuit_breaker_manager or CircuitBreakerManager()
    registry = ConnectorRegistry()
    for system, connector in connectors.items():
        registry.register(system, ResilientConnector(
            connector,
            retry_config=settings.retry_config,
            timeout=settings.connector_timeout,
            circuit_breaker_manager=circuit_breaker_manager,
            circuit_breaker_enabled=settings.circuit_breaker_enabled,
            circuit_breaker_failure_threshold=settings.circuit_breaker_failure_threshold,
            circuit_breaker_timeout=settings.circuit_breaker_timeout,
            sleep=sleep
        ))
    return registry
