"""
Error classification and handling strategies for the sync engine.

Classifies failures raised by connectors (timeouts, HTTP-style status codes,
boto3 errors from the document store) so the recovery manager can decide
whether a call is worth retrying.
"""

import logging
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import ConfigurationError, ConnectorError

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""
    TRANSIENT = "transient"          # Temporary errors that should be retried
    PERMANENT = "permanent"          # Permanent errors that should not be retried
    PERMISSION = "permission"        # Permission/authorization errors
    CONFIGURATION = "configuration"  # Configuration or validation errors
    RATE_LIMIT = "rate_limit"        # Rate limiting errors
    NETWORK = "network"              # Network connectivity errors and timeouts
    UNKNOWN = "unknown"              # Unknown or unclassified errors


class ErrorSeverity(Enum):
    """Severity levels for error handling and alerting."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorClassification:
    """Classification result for an error."""
    category: ErrorCategory
    severity: ErrorSeverity
    is_retryable: bool
    should_circuit_break: bool
    retry_delay_multiplier: float = 2.0
    recovery_action: Optional[str] = None
    user_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
            "recovery_action": self.recovery_action,
        }


_RATE_LIMITED = ErrorClassification(
    category=ErrorCategory.RATE_LIMIT,
    severity=ErrorSeverity.MEDIUM,
    is_retryable=True,
    should_circuit_break=False,
    retry_delay_multiplier=2.0,
    recovery_action="exponential_backoff",
    user_message="Request was throttled, retrying with backoff"
)

_UNAVAILABLE = ErrorClassification(
    category=ErrorCategory.TRANSIENT,
    severity=ErrorSeverity.HIGH,
    is_retryable=True,
    should_circuit_break=True,
    retry_delay_multiplier=1.5,
    recovery_action="circuit_breaker",
    user_message="External system temporarily unavailable"
)

_TIMED_OUT = ErrorClassification(
    category=ErrorCategory.NETWORK,
    severity=ErrorSeverity.MEDIUM,
    is_retryable=True,
    should_circuit_break=False,
    retry_delay_multiplier=2.0,
    recovery_action="retry",
    user_message="Request timed out"
)

_PERMISSION_DENIED = ErrorClassification(
    category=ErrorCategory.PERMISSION,
    severity=ErrorSeverity.HIGH,
    is_retryable=False,
    should_circuit_break=False,
    recovery_action="skip_record",
    user_message="Insufficient permissions on external system"
)

_INVALID_REQUEST = ErrorClassification(
    category=ErrorCategory.CONFIGURATION,
    severity=ErrorSeverity.MEDIUM,
    is_retryable=False,
    should_circuit_break=False,
    recovery_action="log_and_skip",
    user_message="External system rejected the request"
)


class ErrorClassifier:
    """Classifies errors and determines appropriate handling strategies."""

    # HTTP-style status codes reported by connector adapters
    STATUS_CODE_MAPPINGS = {
        400: _INVALID_REQUEST,
        401: _PERMISSION_DENIED,
        403: _PERMISSION_DENIED,
        404: _INVALID_REQUEST,
        408: _TIMED_OUT,
        409: _INVALID_REQUEST,
        412: _INVALID_REQUEST,
        422: _INVALID_REQUEST,
        429: _RATE_LIMITED,
        500: _UNAVAILABLE,
        502: _UNAVAILABLE,
        503: _UNAVAILABLE,
        504: _TIMED_OUT,
    }

    # boto3 error codes raised by the DynamoDB-backed document store
    AWS_ERROR_MAPPINGS = {
        'ThrottlingException': _RATE_LIMITED,
        'ProvisionedThroughputExceededException': _RATE_LIMITED,
        'RequestLimitExceeded': _RATE_LIMITED,
        'InternalServerError': _UNAVAILABLE,
        'ServiceUnavailable': _UNAVAILABLE,
        'RequestTimeout': _TIMED_OUT,
        'AccessDeniedException': _PERMISSION_DENIED,
        'UnrecognizedClientException': _PERMISSION_DENIED,
        'ValidationException': _INVALID_REQUEST,
        'ConditionalCheckFailedException': _INVALID_REQUEST,
        'ResourceNotFoundException': _INVALID_REQUEST,
    }

    def classify_error(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> ErrorClassification:
        """
        Classify an error and determine handling strategy.

        Args:
            error: The exception that occurred
            context: Optional context information about the operation

        Returns:
            ErrorClassification with handling strategy
        """
        if isinstance(error, ConfigurationError):
            return ErrorClassification(
                category=ErrorCategory.CONFIGURATION,
                severity=ErrorSeverity.HIGH,
                is_retryable=False,
                should_circuit_break=False,
                recovery_action="abort_run",
                user_message=str(error)
            )

        if isinstance(error, ConnectorError):
            return self._classify_connector_error(error, context)

        if isinstance(error, ClientError):
            return self._classify_client_error(error)

        if isinstance(error, BotoCoreError):
            logger.info(f"Classifying BotoCoreError: {type(error).__name__}")
            return ErrorClassification(
                category=ErrorCategory.NETWORK,
                severity=ErrorSeverity.MEDIUM,
                is_retryable=True,
                should_circuit_break=False,
                recovery_action="retry",
                user_message=f"Network error: {type(error).__name__}"
            )

        if isinstance(error, (TimeoutError, FutureTimeoutError)):
            return _TIMED_OUT

        if isinstance(error, ConnectionError):
            return ErrorClassification(
                category=ErrorCategory.NETWORK,
                severity=ErrorSeverity.MEDIUM,
                is_retryable=True,
                should_circuit_break=False,
                recovery_action="retry",
                user_message="Network connectivity issue"
            )

        if isinstance(error, (ValueError, TypeError, KeyError)):
            return ErrorClassification(
                category=ErrorCategory.PERMANENT,
                severity=ErrorSeverity.MEDIUM,
                is_retryable=False,
                should_circuit_break=False,
                recovery_action="log_and_skip",
                user_message="Invalid data format"
            )

        logger.warning(f"Classifying unknown error: {type(error).__name__} - {error}")
        return ErrorClassification(
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.MEDIUM,
            is_retryable=False,
            should_circuit_break=False,
            recovery_action="log_and_skip",
            user_message=f"Unknown error: {type(error).__name__}"
        )

    def _classify_connector_error(self, error: ConnectorError,
                                  context: Optional[Dict[str, Any]]) -> ErrorClassification:
        """Classify a connector failure by timeout flag, status code, then cause."""
        if error.timed_out:
            return _TIMED_OUT

        if error.status_code is not None:
            classification = self.STATUS_CODE_MAPPINGS.get(error.status_code)
            if classification is not None:
                return classification
            if 500 <= error.status_code < 600:
                return _UNAVAILABLE
            return _INVALID_REQUEST

        if error.cause is not None and error.cause is not error:
            return self.classify_error(error.cause, context)

        return ErrorClassification(
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.MEDIUM,
            is_retryable=False,
            should_circuit_break=False,
            recovery_action="log_and_skip",
            user_message=str(error)
        )

    def _classify_client_error(self, error: ClientError) -> ErrorClassification:
        """Classify a boto3 ClientError."""
        error_code = error.response.get('Error', {}).get('Code', 'Unknown')

        if error_code in self.AWS_ERROR_MAPPINGS:
            classification = self.AWS_ERROR_MAPPINGS[error_code]
            logger.debug(f"Classified AWS error {error_code} as {classification.category.value}")
            return classification

        logger.warning(f"Unknown AWS error code: {error_code}")

        lowered = error_code.lower()
        if 'throttl' in lowered or 'limit' in lowered:
            return _RATE_LIMITED
        if 'access' in lowered or 'denied' in lowered or 'unauthorized' in lowered:
            return _PERMISSION_DENIED
        if 'invalid' in lowered or 'validation' in lowered:
            return _INVALID_REQUEST

        return ErrorClassification(
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.MEDIUM,
            is_retryable=True,
            should_circuit_break=False,
            retry_delay_multiplier=1.0,
            recovery_action="retry",
            user_message=f"Unknown AWS error: {error_code}"
        )
