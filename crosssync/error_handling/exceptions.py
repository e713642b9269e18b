"""Exception taxonomy for the cross-system sync engine."""

from typing import Any, Optional


class SyncEngineError(Exception):
    """Base class for all sync engine errors."""


class ConfigurationError(SyncEngineError, ValueError):
    """Invalid, disabled or unknown sync configuration.

    Raised before a run starts; nothing is partially applied.
    """


class ConnectorError(SyncEngineError):
    """A call to an external system failed."""

    def __init__(self,
                 message: str,
                 system: Optional[str] = None,
                 status_code: Optional[int] = None,
                 timed_out: bool = False,
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.system = system
        self.status_code = status_code
        self.timed_out = timed_out
        self.cause = cause


class FetchError(ConnectorError):
    """Reading from an external system failed."""


class WriteError(ConnectorError):
    """Creating or updating a record in an external system failed."""


class RecordProcessingError(SyncEngineError):
    """Failure scoped to one source record and (optionally) one target."""

    def __init__(self,
                 message: str,
                 record_id: Any = None,
                 target_system: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.record_id = record_id
        self.target_system = target_system
        self.cause = cause
