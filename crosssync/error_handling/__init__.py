"""Error taxonomy, classification and recovery for the sync engine."""

from .exceptions import (
    ConfigurationError,
    ConnectorError,
    FetchError,
    RecordProcessingError,
    SyncEngineError,
    WriteError,
)

__all__ = [
    "ConfigurationError",
    "ConnectorError",
    "FetchError",
    "RecordProcessingError",
    "SyncEngineError",
    "WriteError",
]
