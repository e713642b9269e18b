"""Data models for cross-system synchronization."""

from .sync_models import (
    ConflictResolutionStrategy,
    ConnectorQuery,
    FieldMapping,
    OperationType,
    RunState,
    SyncConfiguration,
    SyncConflict,
    SyncError,
    SyncMetrics,
    SyncOperation,
    SyncResult,
    SyncSchedule,
    SyncStatus,
    SystemType,
    TransformationType,
)

__all__ = [
    "ConflictResolutionStrategy",
    "ConnectorQuery",
    "FieldMapping",
    "OperationType",
    "RunState",
    "SyncConfiguration",
    "SyncConflict",
    "SyncError",
    "SyncMetrics",
    "SyncOperation",
    "SyncResult",
    "SyncSchedule",
    "SyncStatus",
    "SystemType",
    "TransformationType",
]
