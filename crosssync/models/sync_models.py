"""Synchronization data models."""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional

from ..error_handling.exceptions import ConfigurationError

MANUAL_REVIEW_REQUIRED = "manual-review-required"
PENDING_RESOLUTION = "pending"

RECORD_PROCESSING_ERROR = "RECORD_PROCESSING_ERROR"
SOURCE_FETCH_ERROR = "SOURCE_FETCH_ERROR"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) as an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Cannot parse datetime from {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SystemType(str, Enum):
    """External platforms the engine can read from and write to."""
    CRM = "CRM"
    ERP = "ERP"
    DOCSTORE = "DOCSTORE"

    @classmethod
    def parse(cls, value: Any) -> "SystemType":
        if isinstance(value, cls):
            return value
        name = str(value).strip()
        alias = SYSTEM_ALIASES.get(name.lower())
        if alias is not None:
            return alias
        try:
            return cls(name.upper())
        except ValueError:
            raise ConfigurationError(f"Unknown system: {value}")


# Platform names used by older configuration documents
SYSTEM_ALIASES = {
    "dynamics365": SystemType.CRM,
    "nav2017": SystemType.ERP,
    "cosmosdb": SystemType.DOCSTORE,
}


class TransformationType(str, Enum):
    """Value transformations a field mapping can apply."""
    DIRECT = "direct"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    CUSTOM_FUNCTION = "custom-function"

    @classmethod
    def parse(cls, value: Any) -> "TransformationType":
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower().replace("_", "-")
        if name == "custom":
            return cls.CUSTOM_FUNCTION
        try:
            return cls(name)
        except ValueError:
            raise ConfigurationError(f"Unknown transformation: {value}")


class ConflictResolutionStrategy(str, Enum):
    """Policies for choosing the winning value of a conflicting field."""
    SOURCE_WINS = "source-wins"
    TARGET_WINS = "target-wins"
    NEWEST_WINS = "newest-wins"
    MANUAL = "manual"

    @classmethod
    def parse(cls, value: Any) -> "ConflictResolutionStrategy":
        if isinstance(value, cls):
            return value
        name = str(value).strip().lower().replace("_", "-")
        try:
            return cls(name)
        except ValueError:
            raise ConfigurationError(f"Unknown conflict resolution strategy: {value}")


class RunState(str, Enum):
    """Lifecycle states of a sync run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed-with-errors"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (RunState.PENDING, RunState.RUNNING)


class OperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass
class ConnectorQuery:
    """Query passed to a connector's fetch_all.

    ``filter`` holds field/value equality conditions; each connector
    translates it to its own query language.
    """
    filter: Dict[str, Any] = field(default_factory=dict)
    fields: Optional[List[str]] = None
    page_size: Optional[int] = None

    def __post_init__(self):
        if self.page_size is not None and self.page_size < 1:
            raise ValueError("page_size must be at least 1")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filter": dict(self.filter),
            "fields": list(self.fields) if self.fields is not None else None,
            "page_size": self.page_size,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ConnectorQuery"]:
        if not data:
            return None
        return cls(
            filter=data.get("filter") or {},
            fields=data.get("fields"),
            page_size=data.get("page_size"),
        )


@dataclass
class FieldMapping:
    """One field projection rule from a source record to a target record."""
    source_field: str
    target_field: str
    transformation: TransformationType = TransformationType.DIRECT
    required: bool = False
    custom_function: Optional[Callable[[Any, Dict[str, Any]], Any]] = field(
        default=None, compare=False, repr=False
    )
    custom_function_name: Optional[str] = None

    def __post_init__(self):
        """Validate fields."""
        if not self.source_field or not self.source_field.strip():
            raise ValueError("source_field cannot be empty")
        if not self.target_field or not self.target_field.strip():
            raise ValueError("target_field cannot be empty")
        self.transformation = TransformationType.parse(self.transformation)
        if self.custom_function is not None and not callable(self.custom_function):
            raise ValueError(f"custom_function for {self.target_field} must be callable")
        if (self.transformation == TransformationType.CUSTOM_FUNCTION
                and self.custom_function is None and not self.custom_function_name):
            raise ValueError(
                f"Mapping {self.source_field} -> {self.target_field} uses custom-function "
                f"but has no function or function name"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_field": self.source_field,
            "target_field": self.target_field,
            "transformation": self.transformation.value,
            "required": self.required,
            "custom_function_name": self.custom_function_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldMapping":
        return cls(
            source_field=data["source_field"],
            target_field=data["target_field"],
            transformation=data.get("transformation", "direct"),
            required=bool(data.get("required", False)),
            custom_function=data.get("custom_function"),
            custom_function_name=data.get("custom_function_name"),
        )


@dataclass
class SyncSchedule:
    """When a configuration should run: every N minutes, or only on demand."""
    type: Literal["interval", "manual"] = "manual"
    interval_minutes: Optional[int] = None
    enabled: bool = True

    def __post_init__(self):
        """Validate fields."""
        if self.type not in ["interval", "manual"]:
            raise ValueError(f"Invalid schedule type: {self.type}")
        if self.type == "interval":
            if self.interval_minutes is None or self.interval_minutes < 1:
                raise ValueError("interval schedules need interval_minutes >= 1")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "interval_minutes": self.interval_minutes,
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SyncSchedule":
        data = data or {}
        return cls(
            type=data.get("type", "manual"),
            interval_minutes=data.get("interval_minutes"),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass
class SyncConfiguration:
    """A named, durable description of one synchronization job."""
    id: str
    name: str
    source_system: SystemType
    target_systems: List[SystemType]
    field_mappings: List[FieldMapping]
    schedule: SyncSchedule = field(default_factory=SyncSchedule)
    conflict_resolution_strategy: ConflictResolutionStrategy = ConflictResolutionStrategy.SOURCE_WINS
    enabled: bool = True
    last_run_at: Optional[datetime] = None
    filter_query: Optional[ConnectorQuery] = None
    source_timestamp_field: Optional[str] = None
    target_timestamp_field: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate fields."""
        if not self.id or not self.id.strip():
            raise ValueError("id cannot be empty")
        if not self.name or not self.name.strip():
            raise ValueError("name cannot be empty")
        self.source_system = SystemType.parse(self.source_system)
        self.target_systems = [SystemType.parse(target) for target in self.target_systems]
        if not self.target_systems:
            raise ValueError("target_systems cannot be empty")
        if len(set(self.target_systems)) != len(self.target_systems):
            raise ValueError("target_systems cannot contain duplicates")
        if self.source_system in self.target_systems:
            raise ValueError(f"target_systems cannot contain the source system {self.source_system.value}")
        if not self.field_mappings:
            raise ValueError("field_mappings cannot be empty")
        if not any(mapping.required for mapping in self.field_mappings):
            raise ValueError("field_mappings must contain at least one required (key) mapping")
        self.conflict_resolution_strategy = ConflictResolutionStrategy.parse(
            self.conflict_resolution_strategy
        )

    @property
    def key_mapping(self) -> FieldMapping:
        """The first required mapping; its target field is the lookup key."""
        return next(mapping for mapping in self.field_mappings if mapping.required)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "source_system": self.source_system.value,
            "target_systems": [target.value for target in self.target_systems],
            "field_mappings": [mapping.to_dict() for mapping in self.field_mappings],
            "schedule": self.schedule.to_dict(),
            "conflict_resolution_strategy": self.conflict_resolution_strategy.value,
            "enabled": self.enabled,
            "last_run_at": format_datetime(self.last_run_at),
            "filter_query": self.filter_query.to_dict() if self.filter_query else None,
            "source_timestamp_field": self.source_timestamp_field,
            "target_timestamp_field": self.target_timestamp_field,
            "created_at": format_datetime(self.created_at),
            "updated_at": format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConfiguration":
        """Create configuration from dictionary."""
        mappings = [
            mapping if isinstance(mapping, FieldMapping) else FieldMapping.from_dict(mapping)
            for mapping in data.get("field_mappings", [])
        ]
        schedule = data.get("schedule")
        if not isinstance(schedule, SyncSchedule):
            schedule = SyncSchedule.from_dict(schedule)
        filter_query = data.get("filter_query")
        if not isinstance(filter_query, ConnectorQuery):
            filter_query = ConnectorQuery.from_dict(filter_query)

        return cls(
            id=data["id"],
            name=data["name"],
            source_system=data["source_system"],
            target_systems=list(data.get("target_systems", [])),
            field_mappings=mappings,
            schedule=schedule,
            conflict_resolution_strategy=data.get("conflict_resolution_strategy", "source-wins"),
            enabled=bool(data.get("enabled", True)),
            last_run_at=parse_datetime(data.get("last_run_at")),
            filter_query=filter_query,
            source_timestamp_field=data.get("source_timestamp_field"),
            target_timestamp_field=data.get("target_timestamp_field"),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
        )


@dataclass
class SyncConflict:
    """Divergence between a mapped source value and an existing target value."""
    field: str
    source_value: Any
    target_value: Any
    source_timestamp: Optional[datetime] = None
    target_timestamp: Optional[datetime] = None
    resolution_strategy: str = PENDING_RESOLUTION
    record_key: Any = None
    target_system: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "source_value": self.source_value,
            "target_value": self.target_value,
            "source_timestamp": format_datetime(self.source_timestamp),
            "target_timestamp": format_datetime(self.target_timestamp),
            "resolution_strategy": self.resolution_strategy,
            "record_key": self.record_key,
            "target_system": self.target_system,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConflict":
        return cls(
            field=data["field"],
            source_value=data.get("source_value"),
            target_value=data.get("target_value"),
            source_timestamp=parse_datetime(data.get("source_timestamp")),
            target_timestamp=parse_datetime(data.get("target_timestamp")),
            resolution_strategy=data.get("resolution_strategy", PENDING_RESOLUTION),
            record_key=data.get("record_key"),
            target_system=data.get("target_system"),
        )


@dataclass
class SyncOperation:
    """One planned or executed write to a target system."""
    type: OperationType
    source: SystemType
    target: SystemType
    source_record: Dict[str, Any]
    mapped_data: Dict[str, Any]
    target_record: Optional[Dict[str, Any]]
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "source": self.source.value,
            "target": self.target.value,
            "source_record": self.source_record,
            "mapped_data": self.mapped_data,
            "target_record": self.target_record,
            "timestamp": format_datetime(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncOperation":
        return cls(
            type=OperationType(data["type"]),
            source=SystemType.parse(data["source"]),
            target=SystemType.parse(data["target"]),
            source_record=data.get("source_record") or {},
            mapped_data=data.get("mapped_data") or {},
            target_record=data.get("target_record"),
            timestamp=parse_datetime(data["timestamp"]),
        )


@dataclass
class SyncError:
    """A failure recorded against a run."""
    code: str
    message: str
    timestamp: datetime
    record_id: Any = None
    target_system: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "timestamp": format_datetime(self.timestamp),
            "record_id": self.record_id,
            "target_system": self.target_system,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncError":
        return cls(
            code=data["code"],
            message=data.get("message", ""),
            timestamp=parse_datetime(data["timestamp"]),
            record_id=data.get("record_id"),
            target_system=data.get("target_system"),
            details=data.get("details") or {},
        )


def calculate_progress(processed_records: int, total_records: int) -> float:
    """Percentage of processed records, clamped to [0, 100]."""
    if total_records <= 0:
        return 0.0
    return max(0.0, min(100.0, processed_records / total_records * 100))


@dataclass
class SyncStatus:
    """Live state of an in-flight run."""
    id: str
    configuration_id: str
    status: RunState
    start_time: datetime
    processed_records: int = 0
    total_records: int = 0
    errors: List[SyncError] = field(default_factory=list)
    conflicts: List[SyncConflict] = field(default_factory=list)
    dry_run: bool = False

    def __post_init__(self):
        """Validate fields."""
        if not self.id.strip():
            raise ValueError("id cannot be empty")
        if not self.configuration_id.strip():
            raise ValueError("configuration_id cannot be empty")
        self.status = RunState(self.status)

    @property
    def progress(self) -> float:
        return calculate_progress(self.processed_records, self.total_records)

    def snapshot(self) -> "SyncStatus":
        """Copy that is safe to hand out while the run keeps mutating this one."""
        clone = copy.copy(self)
        clone.errors = list(self.errors)
        clone.conflicts = [copy.copy(conflict) for conflict in self.conflicts]
        return clone

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "configuration_id": self.configuration_id,
            "status": self.status.value,
            "start_time": format_datetime(self.start_time),
            "progress": self.progress,
            "processed_records": self.processed_records,
            "total_records": self.total_records,
            "errors": [error.to_dict() for error in self.errors],
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "dry_run": self.dry_run,
        }


@dataclass
class SyncMetrics:
    """Derived throughput and quality figures for a run."""
    duration: float
    records_per_second: float
    error_rate: float
    conflict_rate: float
    throughput_per_minute: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration": self.duration,
            "records_per_second": self.records_per_second,
            "error_rate": self.error_rate,
            "conflict_rate": self.conflict_rate,
            "throughput_per_minute": self.throughput_per_minute,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncMetrics":
        return cls(
            duration=float(data.get("duration", 0.0)),
            records_per_second=float(data.get("records_per_second", 0.0)),
            error_rate=float(data.get("error_rate", 0.0)),
            conflict_rate=float(data.get("conflict_rate", 0.0)),
            throughput_per_minute=float(data.get("throughput_per_minute", 0.0)),
        )


def calculate_metrics(duration: float, processed_records: int, error_count: int,
                      conflict_count: int) -> SyncMetrics:
    """Derive run metrics; duration is in seconds."""
    denominator = max(processed_records, 1)
    if duration > 0:
        records_per_second = processed_records / duration
        throughput_per_minute = processed_records / (duration / 60)
    else:
        records_per_second = 0.0
        throughput_per_minute = 0.0
    return SyncMetrics(
        duration=duration,
        records_per_second=records_per_second,
        error_rate=error_count / denominator,
        conflict_rate=conflict_count / denominator,
        throughput_per_minute=throughput_per_minute,
    )


@dataclass
class SyncResult:
    """Immutable record of a terminated run."""
    id: str
    configuration_id: str
    status: RunState
    start_time: datetime
    end_time: datetime
    duration: float
    processed_records: int
    total_records: int
    successful_records: int
    failed_records: int
    errors: List[SyncError]
    conflicts: List[SyncConflict]
    metrics: SyncMetrics
    operations: Optional[List[SyncOperation]] = None
    dry_run: bool = False

    def __post_init__(self):
        """Validate fields."""
        self.status = RunState(self.status)
        if not self.status.is_terminal:
            raise ValueError(f"SyncResult status must be terminal, got {self.status.value}")
        if self.successful_records < 0 or self.failed_records < 0:
            raise ValueError("record counts cannot be negative")

    @property
    def progress(self) -> float:
        return calculate_progress(self.processed_records, self.total_records)

    @property
    def manual_review_conflicts(self) -> List[SyncConflict]:
        return [c for c in self.conflicts if c.resolution_strategy == MANUAL_REVIEW_REQUIRED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "configuration_id": self.configuration_id,
            "status": self.status.value,
            "start_time": format_datetime(self.start_time),
            "end_time": format_datetime(self.end_time),
            "duration": self.duration,
            "progress": self.progress,
            "processed_records": self.processed_records,
            "total_records": self.total_records,
            "successful_records": self.successful_records,
            "failed_records": self.failed_records,
            "errors": [error.to_dict() for error in self.errors],
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "metrics": self.metrics.to_dict(),
            "operations": (
                [operation.to_dict() for operation in self.operations]
                if self.operations is not None else None
            ),
            "dry_run": self.dry_run,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncResult":
        operations = data.get("operations")
        return cls(
            id=data["id"],
            configuration_id=data["configuration_id"],
            status=RunState(data["status"]),
            start_time=parse_datetime(data["start_time"]),
            end_time=parse_datetime(data["end_time"]),
            duration=float(data.get("duration", 0.0)),
            processed_records=int(data.get("processed_records", 0)),
            total_records=int(data.get("total_records", 0)),
            successful_records=int(data.get("successful_records", 0)),
            failed_records=int(data.get("failed_records", 0)),
            errors=[SyncError.from_dict(e) for e in data.get("errors", [])],
            conflicts=[SyncConflict.from_dict(c) for c in data.get("conflicts", [])],
            metrics=SyncMetrics.from_dict(data.get("metrics") or {}),
            operations=(
                [SyncOperation.from_dict(o) for o in operations]
                if operations is not None else None
            ),
            dry_run=bool(data.get("dry_run", False)),
        )
