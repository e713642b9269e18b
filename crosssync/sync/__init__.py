"""Sync engine: mapping, conflict handling, orchestration and scheduling."""

from .conflict_detector import detect_conflicts, extract_timestamp
from .conflict_resolver import resolve_conflicts
from .field_mapper import FieldMapper, get_nested_value, set_nested_value
from .orchestrator import SyncOrchestrator
from .registry import SyncRegistry
from .scheduler import SyncScheduler, is_due, next_run_time

__all__ = [
    "FieldMapper",
    "SyncOrchestrator",
    "SyncRegistry",
    "SyncScheduler",
    "detect_conflicts",
    "extract_timestamp",
    "get_nested_value",
    "is_due",
    "next_run_time",
    "resolve_conflicts",
    "set_nested_value",
]
