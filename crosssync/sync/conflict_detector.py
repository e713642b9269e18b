"""Field-by-field comparison of a mapped source record against an existing target record."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..models.sync_models import FieldMapping, SyncConflict, parse_datetime
from .field_mapper import get_nested_value

logger = logging.getLogger(__name__)

# Modified-at fields used by the supported systems, checked in order
TIMESTAMP_FIELDS = ("modifiedon", "lastModified", "last_modified", "updated_at", "LastModifiedDateTime")

# Numeric timestamps above this are epoch milliseconds (year 5138 in seconds)
EPOCH_MILLIS_THRESHOLD = 1e11


def extract_timestamp(record: Optional[Dict[str, Any]], field: Optional[str] = None) -> Optional[datetime]:
    """
    Read a record's last-modified time.

    Uses ``field`` (a dot path) when given, otherwise the first common
    modified-at field present. Numbers are epoch seconds, or epoch
    milliseconds when too large to be seconds. Unparseable or out-of-range
    values count as missing.
    """
    if not record:
        return None

    if field:
        raw = get_nested_value(record, field)
    else:
        raw = next((record[name] for name in TIMESTAMP_FIELDS if record.get(name) is not None), None)

    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        seconds = raw / 1000 if abs(raw) >= EPOCH_MILLIS_THRESHOLD else raw
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            logger.warning(f"Ignoring out-of-range timestamp {raw!r}")
            return None
    try:
        return parse_datetime(raw)
    except ValueError:
        logger.warning(f"Ignoring unparseable timestamp {raw!r}")
        return None


def detect_conflicts(mapped_record: Dict[str, Any],
                     existing_record: Dict[str, Any],
                     mappings: List[FieldMapping],
                     source_timestamp: Optional[datetime] = None,
                     target_timestamp: Optional[datetime] = None,
                     record_key: Any = None,
                     target_system: Optional[str] = None) -> List[SyncConflict]:
    """
    List the target fields whose mapped value differs from an existing, non-null value.

    A missing or null existing value is a plain write, not a conflict.
    Conflicts follow mapping declaration order; inputs are not mutated.
    """
    conflicts = []
    for mapping in mappings:
        target_value = get_nested_value(existing_record, mapping.target_field)
        if target_value is None:
            continue
        source_value = get_nested_value(mapped_record, mapping.target_field)
        if values_differ(source_value, target_value):
            conflicts.append(SyncConflict(
                field=mapping.target_field,
                source_value=source_value,
                target_value=target_value,
                source_timestamp=source_timestamp,
                target_timestamp=target_timestamp,
                record_key=record_key,
                target_system=target_system
            ))
    return conflicts


def values_differ(left: Any, right: Any) -> bool:
    """
    Strict inequality: a boolean never equals a number.

    ``1`` and ``1.0`` are the same number. Dicts and lists are compared
    element by element under the same rule.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is not type(right) or left != right
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() != right.keys() or any(values_differ(left[k], right[k]) for k in left)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) != len(right) or any(values_differ(a, b) for a, b in zip(left, right))
    return left != right
