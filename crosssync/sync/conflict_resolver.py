"""Conflict resolution strategies."""

import logging
from typing import Any, Dict, List

from ..models.sync_models import (
    MANUAL_REVIEW_REQUIRED,
    ConflictResolutionStrategy,
    SyncConflict,
)

logger = logging.getLogger(__name__)


def _source_is_newer_or_equal(conflict: SyncConflict) -> bool:
    # A missing timestamp counts as the oldest possible; ties go to the source
    if conflict.source_timestamp is None:
        return conflict.target_timestamp is None
    if conflict.target_timestamp is None:
        return True
    return conflict.source_timestamp >= conflict.target_timestamp


def resolve_conflicts(conflicts: List[SyncConflict], strategy: Any) -> Dict[str, Any]:
    """
    Choose the winning value for each conflicting field.

    Stamps every conflict's ``resolution_strategy``. ``manual`` applies the
    source value provisionally and tags the conflict for human review.

    Raises:
        ConfigurationError: If ``strategy`` is not a known strategy name
    """
    strategy = ConflictResolutionStrategy.parse(strategy)
    resolved: Dict[str, Any] = {}

    for conflict in conflicts:
        if strategy == ConflictResolutionStrategy.SOURCE_WINS:
            value = conflict.source_value
            conflict.resolution_strategy = strategy.value
        elif strategy == ConflictResolutionStrategy.TARGET_WINS:
            value = conflict.target_value
            conflict.resolution_strategy = strategy.value
        elif strategy == ConflictResolutionStrategy.NEWEST_WINS:
            value = conflict.source_value if _source_is_newer_or_equal(conflict) else conflict.target_value
            conflict.resolution_strategy = strategy.value
        elif strategy == ConflictResolutionStrategy.MANUAL:
            value = conflict.source_value
            conflict.resolution_strategy = MANUAL_REVIEW_REQUIRED
        else:
            raise AssertionError(f"Unhandled strategy {strategy}")
        resolved[conflict.field] = value

    if conflicts:
        logger.debug(f"Resolved {len(conflicts)} conflict(s) using {strategy.value}")
    return resolved
