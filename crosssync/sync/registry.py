"""
Sync registry: configurations, active runs and bounded run history.

Each registry instance owns its own storage, so tests (and separate services
in one process) never share state. A single lock serializes every mutation;
runs publish snapshots of their status rather than sharing the live object.
"""

import dataclasses
import logging
from datetime import datetime
from threading import RLock
from typing import Any, Dict, List, Optional, Set, Union

from ..config.config_manager import ConfigManager
from ..config.defaults import DEFAULT_CONFIGURATIONS
from ..config.stores import (
    ConfigurationStore,
    HistoryStore,
    InMemoryConfigurationStore,
    InMemoryHistoryStore,
)
from ..error_handling.exceptions import ConfigurationError, SyncEngineError
from ..models.sync_models import RunState, SyncConfiguration, SyncResult, SyncStatus, utc_now

logger = logging.getLogger(__name__)


class SyncRegistry:
    """Holds sync configurations, in-flight run status and run history."""

    def __init__(self,
                 config_store: Optional[ConfigurationStore] = None,
                 history_store: Optional[HistoryStore] = None,
                 history_capacity: int = 100):
        """
        Args:
            config_store: Where configurations live (in memory by default)
            history_store: Where terminated run results live (in memory by default)
            history_capacity: Maximum number of results kept in history
        """
        if history_capacity < 1:
            raise ConfigurationError("history_capacity must be at least 1")
        self.config_store = config_store or InMemoryConfigurationStore()
        self.history_store = history_store or InMemoryHistoryStore()
        self.history_capacity = history_capacity
        self.config_manager = ConfigManager()
        self._active: Dict[str, SyncStatus] = {}
        self._cancelled: Set[str] = set()
        self._lock = RLock()

    # Configurations

    def list_configurations(self) -> List[SyncConfiguration]:
        return sorted(self.config_store.list(), key=lambda c: c.id)

    def get_configuration(self, configuration_id: str) -> Optional[SyncConfiguration]:
        return self.config_store.get(configuration_id)

    def upsert_configuration(self, partial: Union[SyncConfiguration, Dict[str, Any]]) -> SyncConfiguration:
        """
        Create a configuration or merge changes into an existing one.

        The merged object is revalidated as a whole and replaces the stored
        one; ``updated_at`` is bumped.

        Raises:
            ConfigurationError: If the result is not a valid configuration
        """
        if isinstance(partial, SyncConfiguration):
            partial = {**partial.to_dict(), "field_mappings": list(partial.field_mappings)}
        config_id = partial.get("id")
        if not config_id:
            raise ConfigurationError("Configuration id is required")

        with self._lock:
            current = self.config_store.get(config_id)
            if current is not None:
                updates = {k: v for k, v in partial.items() if k != "created_at"}
                config = self.config_manager.update_config(current, updates)
            else:
                now = utc_now()
                data = {**partial, "created_at": partial.get("created_at") or now, "updated_at": now}
                config = self.config_manager.load_config(data)
            self.config_store.put(config)

        logger.info(f"{'Updated' if current is not None else 'Created'} sync configuration {config_id}")
        return config

    def mark_run(self, configuration_id: str, run_at: datetime) -> None:
        """Record when a configuration last ran."""
        with self._lock:
            current = self.config_store.get(configuration_id)
            if current is None:
                logger.warning(f"Cannot mark run for unknown configuration {configuration_id}")
                return
            self.config_store.put(dataclasses.replace(current, last_run_at=run_at))

    def seed_default_configurations(self) -> List[SyncConfiguration]:
        """Store the built-in configurations that are not present yet."""
        # Validate the whole set before storing any of it
        self.config_manager.load_configs(DEFAULT_CONFIGURATIONS)
        seeded = []
        for data in DEFAULT_CONFIGURATIONS:
            if self.config_store.get(data["id"]) is None:
                seeded.append(self.upsert_configuration(data))
        if seeded:
            logger.info(f"Seeded {len(seeded)} default configuration(s)")
        return seeded

    # Active runs

    def register_run(self, status: SyncStatus) -> None:
        with self._lock:
            if status.id in self._active:
                raise SyncEngineError(f"Run {status.id} is already active")
            self._active[status.id] = status.snapshot()

    def update_run(self, status: SyncStatus) -> None:
        """Publish the latest state of a run."""
        with self._lock:
            if status.id not in self._active:
                return
            snapshot = status.snapshot()
            if status.id in self._cancelled:
                snapshot.status = RunState.CANCELLED
            self._active[status.id] = snapshot

    def list_active_runs(self) -> List[SyncStatus]:
        with self._lock:
            return [status.snapshot() for status in self._active.values()]

    def cancel_run(self, run_id: str) -> bool:
        """Flag an active run as cancelled; returns False if it is not active."""
        with self._lock:
            status = self._active.get(run_id)
            if status is None:
                return False
            self._cancelled.add(run_id)
            status.status = RunState.CANCELLED
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    def is_cancelled(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._cancelled

    def get_run_status(self, run_id: str) -> Optional[Union[SyncStatus, SyncResult]]:
        """Live status of an active run, or its result once it is in history."""
        with self._lock:
            status = self._active.get(run_id)
            if status is not None:
                return status.snapshot()
            return next((r for r in self.history_store.list(self.history_capacity) if r.id == run_id), None)

    def finish_run(self, result: SyncResult) -> None:
        """Move a terminated run from the active table into history.

        The run leaves the active table even when the history store rejects
        the result; the store error propagates.
        """
        with self._lock:
            try:
                self.append_result(result)
            finally:
                self.discard_run(result.id)

    def discard_run(self, run_id: str) -> bool:
        """Drop a run from the active table without recording a result."""
        with self._lock:
            self._cancelled.discard(run_id)
            return self._active.pop(run_id, None) is not None

    # History

    def append_result(self, result: SyncResult) -> None:
        with self._lock:
            self.history_store.append(result, self.history_capacity)

    def get_history(self, limit: int = 50) -> List[SyncResult]:
        """Most recent results first, never more than the history capacity."""
        with self._lock:
            return self.history_store.list(min(limit, self.history_capacity))
