"""Interval scheduling of sync configurations."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..models.sync_models import SyncConfiguration, SyncResult, utc_now
from .orchestrator import SyncOrchestrator
from .registry import SyncRegistry

logger = logging.getLogger(__name__)


def next_run_time(configuration: SyncConfiguration, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    When the configuration should run next.

    None for manual or disabled schedules; ``now`` for a scheduled
    configuration that has never run.
    """
    schedule = configuration.schedule
    if schedule.type != "interval" or not schedule.enabled or not configuration.enabled:
        return None
    if configuration.last_run_at is None:
        return now or utc_now()
    return configuration.last_run_at + timedelta(minutes=schedule.interval_minutes)


def is_due(configuration: SyncConfiguration, now: datetime) -> bool:
    next_time = next_run_time(configuration, now)
    return next_time is not None and now >= next_time


@dataclass
class ScheduledRun:
    """Outcome of one scheduled start."""
    configuration_id: str
    result: Optional[SyncResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "configuration_id": self.configuration_id,
            "run_id": self.result.id if self.result else None,
            "status": self.result.status.value if self.result else "not-started",
            "error": self.error,
        }


class SyncScheduler:
    """Starts every due configuration, running them in parallel."""

    def __init__(self, orchestrator: SyncOrchestrator, registry: SyncRegistry, max_workers: int = 4):
        self.orchestrator = orchestrator
        self.registry = registry
        self.max_workers = max_workers

    def due_configurations(self, now: Optional[datetime] = None) -> List[SyncConfiguration]:
        now = now or utc_now()
        running = {status.configuration_id for status in self.registry.list_active_runs()}
        due = []
        for configuration in self.registry.list_configurations():
            if configuration.id in running:
                logger.info(f"Skipping {configuration.id}: a run is already active")
                continue
            if is_due(configuration, now):
                due.append(configuration)
        return due

    def run_due(self, now: Optional[datetime] = None) -> List[ScheduledRun]:
        """Run all due configurations and wait for them to finish."""
        due = self.due_configurations(now)
        if not due:
            logger.info("No sync configurations are due")
            return []

        logger.info(f"Starting {len(due)} scheduled sync run(s): {', '.join(c.id for c in due)}")
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="sync-run") as executor:
            futures = [
                (configuration.id, executor.submit(self.orchestrator.start_sync, configuration.id))
                for configuration in due
            ]
            runs = []
            for configuration_id, future in futures:
                try:
                    runs.append(ScheduledRun(configuration_id, result=future.result()))
                except Exception as e:
                    logger.error(f"Scheduled run of {configuration_id} could not start: {e}")
                    runs.append(ScheduledRun(configuration_id, error=str(e)))
        return runs
