"""
Sync orchestrator: drives one run of a sync configuration end to end.

Run lifecycle:
    pending -> running -> completed | completed-with-errors | failed | cancelled

Records are processed sequentially in fetch order. A failing record (or a
failing record/target pairing) is recorded and skipped; only a failed source
fetch ends the run as ``failed``. Every terminated run produces a SyncResult
in the registry's history.

``start_sync`` fetches the source records itself; ``sync_records`` runs records
pushed by a change notification through the same pipeline.
"""

import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..connectors.base import Connector, ConnectorRegistry
from ..error_handling.circuit_breaker import CircuitBreakerManager
from ..error_handling.exceptions import ConfigurationError, ConnectorError, RecordProcessingError
from ..models.sync_models import (
    RECORD_PROCESSING_ERROR,
    SOURCE_FETCH_ERROR,
    OperationType,
    RunState,
    SyncConfiguration,
    SyncError,
    SyncOperation,
    SyncResult,
    SyncStatus,
    SystemType,
    calculate_metrics,
    utc_now,
)
from .conflict_detector import detect_conflicts, extract_timestamp
from .conflict_resolver import resolve_conflicts
from .field_mapper import FieldMapper, get_nested_value, set_nested_value
from .registry import SyncRegistry

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Runs sync configurations against the registered connectors."""

    def __init__(self,
                 registry: SyncRegistry,
                 connectors: Union[ConnectorRegistry, Dict[Any, Connector]],
                 field_mapper: Optional[FieldMapper] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 circuit_breaker_manager: Optional[CircuitBreakerManager] = None):
        """
        Args:
            registry: Source of configurations and sink for run status/history
            connectors: One connector per external system
            field_mapper: Mapper holding any named custom functions
            clock: Returns the current aware datetime
            circuit_breaker_manager: Breakers to include in health reports
        """
        self.registry = registry
        if not isinstance(connectors, ConnectorRegistry):
            connectors = ConnectorRegistry(connectors)
        self.connectors = connectors
        self.field_mapper = field_mapper or FieldMapper()
        self._clock = clock or utc_now
        self.circuit_breaker_manager = circuit_breaker_manager

    def start_sync(self,
                   configuration_id: str,
                   force: bool = False,
                   dry_run: bool = False,
                   run_id: Optional[str] = None) -> SyncResult:
        """
        Execute one run of a configuration and return its result.

        Args:
            configuration_id: Configuration to run
            force: Run even if the configuration is disabled
            dry_run: Plan every operation but skip connector writes
            run_id: Explicit run id (generated when omitted)

        Raises:
            ConfigurationError: Unknown, disabled or unrunnable configuration;
                raised before any run status exists
        """
        configuration, targets = self._prepare(configuration_id, force)
        source = self.connectors.get(configuration.source_system)
        status = self._open_run(configuration, dry_run, run_id)
        try:
            return self._run(configuration, source, targets, status, dry_run)
        finally:
            self.registry.discard_run(status.id)

    def sync_records(self,
                     configuration_id: str,
                     records: List[Dict[str, Any]],
                     source_system: Any = None,
                     force: bool = False,
                     dry_run: bool = False,
                     run_id: Optional[str] = None) -> SyncResult:
        """
        Push changed source records to the configuration's targets as one run.

        Used for change notifications from a source system: the records are
        taken as given instead of being fetched. They go through the same
        mapping, conflict handling, cancellation and error accounting as a
        scheduled run, and the result lands in history. ``last_run_at`` is
        not touched, so the configuration's schedule is unaffected.

        Args:
            configuration_id: Configuration whose mappings and targets apply
            records: Source records, in the order they are processed
            source_system: System that sent the records; must be the
                configuration's source when given

        Raises:
            ConfigurationError: Unknown or disabled configuration, records
                that are not objects, or records from a different source
        """
        configuration, targets = self._prepare(configuration_id, force)
        if not isinstance(records, list) or not all(isinstance(record, dict) for record in records):
            raise ConfigurationError("records must be a list of objects")
        if source_system is not None and SystemType.parse(source_system) != configuration.source_system:
            raise ConfigurationError(
                f"Sync configuration '{configuration.id}' reads from "
                f"{configuration.source_system.value}, not {SystemType.parse(source_system).value}"
            )

        status = self._open_run(configuration, dry_run, run_id)
        try:
            return self._process_all(configuration, records, targets, status, dry_run, mark_last_run=False)
        finally:
            self.registry.discard_run(status.id)

    def sync_record(self, configuration_id: str, record: Dict[str, Any], **kwargs) -> SyncResult:
        """Push a single changed source record; see ``sync_records``."""
        if not isinstance(record, dict):
            raise ConfigurationError("record must be an object")
        return self.sync_records(configuration_id, [record], **kwargs)

    def cancel(self, run_id: str) -> bool:
        """Request cooperative cancellation; False if the run is not active."""
        return self.registry.cancel_run(run_id)

    def _prepare(self, configuration_id: str,
                 force: bool) -> Tuple[SyncConfiguration, List[Tuple[SystemType, Connector]]]:
        configuration = self.registry.get_configuration(configuration_id)
        if configuration is None:
            raise ConfigurationError(f"Sync configuration '{configuration_id}' not found")
        if not configuration.enabled and not force:
            raise ConfigurationError(f"Sync configuration '{configuration_id}' is disabled")

        # The run works on its own snapshot; later edits do not affect it
        configuration = copy.copy(configuration)
        self.field_mapper.validate(configuration.field_mappings)
        targets = [(system, self.connectors.get(system)) for system in configuration.target_systems]
        return configuration, targets

    def _open_run(self, configuration: SyncConfiguration, dry_run: bool, run_id: Optional[str]) -> SyncStatus:
        status = SyncStatus(
            id=run_id or f"{configuration.id}-{uuid.uuid4().hex}",
            configuration_id=configuration.id,
            status=RunState.RUNNING,
            start_time=self._clock(),
            dry_run=dry_run
        )
        self.registry.register_run(status)
        logger.info(f"Starting sync run {status.id} for {configuration.id}: "
                    f"{configuration.source_system.value} -> "
                    f"{', '.join(t.value for t in configuration.target_systems)}"
                    f"{' (dry run)' if dry_run else ''}")
        return status

    def _run(self,
             configuration: SyncConfiguration,
             source: Connector,
             targets: List[Tuple[SystemType, Connector]],
             status: SyncStatus,
             dry_run: bool) -> SyncResult:
        try:
            records = list(source.fetch_all(configuration.filter_query))
        except Exception as e:
            logger.error(f"Run {status.id} failed fetching from {configuration.source_system.value}: {e}")
            status.errors.append(self._build_error(SOURCE_FETCH_ERROR, e, target_system=None))
            return self._finish(configuration, status, RunState.FAILED, 0, 0, [])

        return self._process_all(configuration, records, targets, status, dry_run)

    def _process_all(self,
                     configuration: SyncConfiguration,
                     records: List[Dict[str, Any]],
                     targets: List[Tuple[SystemType, Connector]],
                     status: SyncStatus,
                     dry_run: bool,
                     mark_last_run: bool = True) -> SyncResult:
        status.total_records = len(records)
        self.registry.update_run(status)

        successful = 0
        failed = 0
        operations: List[SyncOperation] = []
        cancelled = False

        for record in records:
            if self.registry.is_cancelled(status.id):
                cancelled = True
                logger.info(f"Run {status.id} cancelled after {status.processed_records} record(s)")
                break

            record_successes, record_failures = self._process_record(
                configuration, record, targets, status, operations, dry_run
            )
            successful += record_successes
            failed += record_failures
            status.processed_records += 1
            self.registry.update_run(status)

        if cancelled or self.registry.is_cancelled(status.id):
            final_state = RunState.CANCELLED
        elif failed:
            final_state = RunState.COMPLETED_WITH_ERRORS
        else:
            final_state = RunState.COMPLETED
        return self._finish(configuration, status, final_state, successful, failed, operations,
                            mark_last_run=mark_last_run)

    def _process_record(self,
                        configuration: SyncConfiguration,
                        record: Dict[str, Any],
                        targets: List[Tuple[SystemType, Connector]],
                        status: SyncStatus,
                        operations: List[SyncOperation],
                        dry_run: bool) -> Tuple[int, int]:
        """Sync one source record to every target; returns (successes, failures)."""
        key_mapping = configuration.key_mapping
        record_id = get_nested_value(record, key_mapping.source_field)

        try:
            mapped = self.field_mapper.apply(record, configuration.field_mappings)
            key = get_nested_value(mapped, key_mapping.target_field)
            if key is None:
                raise RecordProcessingError(
                    f"Record has no value for key field '{key_mapping.source_field}'",
                    record_id=record_id
                )
            source_timestamp = extract_timestamp(record, configuration.source_timestamp_field)
        except Exception as e:
            logger.warning(f"Run {status.id}: record {record_id!r} could not be mapped: {e}")
            status.errors.append(self._build_error(RECORD_PROCESSING_ERROR, e, record_id=record_id))
            return 0, 1

        successes = 0
        failures = 0
        for target_system, connector in targets:
            try:
                operations.append(self._sync_to_target(
                    configuration, record, mapped, key, source_timestamp,
                    target_system, connector, status, dry_run
                ))
                successes += 1
            except Exception as e:
                logger.warning(f"Run {status.id}: record {record_id!r} failed for "
                               f"{target_system.value}: {e}")
                status.errors.append(self._build_error(
                    RECORD_PROCESSING_ERROR, e, record_id=record_id, target_system=target_system.value
                ))
                failures += 1
        return successes, failures

    def _sync_to_target(self,
                        configuration: SyncConfiguration,
                        record: Dict[str, Any],
                        mapped: Dict[str, Any],
                        key: Any,
                        source_timestamp: Optional[datetime],
                        target_system: SystemType,
                        connector: Connector,
                        status: SyncStatus,
                        dry_run: bool) -> SyncOperation:
        existing = connector.fetch_by_id(key)
        data = copy.deepcopy(mapped)

        if existing is not None:
            conflicts = detect_conflicts(
                data,
                existing,
                configuration.field_mappings,
                source_timestamp=source_timestamp,
                target_timestamp=extract_timestamp(existing, configuration.target_timestamp_field),
                record_key=key,
                target_system=target_system.value
            )
            if conflicts:
                resolved = resolve_conflicts(conflicts, configuration.conflict_resolution_strategy)
                for field, value in resolved.items():
                    set_nested_value(data, field, value)
                status.conflicts.extend(conflicts)

        operation = SyncOperation(
            type=OperationType.CREATE if existing is None else OperationType.UPDATE,
            source=configuration.source_system,
            target=target_system,
            source_record=copy.deepcopy(record),
            mapped_data=data,
            target_record=existing,
            timestamp=self._clock()
        )

        if not dry_run:
            if operation.type == OperationType.CREATE:
                connector.create(data)
            else:
                connector.update(key, data)
            logger.debug(f"{operation.type.value} {key!r} in {target_system.value}")
        return operation

    def _build_error(self, code: str, error: BaseException, record_id: Any = None,
                     target_system: Optional[str] = None) -> SyncError:
        details: Dict[str, Any] = {"error_type": type(error).__name__}
        if isinstance(error, ConnectorError):
            details.update({
                "system": error.system,
                "status_code": error.status_code,
                "timed_out": error.timed_out,
            })
        return SyncError(
            code=code,
            message=str(error),
            timestamp=self._clock(),
            record_id=record_id,
            target_system=target_system,
            details=details
        )

    def _finish(self,
                configuration: SyncConfiguration,
                status: SyncStatus,
                final_state: RunState,
                successful: int,
                failed: int,
                operations: List[SyncOperation],
                mark_last_run: bool = True) -> SyncResult:
        end_time = self._clock()
        duration = max((end_time - status.start_time).total_seconds(), 0.0)
        result = SyncResult(
            id=status.id,
            configuration_id=status.configuration_id,
            status=final_state,
            start_time=status.start_time,
            end_time=end_time,
            duration=duration,
            processed_records=status.processed_records,
            total_records=status.total_records,
            successful_records=successful,
            failed_records=failed,
            errors=list(status.errors),
            conflicts=list(status.conflicts),
            metrics=calculate_metrics(duration, status.processed_records,
                                      len(status.errors), len(status.conflicts)),
            operations=operations if status.dry_run else None,
            dry_run=status.dry_run
        )

        try:
            self.registry.finish_run(result)
        except Exception as e:
            logger.error(f"Could not record the result of run {result.id}: {e}")
            raise
        finally:
            if mark_last_run:
                self.registry.mark_run(configuration.id, end_time)

        log = logger.error if final_state == RunState.FAILED else logger.info
        log(f"Sync run {result.id} {final_state.value}: {result.processed_records}/{result.total_records} "
            f"processed, {successful} succeeded, {failed} failed, {len(result.conflicts)} conflict(s) "
            f"in {duration:.2f}s")
        return result

    def get_system_health(self) -> Dict[str, Any]:
        """
        Check every registered connector.

        ``healthy`` when all respond, ``degraded`` when a strict majority does,
        ``unhealthy`` otherwise (including when nothing is registered).
        """
        connectors: Dict[str, str] = {}
        for system, connector in self.connectors.items():
            try:
                healthy = bool(connector.check_connection())
            except Exception as e:
                logger.warning(f"Health check for {system.value} raised: {e}")
                healthy = False
            connectors[system.value] = "healthy" if healthy else "unhealthy"

        healthy_count = sum(1 for state in connectors.values() if state == "healthy")
        total = len(connectors)
        if total and healthy_count == total:
            overall = "healthy"
        elif healthy_count * 2 > total:
            overall = "degraded"
        else:
            overall = "unhealthy"

        health = {
            "status": overall,
            "connectors": connectors,
            "active_runs": len(self.registry.list_active_runs()),
            "timestamp": self._clock().isoformat(),
        }
        if self.circuit_breaker_manager is not None:
            health["circuit_breakers"] = self.circuit_breaker_manager.get_health_status()
        return health
