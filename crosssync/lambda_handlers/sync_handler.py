"""
Sync Handler Lambda Function

Entry point for both trigger paths of the sync engine:
- EventBridge scheduled events start every due configuration
- Direct invocations carry an ``action`` to start, inspect or cancel runs
- ``record_changed`` actions push records a source system reports as changed
"""

import json
import logging
from typing import Any, Callable, Dict, Optional

from ..config.config_manager import EngineSettings
from ..config.dynamodb_config_store import DynamoDBConfigurationStore
from ..config.dynamodb_history_store import DynamoDBHistoryStore
from ..connectors.base import Connector
from ..connectors.dynamodb_document import DynamoDBDocumentConnector
from ..connectors.resilient import wrap_connectors
from ..error_handling.circuit_breaker import CircuitBreakerManager
from ..error_handling.exceptions import ConfigurationError
from ..models.sync_models import SystemType
from ..reporting.report_formatter import summarize_result
from ..sync.field_mapper import FieldMapper
from ..sync.orchestrator import SyncOrchestrator
from ..sync.registry import SyncRegistry
from ..sync.scheduler import SyncScheduler

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

SCHEDULED_EVENT = "Scheduled Event"

# Change events accepted by the record_changed action
RECORD_EVENTS = ("created", "updated")
BATCH_EVENT = "batch_update"
SYNC_REQUESTED_EVENT = "sync_requested"


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'body': json.dumps(body, default=str)
    }


class SyncHandler:
    """Dispatches trigger and inspection events to the sync engine."""

    def __init__(self, orchestrator: SyncOrchestrator, registry: SyncRegistry, scheduler: SyncScheduler):
        self.orchestrator = orchestrator
        self.registry = registry
        self.scheduler = scheduler
        self._actions: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            'start': self._start,
            'status': self._status,
            'active': self._active,
            'history': self._history,
            'cancel': self._cancel,
            'configurations': self._configurations,
            'upsert': self._upsert,
            'health': self._health,
            'record_changed': self._record_changed,
        }

    def handle_lambda_event(self, event: Dict[str, Any], context: Any) -> Dict[str, Any]:
        """
        Main Lambda handler function.

        Args:
            event: EventBridge scheduled event or ``{'action': ..., ...}``
            context: Lambda context object

        Returns:
            Dict with ``statusCode`` and a JSON ``body``
        """
        try:
            if event.get('detail-type') == SCHEDULED_EVENT:
                return self._run_scheduled()

            action = event.get('action')
            handler = self._actions.get(action)
            if handler is None:
                return _response(400, {
                    'error': 'Invalid request',
                    'message': f"Unknown action: {action!r}"
                })
            logger.info(f"Handling '{action}' request")
            return handler(event)

        except ConfigurationError as e:
            logger.warning(f"Rejected request: {e}")
            return _response(400, {'error': 'Configuration error', 'message': str(e)})
        except Exception as e:
            logger.error(f"Unexpected error in Lambda handler: {e}")
            return _response(500, {'error': 'Internal server error', 'message': str(e)})

    def _run_scheduled(self) -> Dict[str, Any]:
        runs = self.scheduler.run_due()
        return _response(200, {
            'message': f"Started {len(runs)} scheduled sync run(s)",
            'runs': [run.to_dict() for run in runs]
        })

    @staticmethod
    def _require(event: Dict[str, Any], name: str) -> Any:
        value = event.get(name)
        if value in (None, ''):
            raise ConfigurationError(f"Missing required parameter: {name}")
        return value

    def _start(self, event: Dict[str, Any]) -> Dict[str, Any]:
        result = self.orchestrator.start_sync(
            self._require(event, 'configurationId'),
            force=bool(event.get('force', False)),
            dry_run=bool(event.get('dryRun', False))
        )
        return _response(200, summarize_result(result))

    def _status(self, event: Dict[str, Any]) -> Dict[str, Any]:
        run_id = self._require(event, 'runId')
        status = self.registry.get_run_status(run_id)
        if status is None:
            return _response(404, {'error': 'Not found', 'message': f"Run {run_id} not found"})
        return _response(200, status.to_dict())

    def _active(self, event: Dict[str, Any]) -> Dict[str, Any]:
        runs = self.registry.list_active_runs()
        return _response(200, {'runs': [run.to_dict() for run in runs]})

    def _history(self, event: Dict[str, Any]) -> Dict[str, Any]:
        try:
            limit = int(event.get('limit', 50))
        except (TypeError, ValueError):
            raise ConfigurationError(f"limit must be an integer, got {event.get('limit')!r}")
        results = self.registry.get_history(limit)
        return _response(200, {'results': [summarize_result(result) for result in results]})

    def _cancel(self, event: Dict[str, Any]) -> Dict[str, Any]:
        run_id = self._require(event, 'runId')
        if not self.orchestrator.cancel(run_id):
            return _response(404, {'error': 'Not found', 'message': f"Run {run_id} is not active"})
        return _response(200, {'runId': run_id, 'cancelled': True})

    def _configurations(self, event: Dict[str, Any]) -> Dict[str, Any]:
        configurations = self.registry.list_configurations()
        return _response(200, {'configurations': [c.to_dict() for c in configurations]})

    def _upsert(self, event: Dict[str, Any]) -> Dict[str, Any]:
        configuration = self._require(event, 'configuration')
        if not isinstance(configuration, dict):
            raise ConfigurationError("configuration must be an object")
        return _response(200, self.registry.upsert_configuration(configuration).to_dict())

    def _health(self, event: Dict[str, Any]) -> Dict[str, Any]:
        return _response(200, self.orchestrator.get_system_health())

    def _record_changed(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """
        Sync records a source system reports as changed.

        ``created``/``updated`` carry one ``record``, ``batch_update`` carries
        ``records`` and runs them as one run, ``sync_requested`` starts a full
        run of the configuration.
        """
        configuration_id = self._require(event, 'configurationId')
        change = self._require(event, 'event')
        options = {
            'force': bool(event.get('force', False)),
            'dry_run': bool(event.get('dryRun', False)),
        }

        if change == SYNC_REQUESTED_EVENT:
            result = self.orchestrator.start_sync(configuration_id, **options)
        elif change in RECORD_EVENTS:
            result = self.orchestrator.sync_record(configuration_id, self._require(event, 'record'),
                                                   source_system=event.get('source'), **options)
        elif change == BATCH_EVENT:
            result = self.orchestrator.sync_records(configuration_id, self._require(event, 'records'),
                                                    source_system=event.get('source'), **options)
        else:
            raise ConfigurationError(f"Unsupported record event: {change!r}")

        logger.info(f"Processed '{change}' event for {configuration_id} as run {result.id}")
        return _response(200, {**summarize_result(result), 'event': change})


def build_sync_handler(settings: Optional[EngineSettings] = None,
                       connectors: Optional[Dict[Any, Connector]] = None,
                       field_mapper: Optional[FieldMapper] = None) -> SyncHandler:
    """
    Wire registry, connectors, orchestrator and scheduler from settings.

    DynamoDB stores are used when their table names are configured, in-memory
    stores otherwise. The document store connector is added when a document
    table is configured; CRM and ERP adapters are passed in ``connectors``.
    """
    settings = settings or EngineSettings.from_env()

    config_store = None
    if settings.config_table_name:
        config_store = DynamoDBConfigurationStore(settings.config_table_name, settings.region)
    history_store = None
    if settings.history_table_name:
        history_store = DynamoDBHistoryStore(settings.history_table_name, settings.region)
    registry = SyncRegistry(config_store, history_store, settings.history_capacity)
    registry.seed_default_configurations()

    raw_connectors: Dict[Any, Connector] = dict(connectors or {})
    if settings.docstore_table_name and SystemType.DOCSTORE not in raw_connectors:
        raw_connectors[SystemType.DOCSTORE] = DynamoDBDocumentConnector(
            settings.docstore_table_name, settings.docstore_key_attribute, settings.region
        )

    circuit_breaker_manager = CircuitBreakerManager()
    orchestrator = SyncOrchestrator(
        registry,
        wrap_connectors(raw_connectors, settings, circuit_breaker_manager),
        field_mapper=field_mapper,
        circuit_breaker_manager=circuit_breaker_manager
    )
    scheduler = SyncScheduler(orchestrator, registry, settings.scheduler_max_workers)
    return SyncHandler(orchestrator, registry, scheduler)


_handler: Optional[SyncHandler] = None


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    AWS Lambda entry point for the sync handler.

    Args:
        event: EventBridge scheduled event or direct invocation payload
        context: Lambda context object

    Returns:
        Dict containing processing results
    """
    global _handler
    if _handler is None:
        try:
            _handler = build_sync_handler()
        except ConfigurationError as e:
            logger.error(f"Invalid sync engine settings: {e}")
            return _response(500, {'error': 'Configuration error', 'message': str(e)})
    return _handler.handle_lambda_event(event, context)
