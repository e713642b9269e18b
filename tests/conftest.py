"""
Shared fixtures for sync engine tests.

Connectors are replaced by in-memory fakes that record every write, so the
engine can be exercised without any external system.
"""

import copy
from datetime import datetime, timedelta, timezone

import pytest

from crosssync.error_handling.exceptions import FetchError, WriteError
from crosssync.models.sync_models import SyncConfiguration, SystemType
from crosssync.sync.orchestrator import SyncOrchestrator
from crosssync.sync.registry import SyncRegistry
from crosssync.connectors.base import Connector


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "property: marks property-based tests (hypothesis)"
    )


class FakeConnector(Connector):
    """In-memory connector keyed by one field of its records."""

    def __init__(self, system, key_field="No", source_records=None, existing=None):
        self.system = SystemType.parse(system)
        self.key_field = key_field
        self.source_records = list(source_records or [])
        self.store = {record[key_field]: copy.deepcopy(record) for record in (existing or [])}
        self.created = []
        self.updated = []
        self.fetch_queries = []
        self.fetch_error = None
        self.failing_keys = set()
        self.failing_lookup_keys = set()
        self.healthy = True
        self.on_write = None

    def fetch_all(self, query=None):
        self.fetch_queries.append(query)
        if self.fetch_error is not None:
            raise self.fetch_error
        records = self.source_records
        if query is not None and query.filter:
            records = [r for r in records if all(r.get(k) == v for k, v in query.filter.items())]
        return copy.deepcopy(records)

    def fetch_by_id(self, key):
        if key in self.failing_lookup_keys:
            raise FetchError(f"lookup of {key} failed", system=self.system.value, status_code=500)
        record = self.store.get(key)
        return copy.deepcopy(record) if record is not None else None

    def create(self, record):
        key = record.get(self.key_field)
        self._before_write(key)
        self.store[key] = copy.deepcopy(record)
        self.created.append(copy.deepcopy(record))
        return copy.deepcopy(record)

    def update(self, key, partial_record):
        self._before_write(key)
        if key not in self.store:
            raise WriteError(f"{key} does not exist", system=self.system.value, status_code=404)
        self.store[key].update(copy.deepcopy(partial_record))
        self.updated.append((key, copy.deepcopy(partial_record)))
        return copy.deepcopy(self.store[key])

    def check_connection(self):
        return self.healthy

    def _before_write(self, key):
        if self.on_write is not None:
            self.on_write(key)
        if key in self.failing_keys:
            raise WriteError(f"write of {key} rejected", system=self.system.value, status_code=400)


class SteppingClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start=None):
        self.current = start or datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def __call__(self):
        value = self.current
        self.current += timedelta(seconds=1)
        return value


def customer_configuration_data(**overrides):
    data = {
        "id": "customers",
        "name": "Customer Synchronization",
        "source_system": "CRM",
        "target_systems": ["ERP"],
        "field_mappings": [
            {"source_field": "id", "target_field": "No", "required": True},
            {"source_field": "name", "target_field": "Name"},
        ],
        "schedule": {"type": "interval", "interval_minutes": 15},
        "conflict_resolution_strategy": "source-wins",
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_connector():
    return FakeConnector


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def registry():
    return SyncRegistry(history_capacity=100)


@pytest.fixture
def configuration_data():
    return customer_configuration_data


@pytest.fixture
def crm():
    return FakeConnector("CRM", key_field="id")


@pytest.fixture
def erp():
    return FakeConnector("ERP", key_field="No")


@pytest.fixture
def orchestrator(registry, crm, erp, clock):
    registry.upsert_configuration(customer_configuration_data())
    return SyncOrchestrator(registry, {SystemType.CRM: crm, SystemType.ERP: erp}, clock=clock)


@pytest.fixture
def customer_configuration():
    return SyncConfiguration.from_dict(customer_configuration_data())
