"""
Tests for the sync orchestrator.

Scenarios (clean create, resolved conflict, disabled configuration), resilient
per-record processing, progress tracking, cancellation, dry runs and health.
"""

from unittest.mock import Mock

import pytest
from hypothesis import given, settings, strategies as st

from conftest import FakeConnector, SteppingClock, customer_configuration_data
from crosssync.error_handling.exceptions import ConfigurationError, FetchError
from crosssync.models.sync_models import (
    MANUAL_REVIEW_REQUIRED,
    RECORD_PROCESSING_ERROR,
    SOURCE_FETCH_ERROR,
    FieldMapping,
    OperationType,
    RunState,
    SystemType,
)
from crosssync.sync.field_mapper import FieldMapper
from crosssync.sync.orchestrator import SyncOrchestrator
from crosssync.sync.registry import SyncRegistry


def _build(records=None, existing=None, **config_overrides):
    registry = SyncRegistry()
    registry.upsert_configuration(customer_configuration_data(**config_overrides))
    crm = FakeConnector("CRM", key_field="id", source_records=records)
    erp = FakeConnector("ERP", key_field="No", existing=existing)
    orchestrator = SyncOrchestrator(registry, {"CRM": crm, "ERP": erp}, clock=SteppingClock())
    return orchestrator, registry, crm, erp


class TestScenarios:

    def test_clean_create(self):
        orchestrator, registry, crm, erp = _build(records=[{"id": "A1", "name": "Acme"}])

        result = orchestrator.start_sync("customers", dry_run=True)

        assert result.status == RunState.COMPLETED
        assert result.conflicts == []
        assert len(result.operations) == 1
        operation = result.operations[0]
        assert operation.type == OperationType.CREATE
        assert operation.mapped_data == {"No": "A1", "Name": "Acme"}
        assert operation.target_record is None
        assert erp.created == []

    def test_clean_create_writes_to_target(self):
        orchestrator, registry, crm, erp = _build(records=[{"id": "A1", "name": "Acme"}])

        result = orchestrator.start_sync("customers")

        assert result.status == RunState.COMPLETED
        assert result.operations is None
        assert erp.created == [{"No": "A1", "Name": "Acme"}]
        assert result.successful_records == 1
        assert result.failed_records == 0

    def test_resolved_conflict_target_wins(self):
        orchestrator, registry, crm, erp = _build(
            records=[{"id": "A1", "name": "Acme"}],
            existing=[{"No": "A1", "Name": "Acme Corp"}],
            conflict_resolution_strategy="target-wins"
        )

        result = orchestrator.start_sync("customers", dry_run=True)

        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.field == "Name"
        assert conflict.resolution_strategy == "target-wins"
        assert conflict.record_key == "A1"
        assert conflict.target_system == "ERP"
        operation = result.operations[0]
        assert operation.type == OperationType.UPDATE
        assert operation.mapped_data["Name"] == "Acme Corp"
        assert operation.target_record == {"No": "A1", "Name": "Acme Corp"}

    def test_update_uses_resolved_values(self):
        orchestrator, registry, crm, erp = _build(
            records=[{"id": "A1", "name": "Acme"}],
            existing=[{"No": "A1", "Name": "Acme Corp"}]
        )

        orchestrator.start_sync("customers")

        assert erp.updated == [("A1", {"No": "A1", "Name": "Acme"})]
        assert erp.store["A1"]["Name"] == "Acme"

    def test_disabled_configuration_fails_fast(self):
        orchestrator, registry, crm, erp = _build(records=[{"id": "A1", "name": "Acme"}], enabled=False)

        with pytest.raises(ConfigurationError, match="disabled"):
            orchestrator.start_sync("customers")

        assert registry.list_active_runs() == []
        assert registry.get_history() == []
        assert crm.fetch_queries == []

    def test_force_runs_disabled_configuration(self):
        orchestrator, registry, crm, erp = _build(records=[{"id": "A1", "name": "Acme"}], enabled=False)

        result = orchestrator.start_sync("customers", force=True)

        assert result.status == RunState.COMPLETED
        assert erp.created == [{"No": "A1", "Name": "Acme"}]

    def test_unknown_configuration(self):
        orchestrator, registry, crm, erp = _build()
        with pytest.raises(ConfigurationError, match="not found"):
            orchestrator.start_sync("suppliers")

    def test_newest_wins_uses_record_timestamps(self):
        orchestrator, registry, crm, erp = _build(
            records=[{"id": "A1", "name": "Acme", "modifiedon": "2024-01-02T00:00:00Z"}],
            existing=[{"No": "A1", "Name": "Acme Corp", "LastModifiedDateTime": "2024-01-03T00:00:00Z"}],
            conflict_resolution_strategy="newest-wins"
        )

        result = orchestrator.start_sync("customers")

        assert erp.updated == [("A1", {"No": "A1", "Name": "Acme Corp"})]
        assert result.conflicts[0].resolution_strategy == "newest-wins"

    def test_millisecond_timestamps(self):
        for strategy in ("source-wins", "newest-wins"):
            orchestrator, registry, crm, erp = _build(
                records=[{"id": "A1", "name": "Acme", "lastModified": 1705312800000}],
                existing=[{"No": "A1", "Name": "Acme Corp", "LastModifiedDateTime": "2024-01-03T00:00:00Z"}],
                conflict_resolution_strategy=strategy
            )

            result = orchestrator.start_sync("customers")

            assert result.status == RunState.COMPLETED
            assert erp.updated == [("A1", {"No": "A1", "Name": "Acme"})]
            assert result.conflicts[0].source_timestamp.year == 2024


@pytest.mark.property
class TestResilience:
    """N records with exactly K failing: the run completes with K failures and K errors."""

    @given(
        total=st.integers(min_value=1, max_value=12),
        data=st.data()
    )
    @settings(max_examples=50, deadline=None)
    def test_failing_records_do_not_abort_run(self, total, data):
        failing = data.draw(st.sets(st.integers(min_value=0, max_value=total - 1)))
        records = [{"id": f"R{i}", "name": f"Record {i}"} for i in range(total)]
        orchestrator, registry, crm, erp = _build(records=records)
        erp.failing_keys = {f"R{i}" for i in failing}

        result = orchestrator.start_sync("customers")

        assert result.status == (RunState.COMPLETED_WITH_ERRORS if failing else RunState.COMPLETED)
        assert result.processed_records == total
        assert result.failed_records == len(failing)
        assert result.successful_records == total - len(failing)
        assert len(result.errors) == len(failing)
        assert all(error.code == RECORD_PROCESSING_ERROR for error in result.errors)
        assert {error.record_id for error in result.errors} == {f"R{i}" for i in failing}

    @given(total=st.integers(min_value=1, max_value=15))
    @settings(max_examples=30, deadline=None)
    def test_progress_is_monotonic_and_bounded(self, total):
        records = [{"id": f"R{i}", "name": "n"} for i in range(total)]
        orchestrator, registry, crm, erp = _build(records=records)
        observed = []
        erp.on_write = lambda key: observed.extend(
            (run.processed_records, run.progress) for run in registry.list_active_runs()
        )

        result = orchestrator.start_sync("customers")

        processed = [p for p, _ in observed]
        progress = [p for _, p in observed]
        assert processed == sorted(processed)
        assert progress == sorted(progress)
        assert all(0 <= p <= 100 for p in progress)
        assert result.progress == 100
        assert result.processed_records == result.total_records == total


class TestRecordFailures:

    def test_record_without_key_is_recorded_and_skipped(self):
        orchestrator, registry, crm, erp = _build(records=[{"name": "No id"}, {"id": "A2", "name": "Ok"}])

        result = orchestrator.start_sync("customers")

        assert result.status == RunState.COMPLETED_WITH_ERRORS
        assert result.processed_records == 2
        assert result.failed_records == 1
        assert result.errors[0].code == RECORD_PROCESSING_ERROR
        assert result.errors[0].target_system is None
        assert erp.created == [{"No": "A2", "Name": "Ok"}]

    def test_failing_custom_function_is_a_record_failure(self):
        def explode(value, record):
            if value == "bad":
                raise ValueError("cannot map bad")
            return value

        orchestrator, registry, crm, erp = _build(
            records=[{"id": "A1", "name": "bad"}, {"id": "A2", "name": "good"}],
            field_mappings=[
                FieldMapping("id", "No", required=True),
                FieldMapping("name", "Name", transformation="custom-function", custom_function=explode),
            ]
        )

        result = orchestrator.start_sync("customers")

        assert result.failed_records == 1
        assert "cannot map bad" in result.errors[0].message
        assert result.errors[0].details["error_type"] == "ValueError"

    def test_failed_target_lookup_counts_as_failure(self):
        orchestrator, registry, crm, erp = _build(records=[{"id": "A1", "name": "Acme"}])
        erp.failing_lookup_keys = {"A1"}

        result = orchestrator.start_sync("customers")

        assert result.failed_records == 1
        assert erp.created == []
        error = result.errors[0]
        assert error.target_system == "ERP"
        assert error.details["status_code"] == 500

    def test_update_of_missing_record_is_recorded(self):
        orchestrator, registry, crm, erp = _build(records=[{"id": "A1", "name": "Acme"}])
        erp.failing_keys = {"A1"}

        result = orchestrator.start_sync("customers")

        assert result.status == RunState.COMPLETED_WITH_ERRORS
        assert result.errors[0].details["error_type"] == "WriteError"

    def test_unregistered_custom_function_fails_before_run(self):
        orchestrator, registry, crm, erp = _build(
            records=[{"id": "A1", "name": "Acme"}],
            field_mappings=[
                {"source_field": "id", "target_field": "No", "required": True},
                {"source_field": "name", "target_field": "Name", "transformation": "custom-function",
                 "custom_function_name": "normalize"},
            ]
        )

        with pytest.raises(ConfigurationError, match="normalize"):
            orchestrator.start_sync("customers")
        assert registry.get_history() == []

    def test_named_custom_function_from_mapper(self):
        registry = SyncRegistry()
        registry.upsert_configuration(customer_configuration_data(field_mappings=[
            {"source_field": "id", "target_field": "No", "required": True},
            {"source_field": "name", "target_field": "Name", "transformation": "custom-function",
             "custom_function_name": "normalize"},
        ]))
        crm = FakeConnector("CRM", key_field="id", source_records=[{"id": "A1", "name": " acme "}])
        erp = FakeConnector("ERP")
        mapper = FieldMapper({"normalize": lambda value, record: value.strip().title()})
        orchestrator = SyncOrchestrator(registry, {"CRM": crm, "ERP": erp}, field_mapper=mapper)

        orchestrator.start_sync("customers")

        assert erp.created == [{"No": "A1", "Name": "Acme"}]

    def test_missing_target_connector(self):
        registry = SyncRegistry()
        registry.upsert_configuration(customer_configuration_data())
        orchestrator = SyncOrchestrator(registry, {"CRM": FakeConnector("CRM", key_field="id")})

        with pytest.raises(ConfigurationError, match="ERP"):
            orchestrator.start_sync("customers")


class TestRunLifecycle:

    def test_source_fetch_failure_fails_run(self):
        orchestrator, registry, crm, erp = _build(records=[{"id": "A1", "name": "Acme"}])
        crm.fetch_error = FetchError("CRM unavailable", system="CRM", status_code=503)

        result = orchestrator.start_sync("customers")

        assert result.status == RunState.FAILED
        assert result.processed_records == 0
        assert len(result.errors) == 1
        assert result.errors[0].code == SOURCE_FETCH_ERROR
        assert registry.get_history()[0].id == result.id
        assert registry.list_active_runs() == []
        assert registry.get_configuration("customers").last_run_at == result.end_time

    def test_empty_source_completes_immediately(self):
        orchestrator, registry, crm, erp = _build(records=[])

        result = orchestrator.start_sync("customers")

        assert result.status == RunState.COMPLETED
        assert result.total_records == 0
        assert result.processed_records == 0
        assert result.progress == 0

    def test_result_is_recorded_in_history(self):
        orchestrator, registry, crm, erp = _build(records=[{"id": "A1", "name": "Acme"}])

        result = orchestrator.start_sync("customers")

        assert result.id.startswith("customers-")
        assert registry.get_history() == [result]
        assert registry.get_run_status(result.id) == result
        assert registry.get_configuration("customers").last_run_at == result.end_time
        assert result.duration > 0
        assert result.metrics.duration == result.duration

    def test_run_ids_are_unique(self):
        orchestrator, registry, crm, erp = _build(records=[])
        first = orchestrator.start_sync("customers")
        second = orchestrator.start_sync("customers")
        assert first.id != second.id

    def test_filter_query_is_passed_to_source(self):
        orchestrator, registry, crm, erp = _build(
            records=[{"id": "A1", "name": "Acme", "status": "active"},
                     {"id": "A2", "name": "Gone", "status": "inactive"}],
            filter_query={"filter": {"status": "active"}}
        )

        result = orchestrator.start_sync("customers")

        assert crm.fetch_queries[0].filter == {"status": "active"}
        assert result.total_records == 1
        assert erp.created == [{"No": "A1", "Name": "Acme"}]

    def test_cancellation_stops_between_records(self):
        records = [{"id": f"R{i}", "name": "n"} for i in range(5)]
        orchestrator, registry, crm, erp = _build(records=records)
        seen_status = []

        def cancel_on_third(key):
            if key == "R2":
                assert orchestrator.cancel("run-1") is True
                seen_status.append(registry.get_run_status("run-1").status)

        erp.on_write = cancel_on_third

        result = orchestrator.start_sync("customers", run_id="run-1")

        assert result.status == RunState.CANCELLED
        assert result.processed_records == 3
        assert [r["No"] for r in erp.created] == ["R0", "R1", "R2"]
        assert seen_status == [RunState.CANCELLED]
        assert registry.list_active_runs() == []
        assert registry.get_history()[0].status == RunState.CANCELLED

    def test_cancel_unknown_run(self):
        orchestrator, registry, crm, erp = _build()
        assert orchestrator.cancel("no-such-run") is False

    def test_history_failure_does_not_strand_run(self):
        orchestrator, registry, crm, erp = _build(records=[{"id": "A1", "name": "Acme"}])
        registry.history_store.append = Mock(side_effect=RuntimeError("history down"))

        with pytest.raises(RuntimeError, match="history down"):
            orchestrator.start_sync("customers", run_id="run-1")

        assert registry.list_active_runs() == []
        assert registry.is_cancelled("run-1") is False
        assert registry.get_configuration("customers").last_run_at is not None

    def test_unexpected_error_does_not_strand_run(self):
        orchestrator, registry, crm, erp = _build(records=[{"id": "A1", "name": "Acme"}])
        orchestrator._process_record = Mock(side_effect=RuntimeError("bug"))

        with pytest.raises(RuntimeError, match="bug"):
            orchestrator.start_sync("customers")

        assert registry.list_active_runs() == []

    def test_malformed_source_payload_fails_run(self):
        orchestrator, registry, crm, erp = _build()
        crm.fetch_all = Mock(return_value=None)

        result = orchestrator.start_sync("customers")

        assert result.status == RunState.FAILED
        assert [e.code for e in result.errors] == [SOURCE_FETCH_ERROR]
        assert registry.list_active_runs() == []
        assert registry.get_history()[0].id == result.id


class TestPushedRecords:

    def test_single_record_is_synced_as_a_run(self):
        orchestrator, registry, crm, erp = _build(existing=[{"No": "A1", "Name": "Acme Corp"}])

        result = orchestrator.sync_record("customers", {"id": "A1", "name": "Acme"}, source_system="crm")

        assert result.status == RunState.COMPLETED
        assert result.total_records == 1
        assert result.processed_records == 1
        assert result.conflicts[0].field == "Name"
        assert erp.updated == [("A1", {"No": "A1", "Name": "Acme"})]
        assert crm.fetch_queries == []
        assert registry.get_history() == [result]
        assert registry.list_active_runs() == []
        assert registry.get_configuration("customers").last_run_at is None

    def test_batch_counts_failures_per_record(self):
        orchestrator, registry, crm, erp = _build()
        erp.failing_keys = {"A2"}

        result = orchestrator.sync_records("customers", [
            {"id": "A1", "name": "Acme"},
            {"id": "A2", "name": "Globex"},
        ])

        assert result.status == RunState.COMPLETED_WITH_ERRORS
        assert result.successful_records == 1
        assert result.failed_records == 1
        assert result.errors[0].code == RECORD_PROCESSING_ERROR
        assert erp.created == [{"No": "A1", "Name": "Acme"}]

    def test_dry_run_plans_without_writing(self):
        orchestrator, registry, crm, erp = _build()

        result = orchestrator.sync_record("customers", {"id": "A1", "name": "Acme"}, dry_run=True)

        assert result.operations[0].type == OperationType.CREATE
        assert erp.created == []

    def test_record_from_other_system_is_rejected(self):
        orchestrator, registry, crm, erp = _build()

        with pytest.raises(ConfigurationError, match="reads from CRM"):
            orchestrator.sync_record("customers", {"id": "A1"}, source_system="ERP")

        assert registry.get_history() == []

    def test_invalid_records_are_rejected(self):
        orchestrator, registry, crm, erp = _build()

        with pytest.raises(ConfigurationError, match="record must be an object"):
            orchestrator.sync_record("customers", ["A1"])
        with pytest.raises(ConfigurationError, match="list of objects"):
            orchestrator.sync_records("customers", [{"id": "A1"}, "A2"])
        assert registry.list_active_runs() == []

    def test_disabled_configuration(self):
        orchestrator, registry, crm, erp = _build(enabled=False)

        with pytest.raises(ConfigurationError, match="disabled"):
            orchestrator.sync_record("customers", {"id": "A1", "name": "Acme"})
        assert orchestrator.sync_record("customers", {"id": "A1", "name": "Acme"}, force=True).status == RunState.COMPLETED


class TestMultipleTargets:

    def test_products_to_crm_and_erp_with_manual_review(self):
        registry = SyncRegistry()
        registry.upsert_configuration({
            "id": "products",
            "name": "Product Synchronization",
            "source_system": "DOCSTORE",
            "target_systems": ["CRM", "ERP"],
            "field_mappings": [
                {"source_field": "productNumber", "target_field": "productnumber", "required": True},
                {"source_field": "name", "target_field": "name"},
            ],
            "conflict_resolution_strategy": "manual",
        })
        docstore = FakeConnector("DOCSTORE", key_field="productNumber",
                                 source_records=[{"productNumber": "P1", "name": "Widget"}])
        crm = FakeConnector("CRM", key_field="productnumber", existing=[{"productnumber": "P1", "name": "Old"}])
        erp = FakeConnector("ERP", key_field="productnumber")
        orchestrator = SyncOrchestrator(registry, {
            SystemType.DOCSTORE: docstore, SystemType.CRM: crm, SystemType.ERP: erp
        })

        result = orchestrator.start_sync("products")

        assert result.status == RunState.COMPLETED
        assert result.successful_records == 2
        assert crm.store["P1"]["name"] == "Widget"
        assert erp.created == [{"productnumber": "P1", "name": "Widget"}]
        assert len(result.manual_review_conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.resolution_strategy == MANUAL_REVIEW_REQUIRED
        assert conflict.target_system == "CRM"

    def test_failure_on_one_target_does_not_block_the_other(self):
        registry = SyncRegistry()
        registry.upsert_configuration(customer_configuration_data(target_systems=["ERP", "DOCSTORE"]))
        crm = FakeConnector("CRM", key_field="id", source_records=[{"id": "A1", "name": "Acme"}])
        erp = FakeConnector("ERP")
        erp.failing_keys = {"A1"}
        docstore = FakeConnector("DOCSTORE")
        orchestrator = SyncOrchestrator(registry, {"CRM": crm, "ERP": erp, "DOCSTORE": docstore})

        result = orchestrator.start_sync("customers")

        assert result.status == RunState.COMPLETED_WITH_ERRORS
        assert result.processed_records == 1
        assert result.successful_records == 1
        assert result.failed_records == 1
        assert result.errors[0].target_system == "ERP"
        assert docstore.created == [{"No": "A1", "Name": "Acme"}]


class TestSystemHealth:

    def _orchestrator(self, health_flags):
        systems = ["CRM", "ERP", "DOCSTORE"][:len(health_flags)]
        connectors = {}
        for system, healthy in zip(systems, health_flags):
            connector = FakeConnector(system)
            connector.healthy = healthy
            connectors[system] = connector
        return SyncOrchestrator(SyncRegistry(), connectors)

    def test_all_healthy(self):
        health = self._orchestrator([True, True, True]).get_system_health()
        assert health["status"] == "healthy"
        assert health["connectors"] == {"CRM": "healthy", "ERP": "healthy", "DOCSTORE": "healthy"}

    def test_majority_healthy_is_degraded(self):
        assert self._orchestrator([True, False, True]).get_system_health()["status"] == "degraded"

    def test_half_healthy_is_unhealthy(self):
        assert self._orchestrator([True, False]).get_system_health()["status"] == "unhealthy"

    def test_raising_health_check_counts_as_unhealthy(self):
        def broken_check():
            raise RuntimeError("down")

        orchestrator = self._orchestrator([True, True])
        orchestrator.connectors.get("ERP").check_connection = broken_check
        health = orchestrator.get_system_health()
        assert health["connectors"]["ERP"] == "unhealthy"
        assert health["status"] == "unhealthy"

    def test_no_connectors_is_unhealthy(self):
        assert SyncOrchestrator(SyncRegistry(), {}).get_system_health()["status"] == "unhealthy"
