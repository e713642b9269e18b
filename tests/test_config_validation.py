"""Property-based tests for configuration validation.

Invalid sync configurations are rejected before they can be stored or run;
engine settings are validated when loaded from dictionaries or environment.
"""

import pytest
from hypothesis import given, strategies as st

from conftest import customer_configuration_data
from crosssync.config import ConfigManager, EngineSettings, RetryConfig
from crosssync.error_handling.exceptions import ConfigurationError
from crosssync.models.sync_models import (
    ConflictResolutionStrategy,
    SyncConfiguration,
    SystemType,
)

systems = st.sampled_from(["CRM", "ERP", "DOCSTORE"])

valid_retry_config = st.fixed_dictionaries({
    "max_attempts": st.integers(min_value=1, max_value=10),
    "base_delay": st.integers(min_value=0, max_value=30),
    "max_delay": st.integers(min_value=30, max_value=300)
})

invalid_retry_config = st.one_of(
    st.fixed_dictionaries({
        "max_attempts": st.integers(max_value=0),
        "base_delay": st.integers(min_value=1, max_value=30),
        "max_delay": st.integers(min_value=30, max_value=300)
    }),
    st.fixed_dictionaries({
        "max_attempts": st.integers(min_value=1, max_value=10),
        "base_delay": st.integers(max_value=-1),
        "max_delay": st.integers(min_value=30, max_value=300)
    }),
    st.fixed_dictionaries({
        "max_attempts": st.integers(min_value=1, max_value=10),
        "base_delay": st.integers(min_value=30, max_value=60),
        "max_delay": st.integers(min_value=1, max_value=29)
    })
)


@pytest.mark.property
class TestConfigurationValidation:
    """Target systems are non-empty, unique and never include the source."""

    @given(source=systems, targets=st.lists(systems, max_size=3))
    def test_target_system_rules(self, source, targets):
        config_data = customer_configuration_data(source_system=source, target_systems=targets)
        expected_valid = bool(targets) and source not in targets and len(set(targets)) == len(targets)

        manager = ConfigManager()
        assert manager.validate_config(config_data) is expected_valid

        if expected_valid:
            config = manager.load_config(config_data)
            assert config.target_systems == [SystemType(t) for t in targets]
        else:
            with pytest.raises(ConfigurationError, match="Invalid configuration"):
                manager.load_config(config_data)

    @given(retry_config=valid_retry_config)
    def test_valid_retry_configs_are_accepted(self, retry_config):
        settings = EngineSettings.from_dict({"retry_config": retry_config})
        assert settings.retry_config.max_attempts == retry_config["max_attempts"]

    @given(retry_config=invalid_retry_config)
    def test_invalid_retry_configs_are_rejected(self, retry_config):
        with pytest.raises(ValueError):
            RetryConfig(**retry_config)


class TestSyncConfigurationRules:

    def test_at_least_one_required_mapping(self):
        data = customer_configuration_data(field_mappings=[{"source_field": "id", "target_field": "No"}])
        errors = ConfigManager().validation_errors(data)
        assert len(errors) == 1
        assert "required" in errors[0]

    def test_missing_field_is_reported(self):
        data = customer_configuration_data()
        del data["source_system"]
        assert ConfigManager().validation_errors(data) == ["Missing required field: source_system"]

    def test_unknown_strategy_is_configuration_error(self):
        data = customer_configuration_data(conflict_resolution_strategy="coin-flip")
        with pytest.raises(ConfigurationError):
            ConfigManager().load_config(data)

    def test_strategy_parsing(self):
        assert ConflictResolutionStrategy.parse("newest_wins") == ConflictResolutionStrategy.NEWEST_WINS
        assert ConflictResolutionStrategy.parse("Source-Wins") == ConflictResolutionStrategy.SOURCE_WINS

    def test_platform_aliases(self):
        config = SyncConfiguration.from_dict(
            customer_configuration_data(source_system="dynamics365", target_systems=["nav2017", "cosmosdb"])
        )
        assert config.source_system == SystemType.CRM
        assert config.target_systems == [SystemType.ERP, SystemType.DOCSTORE]

    def test_interval_schedule_needs_minutes(self):
        data = customer_configuration_data(schedule={"type": "interval"})
        assert ConfigManager().validate_config(data) is False

    def test_key_mapping_is_first_required(self):
        config = SyncConfiguration.from_dict(customer_configuration_data(field_mappings=[
            {"source_field": "name", "target_field": "Name"},
            {"source_field": "id", "target_field": "No", "required": True},
            {"source_field": "code", "target_field": "Code", "required": True},
        ]))
        assert config.key_mapping.target_field == "No"

    def test_dictionary_round_trip(self):
        config = SyncConfiguration.from_dict(customer_configuration_data(
            filter_query={"filter": {"status": "active"}, "page_size": 50},
            source_timestamp_field="modifiedon"
        ))
        assert SyncConfiguration.from_dict(config.to_dict()) == config

    def test_load_configs_is_all_or_nothing(self):
        good = customer_configuration_data()
        bad = customer_configuration_data(id="broken", target_systems=[])

        with pytest.raises(ConfigurationError, match="broken"):
            ConfigManager().load_configs([good, bad])

    def test_update_config_cannot_change_id(self):
        manager = ConfigManager()
        current = manager.load_config(customer_configuration_data())
        with pytest.raises(ConfigurationError, match="Cannot change"):
            manager.update_config(current, {"id": "other"})

    def test_update_config_revalidates(self):
        manager = ConfigManager()
        current = manager.load_config(customer_configuration_data())

        updated = manager.update_config(current, {"conflict_resolution_strategy": "manual"})

        assert updated.conflict_resolution_strategy == ConflictResolutionStrategy.MANUAL
        assert current.conflict_resolution_strategy == ConflictResolutionStrategy.SOURCE_WINS
        with pytest.raises(ConfigurationError, match="target_systems"):
            manager.update_config(current, {"target_systems": []})


class TestEngineSettings:

    def test_defaults(self):
        settings = EngineSettings()
        assert settings.history_capacity == 100
        assert settings.retry_config.max_attempts == 3
        assert settings.config_table_name is None

    def test_from_env(self):
        settings = EngineSettings.from_env({
            "CROSSSYNC_HISTORY_CAPACITY": "25",
            "CROSSSYNC_CONNECTOR_TIMEOUT": "5",
            "CROSSSYNC_RETRY_MAX_ATTEMPTS": "4",
            "CROSSSYNC_CIRCUIT_BREAKER": "false",
            "CONFIG_TABLE_NAME": "sync-config",
            "HISTORY_TABLE_NAME": "sync-history",
            "DOCSTORE_TABLE_NAME": "products",
            "AWS_REGION": "eu-west-1",
        })
        assert settings.history_capacity == 25
        assert settings.connector_timeout == 5.0
        assert settings.retry_config.max_attempts == 4
        assert settings.circuit_breaker_enabled is False
        assert settings.config_table_name == "sync-config"
        assert settings.history_table_name == "sync-history"
        assert settings.docstore_table_name == "products"
        assert settings.region == "eu-west-1"

    def test_zero_timeout_disables_timeout(self):
        assert EngineSettings.from_env({"CROSSSYNC_CONNECTOR_TIMEOUT": "0"}).connector_timeout is None

    def test_non_numeric_env_value(self):
        with pytest.raises(ConfigurationError, match="CROSSSYNC_HISTORY_CAPACITY"):
            EngineSettings.from_env({"CROSSSYNC_HISTORY_CAPACITY": "lots"})

    def test_invalid_env_value(self):
        with pytest.raises(ConfigurationError):
            EngineSettings.from_env({"CROSSSYNC_HISTORY_CAPACITY": "0"})

    def test_dictionary_round_trip(self):
        settings = EngineSettings(history_capacity=10, config_table_name="cfg")
        assert EngineSettings.from_dict(settings.to_dict()) == settings
