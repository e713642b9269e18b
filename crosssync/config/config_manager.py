"""Configuration management utilities."""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from ..error_handling.exceptions import ConfigurationError
from ..models.sync_models import SyncConfiguration


@dataclass
class RetryConfig:
    """Retry configuration settings."""
    max_attempts: int = 3
    base_delay: float = 2
    max_delay: float = 60

    def __post_init__(self):
        """Validate retry configuration."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")


@dataclass
class EngineSettings:
    """Process-wide settings for the sync engine."""
    history_capacity: int = 100
    connector_timeout: Optional[float] = 30.0
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker_enabled: bool = True
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_timeout: float = 60.0
    scheduler_max_workers: int = 4
    config_table_name: Optional[str] = None
    history_table_name: Optional[str] = None
    docstore_table_name: Optional[str] = None
    docstore_key_attribute: str = "id"
    region: str = "us-east-1"

    def __post_init__(self):
        """Validate settings."""
        if self.history_capacity < 1:
            raise ValueError("history_capacity must be at least 1")
        if self.connector_timeout is not None and self.connector_timeout <= 0:
            raise ValueError("connector_timeout must be positive")
        if self.circuit_breaker_failure_threshold < 1:
            raise ValueError("circuit_breaker_failure_threshold must be at least 1")
        if self.scheduler_max_workers < 1:
            raise ValueError("scheduler_max_workers must be at least 1")

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        return {
            "history_capacity": self.history_capacity,
            "connector_timeout": self.connector_timeout,
            "retry_config": {
                "max_attempts": self.retry_config.max_attempts,
                "base_delay": self.retry_config.base_delay,
                "max_delay": self.retry_config.max_delay
            },
            "circuit_breaker_enabled": self.circuit_breaker_enabled,
            "circuit_breaker_failure_threshold": self.circuit_breaker_failure_threshold,
            "circuit_breaker_timeout": self.circuit_breaker_timeout,
            "scheduler_max_workers": self.scheduler_max_workers,
            "config_table_name": self.config_table_name,
            "history_table_name": self.history_table_name,
            "docstore_table_name": self.docstore_table_name,
            "docstore_key_attribute": self.docstore_key_attribute,
            "region": self.region
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineSettings":
        """Create settings from dictionary."""
        retry_data = data.get("retry_config", {})
        retry_config = RetryConfig(
            max_attempts=retry_data.get("max_attempts", 3),
            base_delay=retry_data.get("base_delay", 2),
            max_delay=retry_data.get("max_delay", 60)
        )

        return cls(
            history_capacity=data.get("history_capacity", 100),
            connector_timeout=data.get("connector_timeout", 30.0),
            retry_config=retry_config,
            circuit_breaker_enabled=data.get("circuit_breaker_enabled", True),
            circuit_breaker_failure_threshold=data.get("circuit_breaker_failure_threshold", 5),
            circuit_breaker_timeout=data.get("circuit_breaker_timeout", 60.0),
            scheduler_max_workers=data.get("scheduler_max_workers", 4),
            config_table_name=data.get("config_table_name"),
            history_table_name=data.get("history_table_name"),
            docstore_table_name=data.get("docstore_table_name"),
            docstore_key_attribute=data.get("docstore_key_attribute", "id"),
            region=data.get("region", "us-east-1")
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ

        def _number(name: str, default, cast=float):
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError:
                raise ConfigurationError(f"Environment variable {name} must be numeric, got {raw!r}")

        timeout = _number("CROSSSYNC_CONNECTOR_TIMEOUT", 30.0)
        try:
            return cls(
                history_capacity=_number("CROSSSYNC_HISTORY_CAPACITY", 100, int),
                connector_timeout=timeout if timeout > 0 else None,
                retry_config=RetryConfig(
                    max_attempts=_number("CROSSSYNC_RETRY_MAX_ATTEMPTS", 3, int),
                    base_delay=_number("CROSSSYNC_RETRY_BASE_DELAY", 2.0),
                    max_delay=_number("CROSSSYNC_RETRY_MAX_DELAY", 60.0)
                ),
                circuit_breaker_enabled=env.get("CROSSSYNC_CIRCUIT_BREAKER", "true").lower() != "false",
                circuit_breaker_failure_threshold=_number("CROSSSYNC_CIRCUIT_BREAKER_THRESHOLD", 5, int),
                circuit_breaker_timeout=_number("CROSSSYNC_CIRCUIT_BREAKER_TIMEOUT", 60.0),
                scheduler_max_workers=_number("CROSSSYNC_SCHEDULER_WORKERS", 4, int),
                config_table_name=env.get("CONFIG_TABLE_NAME"),
                history_table_name=env.get("HISTORY_TABLE_NAME"),
                docstore_table_name=env.get("DOCSTORE_TABLE_NAME"),
                docstore_key_attribute=env.get("DOCSTORE_KEY_ATTRIBUTE", "id"),
                region=env.get("AWS_REGION", "us-east-1")
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid engine settings: {e}")


class ConfigManager:
    """Validates sync configurations built from plain dictionaries.

    Storage belongs to the registry; the manager only turns dictionaries
    into validated SyncConfiguration objects.
    """

    def load_config(self, config_data: Dict[str, Any]) -> SyncConfiguration:
        """Load and validate a configuration from dictionary."""
        try:
            return SyncConfiguration.from_dict(config_data)
        except (KeyError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid configuration {config_data.get('id')!r}: {e}")

    def load_configs(self, configs_data: List[Dict[str, Any]]) -> List[SyncConfiguration]:
        """Load several configurations; all of them must be valid."""
        return [self.load_config(config_data) for config_data in configs_data]

    def validate_config(self, config_data: Dict[str, Any]) -> bool:
        """Validate configuration without loading it."""
        return not self.validation_errors(config_data)

    def validation_errors(self, config_data: Dict[str, Any]) -> List[str]:
        """Return the reasons a configuration is invalid (empty when valid)."""
        try:
            SyncConfiguration.from_dict(config_data)
            return []
        except KeyError as e:
            return [f"Missing required field: {e.args[0]}"]
        except (ValueError, TypeError) as e:
            return [str(e)]

    def update_config(self, current: SyncConfiguration, updates: Dict[str, Any]) -> SyncConfiguration:
        """Return a merged and revalidated copy of ``current``."""
        return merge_configuration(current, updates)


def merge_configuration(current: SyncConfiguration, updates: Dict[str, Any]) -> SyncConfiguration:
    """Merge partial updates into a configuration, revalidating the whole object.

    Mappings given as FieldMapping objects keep their callables; nested
    ``schedule`` updates are merged key by key.
    """
    if "id" in updates and updates["id"] != current.id:
        raise ConfigurationError(f"Cannot change configuration id from {current.id!r} to {updates['id']!r}")

    current_dict = current.to_dict()
    # Keep callables that to_dict cannot represent
    current_dict["field_mappings"] = list(current.field_mappings)

    if "schedule" in updates and isinstance(updates["schedule"], dict):
        current_dict["schedule"].update(updates["schedule"])
        updates = {k: v for k, v in updates.items() if k != "schedule"}

    current_dict.update(updates)
    current_dict["updated_at"] = datetime.now(timezone.utc)

    try:
        return SyncConfiguration.from_dict(current_dict)
    except (KeyError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid configuration update for '{current.id}': {e}")
