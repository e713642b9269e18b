"""Configuration management for cross-system synchronization."""

from .config_manager import ConfigManager, EngineSettings, RetryConfig
from .stores import (
    ConfigurationStore,
    HistoryStore,
    InMemoryConfigurationStore,
    InMemoryHistoryStore,
)

__all__ = [
    "ConfigManager",
    "EngineSettings",
    "RetryConfig",
    "ConfigurationStore",
    "HistoryStore",
    "InMemoryConfigurationStore",
    "InMemoryHistoryStore",
]
