"""Storage interfaces for sync configurations and run history, with in-memory backends."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..models.sync_models import SyncConfiguration, SyncResult


class ConfigurationStore(ABC):
    """Durable home of SyncConfiguration records."""

    @abstractmethod
    def get(self, config_id: str) -> Optional[SyncConfiguration]:
        """Return the configuration or None if it does not exist."""

    @abstractmethod
    def list(self) -> List[SyncConfiguration]:
        """Return all configurations."""

    @abstractmethod
    def put(self, config: SyncConfiguration) -> None:
        """Insert or replace a configuration (whole-object replace)."""


class HistoryStore(ABC):
    """Durable home of SyncResult history, most recent first."""

    @abstractmethod
    def append(self, result: SyncResult, capacity: int) -> None:
        """Prepend a result and drop anything beyond ``capacity``."""

    @abstractmethod
    def list(self, limit: int) -> List[SyncResult]:
        """Return up to ``limit`` results, newest first."""


class InMemoryConfigurationStore(ConfigurationStore):
    """Process-local configuration store; keeps custom-function callables intact."""

    def __init__(self):
        self._configs: Dict[str, SyncConfiguration] = {}

    def get(self, config_id: str) -> Optional[SyncConfiguration]:
        return self._configs.get(config_id)

    def list(self) -> List[SyncConfiguration]:
        return list(self._configs.values())

    def put(self, config: SyncConfiguration) -> None:
        self._configs[config.id] = config


class InMemoryHistoryStore(HistoryStore):
    """Process-local bounded history."""

    def __init__(self):
        self._results: List[SyncResult] = []

    def append(self, result: SyncResult, capacity: int) -> None:
        self._results.insert(0, result)
        del self._results[capacity:]

    def list(self, limit: int) -> List[SyncResult]:
        return self._results[:max(limit, 0)]
