"""
Connector contract implemented once per external system.

The sync engine only ever talks to CRM, ERP and the document store through
these four calls; protocol details and authentication live in the adapters.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from ..error_handling.exceptions import ConfigurationError
from ..models.sync_models import ConnectorQuery, SystemType

logger = logging.getLogger(__name__)


class Connector(ABC):
    """Uniform capability contract for an external system adapter."""

    system: SystemType

    @abstractmethod
    def fetch_all(self, query: Optional[ConnectorQuery] = None) -> List[Dict[str, Any]]:
        """
        Fetch a complete, materialized set of records.

        Pagination is consumed internally.

        Raises:
            FetchError: If the records cannot be retrieved
        """

    @abstractmethod
    def fetch_by_id(self, key: Any) -> Optional[Dict[str, Any]]:
        """
        Fetch one record by key.

        Returns:
            The record, or None when it does not exist yet

        Raises:
            FetchError: If the lookup itself fails
        """

    @abstractmethod
    def create(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a record.

        Raises:
            WriteError: On any non-success response
        """

    @abstractmethod
    def update(self, key: Any, partial_record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update the record identified by ``key``.

        Raises:
            WriteError: If the key does not exist or the write fails
        """

    def check_connection(self) -> bool:
        """Return True when the system is reachable."""
        return True

    def close(self) -> None:
        """Release clients or worker threads held by the connector."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ConnectorRegistry:
    """Maps each SystemType to the connector serving it."""

    def __init__(self, connectors: Optional[Dict[Any, Connector]] = None):
        self._connectors: Dict[SystemType, Connector] = {}
        for system, connector in (connectors or {}).items():
            self.register(system, connector)

    def register(self, system: Any, connector: Connector) -> None:
        system = SystemType.parse(system)
        if system in self._connectors:
            logger.info(f"Replacing connector for {system.value}")
        self._connectors[system] = connector

    def get(self, system: Any) -> Connector:
        """
        Return the connector for ``system``.

        Raises:
            ConfigurationError: If no connector is registered for the system
        """
        system = SystemType.parse(system)
        connector = self._connectors.get(system)
        if connector is None:
            raise ConfigurationError(f"No connector registered for system {system.value}")
        return connector

    def has(self, system: Any) -> bool:
        return SystemType.parse(system) in self._connectors

    def systems(self) -> List[SystemType]:
        return list(self._connectors)

    def items(self) -> Iterable:
        return list(self._connectors.items())

    def __contains__(self, system: Any) -> bool:
        return self.has(system)

    def close(self) -> None:
        """Close every registered connector."""
        for system, connector in self._connectors.items():
            logger.debug(f"Closing connector for {system.value}")
            connector.close()
