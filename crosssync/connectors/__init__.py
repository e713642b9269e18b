"""Connector contract and adapters for the external systems."""

from .base import Connector, ConnectorRegistry
from .resilient import ResilientConnector, wrap_connectors

__all__ = [
    "Connector",
    "ConnectorRegistry",
    "ResilientConnector",
    "wrap_connectors",
]
