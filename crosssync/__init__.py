"""Cross-system data synchronization engine for CRM, ERP and document store records."""

__version__ = "0.1.0"
