"""Built-in sync configurations seeded into an empty registry."""

from typing import Any, Dict, List

DEFAULT_CONFIGURATIONS: List[Dict[str, Any]] = [
    {
        "id": "customers",
        "name": "Customer Synchronization",
        "source_system": "CRM",
        "target_systems": ["ERP"],
        "field_mappings": [
            {"source_field": "accountid", "target_field": "No", "transformation": "direct", "required": True},
            {"source_field": "name", "target_field": "Name", "transformation": "direct", "required": True},
            {"source_field": "emailaddress1", "target_field": "E_Mail", "transformation": "direct", "required": False},
        ],
        "schedule": {"type": "interval", "interval_minutes": 15, "enabled": True},
        "conflict_resolution_strategy": "source-wins",
        "enabled": True,
        "source_timestamp_field": "modifiedon",
        "target_timestamp_field": "LastModifiedDateTime",
    },
    {
        "id": "products",
        "name": "Product Synchronization",
        "source_system": "DOCSTORE",
        "target_systems": ["CRM", "ERP"],
        "field_mappings": [
            {"source_field": "productNumber", "target_field": "productnumber", "transformation": "direct", "required": True},
            {"source_field": "name", "target_field": "name", "transformation": "direct", "required": True},
        ],
        "schedule": {"type": "interval", "interval_minutes": 30, "enabled": True},
        "conflict_resolution_strategy": "manual",
        "enabled": True,
        "source_timestamp_field": "lastModified",
    },
]
