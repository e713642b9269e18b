"""
Declarative field mapping from a source record shape to a target record shape.

Dot paths (``address.city``) are resolved here and nowhere else; everything
downstream works on the mapped dictionaries.
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from ..error_handling.exceptions import ConfigurationError
from ..models.sync_models import FieldMapping, TransformationType

logger = logging.getLogger(__name__)

CustomFunction = Callable[[Any, Dict[str, Any]], Any]


def get_nested_value(record: Optional[Dict[str, Any]], path: str) -> Any:
    """Read a dot path; any missing segment yields None."""
    current: Any = record
    for part in path.split('.'):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def set_nested_value(record: Dict[str, Any], path: str, value: Any) -> None:
    """Write a dot path, creating intermediate dictionaries as needed."""
    parts = path.split('.')
    current = record
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


class FieldMapper:
    """Applies FieldMapping rules; deterministic and free of I/O."""

    def __init__(self, custom_functions: Optional[Dict[str, CustomFunction]] = None):
        """
        Args:
            custom_functions: Named functions for ``custom-function`` mappings
                whose callable is not attached to the mapping itself
        """
        self.custom_functions: Dict[str, CustomFunction] = dict(custom_functions or {})

    def register_function(self, name: str, func: CustomFunction) -> None:
        if not callable(func):
            raise ConfigurationError(f"Custom function '{name}' is not callable")
        self.custom_functions[name] = func

    def _resolve_function(self, mapping: FieldMapping) -> CustomFunction:
        if mapping.custom_function is not None:
            return mapping.custom_function
        func = self.custom_functions.get(mapping.custom_function_name or "")
        if func is None:
            raise ConfigurationError(
                f"Custom function '{mapping.custom_function_name}' for "
                f"{mapping.source_field} -> {mapping.target_field} is not registered"
            )
        return func

    def validate(self, mappings: List[FieldMapping]) -> None:
        """
        Check that every custom-function mapping can be resolved.

        Raises:
            ConfigurationError: If a named function is not registered
        """
        for mapping in mappings:
            if mapping.transformation == TransformationType.CUSTOM_FUNCTION:
                self._resolve_function(mapping)

    def transform(self, value: Any, mapping: FieldMapping, source_record: Dict[str, Any]) -> Any:
        transformation = mapping.transformation
        if transformation == TransformationType.DIRECT:
            return value
        elif transformation == TransformationType.UPPERCASE:
            return value.upper() if isinstance(value, str) else value
        elif transformation == TransformationType.LOWERCASE:
            return value.lower() if isinstance(value, str) else value
        elif transformation == TransformationType.CUSTOM_FUNCTION:
            return self._resolve_function(mapping)(value, source_record)
        raise ConfigurationError(f"Unsupported transformation: {transformation}")

    def apply(self, source_record: Dict[str, Any], mappings: List[FieldMapping]) -> Dict[str, Any]:
        """
        Project ``source_record`` through ``mappings``.

        A missing source path maps to None. Neither argument is mutated: values
        are copied before they are written, and custom functions see a copy of
        the source record.
        """
        mapped: Dict[str, Any] = {}
        for mapping in mappings:
            value = copy.deepcopy(get_nested_value(source_record, mapping.source_field))
            if mapping.transformation == TransformationType.CUSTOM_FUNCTION:
                value = self.transform(value, mapping, copy.deepcopy(source_record))
            else:
                value = self.transform(value, mapping, source_record)
            set_nested_value(mapped, mapping.target_field, value)
        return mapped
