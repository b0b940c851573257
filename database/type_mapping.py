"""Logical column types to SQLite storage types, and value coercion."""

from __future__ import annotations

import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

DEFAULT_TYPE_MAP: Dict[str, str] = {
    "string": "TEXT", "varchar": "TEXT", "char": "TEXT", "text": "TEXT",
    "email": "TEXT", "url": "TEXT", "uuid": "TEXT",
    "integer": "INTEGER", "int": "INTEGER", "bigint": "INTEGER",
    "smallint": "INTEGER", "tinyint": "INTEGER",
    "decimal": "REAL", "numeric": "REAL", "float": "REAL", "double": "REAL", "real": "REAL",
    "boolean": "INTEGER", "bool": "INTEGER",
    "timestamp": "TEXT", "datetime": "TEXT", "date": "TEXT", "time": "TEXT",
    "json": "TEXT", "array": "TEXT", "object": "TEXT",
    "blob": "BLOB", "binary": "BLOB",
}

_BOOLEAN_TYPES = {"boolean", "bool"}
_JSON_TYPES = {"json", "array", "object"}
_TIMESTAMP_TYPES = {"timestamp", "datetime", "date", "time"}
_TRUE_STRINGS = {"true", "1", "yes", "on", "y", "t"}
_BOOL_WORDS = {"true", "false", "yes", "no"}


class TypeMapper:
    """Two-level lookup: caller mapping first, built-in defaults second.

    ``custom`` may be the flat ``{logical: physical}`` dict or the nested
    ``{"sqlite": {...}}`` form used in schema files.
    """

    def __init__(self, custom: Optional[Mapping[str, Any]] = None) -> None:
        mapping = custom or {}
        if isinstance(mapping.get("sqlite"), Mapping):
            mapping = mapping["sqlite"]
        self._custom = {str(k).lower(): str(v).upper() for k, v in mapping.items()}

    def physical_type(self, logical: str) -> str:
        key = logical.lower()
        if key in self._custom:
            return self._custom[key]
        return DEFAULT_TYPE_MAP.get(key, "TEXT")

    def to_storage(self, value: Any, logical: Optional[str] = None) -> Any:
        """Convert a Python value into something SQLite binds natively."""
        if value is None:
            return None
        key = (logical or "").lower()
        if key in _BOOLEAN_TYPES or isinstance(value, bool):
            return _as_bool_int(value)
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, (date, time)):
            return value.isoformat()
        if isinstance(value, Decimal):
            return float(value)
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, default=str)
        if key in _JSON_TYPES and not isinstance(value, str):
            return json.dumps(value, default=str)
        return value

    def from_storage(self, value: Any, logical: Optional[str] = None) -> Any:
        """Inverse of :meth:`to_storage` for the types it encodes."""
        if value is None or not logical:
            return value
        key = logical.lower()
        if key in _BOOLEAN_TYPES:
            return bool(value) if not isinstance(value, str) else value.lower() in _TRUE_STRINGS
        if key in _JSON_TYPES and isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value


def _as_bool_int(value: Any) -> int:
    if isinstance(value, str):
        return 1 if value.strip().lower() in _TRUE_STRINGS else 0
    return 1 if value else 0


def coerce_to_column(value: Any, declared_type: str) -> Any:
    """Best-effort conversion of an import value to a physical column type.

    Returns ``None`` for numbers that do not parse; raises ``ValueError`` for
    malformed JSON in a JSON column.
    """
    if value is None:
        return None
    kind = (declared_type or "").lower()

    if "bool" in kind:
        return _as_bool_int(value)

    if "int" in kind:
        if isinstance(value, bool):
            return 1 if value else 0
        if isinstance(value, str) and value.strip().lower() in _BOOL_WORDS:
            return _as_bool_int(value)
        try:
            return int(value)
        except (TypeError, ValueError):
            try:
                return int(float(value))
            except (TypeError, ValueError):
                return None

    if any(token in kind for token in ("real", "floa", "doub", "decimal", "numeric")):
        if isinstance(value, bool):
            return 1.0 if value else 0.0
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    if "json" in kind:
        if isinstance(value, str):
            json.loads(value)
            return value
        return json.dumps(value, default=str)

    if "timestamp" in kind or "datetime" in kind:
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return datetime.fromtimestamp(value).isoformat()
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value).isoformat()
            except ValueError:
                return value
        return str(value)

    if "blob" in kind:
        return value

    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if any(token in kind for token in ("text", "char", "clob")):
        return str(value)
    return value
