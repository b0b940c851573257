"""SQL text helpers shared by the engine and the importer."""

from __future__ import annotations

import re
from typing import Any

from core.exceptions import QueryError

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SQL_KEYWORD_DEFAULTS = {"CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME", "NULL"}


def quote_identifier(name: str) -> str:
    """Validate a table/column/index name and return it quoted."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise QueryError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


def default_literal(value: Any) -> str:
    """Render a column DEFAULT; DDL cannot take bound parameters."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    text = str(value)
    if text.upper() in _SQL_KEYWORD_DEFAULTS:
        return text.upper()
    return "'" + text.replace("'", "''") + "'"
