"""Library-wide constants and default values."""

from __future__ import annotations

from enum import Enum


# Database constants
class DatabaseDefaults:
    """Default database configuration."""
    CORE_SCHEMA = "core"
    MAX_CONNECTIONS = 10
    BUSY_TIMEOUT = 5000  # milliseconds
    JOURNAL_MODE = "WAL"
    FILE_SUFFIX = ".sqlite"
    LIVENESS_QUERY = "SELECT 1"
    SCHEMA_INFO_TABLE = "_schema_info"
    MIGRATIONS_TABLE = "_migrations"
    MIGRATION_TIMEOUT = 30  # seconds


# Import constants
class ImportDefaults:
    """Default values for bulk import jobs."""
    BATCH_SIZE = 1000
    PROGRESS_INTERVAL = 100  # rows


# Schema provider cache
class ProviderCacheDefaults:
    """Cache for schemas resolved through an external provider."""
    TTL = 300  # seconds
    SIZE = 256


class AppState(str, Enum):
    """Host application lifecycle states."""
    ACTIVE = "active"
    BACKGROUND = "background"
    INACTIVE = "inactive"


class SortDirection(str, Enum):
    """ORDER BY directions."""
    ASC = "ASC"
    DESC = "DESC"


# Comparison operators accepted in WHERE clauses
WHERE_OPERATORS = frozenset({
    "=", "!=", "<>", "<", "<=", ">", ">=",
    "LIKE", "NOT LIKE", "GLOB",
    "IN", "NOT IN",
    "IS", "IS NOT",
})

LIST_OPERATORS = frozenset({"IN", "NOT IN"})
