"""Library configuration module.

Reads settings from environment variables (optionally seeded from a ``.env``
file) with defaults suitable for a single-process application embedding a
handful of SQLite databases.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from core.constants import DatabaseDefaults, ImportDefaults


def _get_bool(name: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    """Get integer from environment variable with fallback."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_str(name: str, default: str = "") -> str:
    """Get string from environment variable."""
    return os.getenv(name, default)


@dataclass(frozen=True)
class Config:
    database_dir: str
    max_connections: int
    busy_timeout_ms: int
    journal_mode: str
    import_batch_size: int
    import_progress_interval: int
    migration_timeout: int
    log_level: str
    log_file: str
    log_colored: bool

    def database_path(self, database_name: str) -> str:
        """Physical file for a logical database name."""
        if database_name == ":memory:":
            return database_name
        return str(Path(self.database_dir) / f"{database_name}{DatabaseDefaults.FILE_SUFFIX}")


def load_config(env_file: str | None = None) -> Config:
    """Load library configuration from environment variables.

    Args:
        env_file: Optional path of a ``.env`` file; the default lookup
            searches the current directory and its parents.

    Returns:
        Config: Configuration with validated values
    """
    load_dotenv(env_file)

    return Config(
        database_dir=_get_str("SQLITE_DATABASE_DIR", "data"),
        max_connections=_get_int("SQLITE_MAX_CONNECTIONS", DatabaseDefaults.MAX_CONNECTIONS),
        busy_timeout_ms=_get_int("SQLITE_BUSY_TIMEOUT", DatabaseDefaults.BUSY_TIMEOUT),
        journal_mode=_get_str("SQLITE_JOURNAL_MODE", DatabaseDefaults.JOURNAL_MODE),
        import_batch_size=_get_int("SQLITE_IMPORT_BATCH_SIZE", ImportDefaults.BATCH_SIZE),
        import_progress_interval=_get_int(
            "SQLITE_IMPORT_PROGRESS_INTERVAL", ImportDefaults.PROGRESS_INTERVAL
        ),
        migration_timeout=_get_int("SQLITE_MIGRATION_TIMEOUT", DatabaseDefaults.MIGRATION_TIMEOUT),
        log_level=_get_str("LOG_LEVEL", "INFO"),
        log_file=_get_str("LOG_FILE", ""),
        log_colored=_get_bool("LOG_COLORED", True),
    )
