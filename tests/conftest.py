"""Pytest configuration and fixtures."""

from pathlib import Path
from typing import Any, List, Sequence, Set

import pytest
import pytest_asyncio

from config import Config
from database import AiosqliteDriver, ConnectionManager, DriverRegistry, SchemaRegistry
from database.models import ExecuteResult


def build_schema(name: str, version: str = "1", **tables: Any) -> dict:
    """Build a schema dict; defaults to a single ``items`` table."""
    if not tables:
        tables = {
            "items": {
                "cols": [
                    {"name": "id", "type": "integer", "constraints": "PRIMARY AUTO_INCREMENT"},
                    {"name": "label", "type": "string", "constraints": "NOT NULL"},
                ]
            }
        }
    return {"database_name": name, "version": version, "schemas": tables}


CORE_SCHEMA = {
    "database_name": "core",
    "version": "1",
    "schemas": {
        "users": {
            "cols": [
                {"name": "id", "type": "integer", "constraints": "PRIMARY AUTO_INCREMENT"},
                {"name": "email", "type": "string", "constraints": "NOT NULL UNIQUE"},
                {"name": "active", "type": "boolean", "default": True},
                {"name": "profile", "type": "json"},
            ],
            "indexes": [{"name": "idx_users_email", "columns": ["email"], "unique": True}],
        },
        "posts": {
            "cols": [
                {"name": "id", "type": "integer", "constraints": "PRIMARY AUTO_INCREMENT"},
                {"name": "user_id", "type": "integer", "constraints": "NOT NULL"},
                {"name": "title", "type": "string", "constraints": "NOT NULL"},
                {"name": "score", "type": "decimal"},
            ],
            "foreign_keys": [
                {"column": "user_id", "references": {"table": "users", "column": "id"}, "on_delete": "CASCADE"}
            ],
        },
    },
}


class RecordingHandle:
    """Wraps a real handle and records every statement."""

    def __init__(self, inner, driver):
        self._inner = inner
        self._driver = driver

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        self._driver.statements.append(sql)
        for marker in self._driver.fail_on:
            if marker in sql:
                raise RuntimeError(f"injected failure on {marker!r}")
        return await self._inner.execute(sql, params)

    async def close(self) -> None:
        self._driver.closes += 1
        await self._inner.close()


class RecordingDriver:
    """aiosqlite driver that records SQL and can inject failures."""

    name = "recording"

    def __init__(self):
        self._inner = AiosqliteDriver(journal_mode=None)
        self.statements: List[str] = []
        self.fail_on: Set[str] = set()
        self.refuse_paths: Set[str] = set()
        self.connects: List[str] = []
        self.closes = 0

    def is_supported(self) -> bool:
        return True

    async def connect(self, path: str) -> RecordingHandle:
        self.connects.append(path)
        if any(marker in path for marker in self.refuse_paths):
            raise OSError(f"cannot open {path}")
        return RecordingHandle(await self._inner.connect(path), self)

    def ddl(self) -> List[str]:
        return [s for s in self.statements if s.lstrip().upper().startswith(("CREATE", "DROP"))]


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Configuration pointing at a temporary directory."""
    return Config(
        database_dir=str(tmp_path),
        max_connections=10,
        busy_timeout_ms=1000,
        journal_mode="WAL",
        import_batch_size=1000,
        import_progress_interval=100,
        migration_timeout=5,
        log_level="DEBUG",
        log_file="",
        log_colored=False,
    )


@pytest.fixture
def make_schema():
    """Factory for small schema dicts."""
    return build_schema


@pytest.fixture
def core_schema() -> dict:
    return CORE_SCHEMA


@pytest.fixture
def driver() -> RecordingDriver:
    return RecordingDriver()


@pytest_asyncio.fixture
async def manager(config, driver):
    """Connection manager with the core schema registered."""
    mgr = ConnectionManager(config, SchemaRegistry(), DriverRegistry([driver]))
    mgr.register_schema("core", CORE_SCHEMA)
    yield mgr
    await mgr.close_all()


@pytest_asyncio.fixture
async def core_engine(manager):
    return await manager.get_or_open("core")
