"""Versioned schema migrations applied through an engine."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from core.constants import DatabaseDefaults
from core.exceptions import MigrationError
from core.logger import get_logger
from database.engine import UniversalEngine
from database.sql import quote_identifier

logger = get_logger(__name__)

MigrationStep = Callable[[UniversalEngine], Awaitable[None]]


def version_key(version: str) -> Tuple:
    """Sort key treating dotted numeric parts numerically (1.10 > 1.9)."""
    parts = []
    for part in version.split("."):
        parts.append((0, int(part), "") if part.isdigit() else (1, 0, part))
    return tuple(parts)


@dataclass(slots=True)
class Migration:
    version: str
    description: str
    up: MigrationStep
    down: Optional[MigrationStep] = None


class MigrationRunner:
    """Applies registered migrations in version order.

    Each step runs in its own transaction and is bounded by ``step_timeout``
    seconds; the applied set lives in a bookkeeping table inside the store.
    """

    def __init__(
        self,
        engine: UniversalEngine,
        table: str = DatabaseDefaults.MIGRATIONS_TABLE,
        step_timeout: float = DatabaseDefaults.MIGRATION_TIMEOUT,
    ) -> None:
        self.engine = engine
        self.table = quote_identifier(table)
        self.step_timeout = step_timeout
        self._migrations: Dict[str, Migration] = {}

    def add_migration(self, migration: Migration) -> None:
        if not migration.version:
            raise MigrationError("Migration without a version")
        if migration.version in self._migrations:
            raise MigrationError(f"Duplicate migration version {migration.version}")
        self._migrations[migration.version] = migration

    def add_migrations(self, migrations: Iterable[Migration]) -> None:
        for migration in migrations:
            self.add_migration(migration)

    @property
    def migrations(self) -> List[Migration]:
        return sorted(self._migrations.values(), key=lambda m: version_key(m.version))

    async def _ensure_table(self) -> None:
        await self.engine.execute(
            f"CREATE TABLE IF NOT EXISTS {self.table} ("
            "version TEXT PRIMARY KEY, "
            "description TEXT, "
            "applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP, "
            "execution_time_ms INTEGER)"
        )

    async def applied(self) -> List[str]:
        await self._ensure_table()
        rows = await self.engine.get_rsts(f"SELECT version FROM {self.table}")
        return sorted((row["version"] for row in rows), key=version_key)

    async def pending(self) -> List[Migration]:
        done = set(await self.applied())
        return [m for m in self.migrations if m.version not in done]

    async def _run_step(self, migration: Migration, step: MigrationStep, direction: str) -> int:
        started = time.perf_counter()
        try:
            async with self.engine.transaction():
                await asyncio.wait_for(step(self.engine), timeout=self.step_timeout)
                elapsed = int((time.perf_counter() - started) * 1000)
                if direction == "up":
                    await self.engine.execute(
                        f"INSERT INTO {self.table} (version, description, execution_time_ms) VALUES (?, ?, ?)",
                        (migration.version, migration.description, elapsed),
                    )
                else:
                    await self.engine.execute(
                        f"DELETE FROM {self.table} WHERE version = ?", (migration.version,)
                    )
        except asyncio.TimeoutError as exc:
            raise MigrationError(
                f"Migration {migration.version} ({direction}) on '{self.engine.name}' "
                f"timed out after {self.step_timeout}s"
            ) from exc
        except MigrationError:
            raise
        except Exception as exc:
            raise MigrationError(
                f"Migration {migration.version} ({direction}) on '{self.engine.name}' failed: {exc}"
            ) from exc
        return elapsed

    async def migrate(self, target: Optional[str] = None) -> List[str]:
        """Apply pending migrations up to and including ``target``."""
        applied = []
        for migration in await self.pending():
            if target is not None and version_key(migration.version) > version_key(target):
                break
            elapsed = await self._run_step(migration, migration.up, "up")
            logger.info(
                "Applied migration %s on '%s' (%s) in %d ms",
                migration.version, self.engine.name, migration.description, elapsed,
            )
            applied.append(migration.version)
        return applied

    async def rollback(self, target: str) -> List[str]:
        """Undo applied migrations newer than ``target``, newest first."""
        reverted = []
        for version in reversed(await self.applied()):
            if version_key(version) <= version_key(target):
                break
            migration = self._migrations.get(version)
            if migration is None or migration.down is None:
                raise MigrationError(f"Migration {version} on '{self.engine.name}' cannot be rolled back")
            await self._run_step(migration, migration.down, "down")
            logger.info("Rolled back migration %s on '%s'", version, self.engine.name)
            reverted.append(version)
        return reverted
