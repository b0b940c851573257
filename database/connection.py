"""Driver capability interface and the aiosqlite-backed driver."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Awaitable, Optional, Protocol, Sequence, Union, runtime_checkable

import aiosqlite

from core.constants import DatabaseDefaults
from core.logger import get_logger
from database.models import ExecuteResult

logger = get_logger(__name__)


@runtime_checkable
class Handle(Protocol):
    """An open connection to one physical store."""

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult: ...

    async def close(self) -> None: ...


@runtime_checkable
class Driver(Protocol):
    """Anything that can open a named store and hand back a Handle."""

    def is_supported(self) -> Union[bool, Awaitable[bool]]: ...

    async def connect(self, path: str) -> Handle: ...


class AiosqliteHandle:
    """Handle wrapping one aiosqlite connection.

    The connection runs with ``isolation_level=None`` so BEGIN/COMMIT issued
    by the engine are the only transaction boundaries.
    """

    def __init__(self, conn: aiosqlite.Connection, path: str) -> None:
        self._conn = conn
        self.path = path
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        async with self._conn.execute(sql, tuple(params)) as cursor:
            rows = await cursor.fetchall() if cursor.description else []
            return ExecuteResult(
                rows=[dict(row) for row in rows],
                rows_affected=max(cursor.rowcount, 0),
                last_insert_id=cursor.lastrowid or None,
            )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._conn.close()


class AiosqliteDriver:
    """Default driver: SQLite through aiosqlite's background thread."""

    name = "aiosqlite"

    def __init__(
        self,
        busy_timeout_ms: int = DatabaseDefaults.BUSY_TIMEOUT,
        journal_mode: Optional[str] = DatabaseDefaults.JOURNAL_MODE,
    ) -> None:
        self.busy_timeout_ms = busy_timeout_ms
        self.journal_mode = journal_mode

    def is_supported(self) -> bool:
        return True

    async def connect(self, path: str) -> AiosqliteHandle:
        if path != ":memory:":
            parent = Path(path).parent
            if not parent.exists():
                parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(path, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        try:
            await self._apply_pragma(conn, path)
        except Exception:
            await conn.close()
            raise
        logger.debug("Opened SQLite file %s", path)
        return AiosqliteHandle(conn, path)

    async def _apply_pragma(self, conn: aiosqlite.Connection, path: str) -> None:
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
        if self.journal_mode and path != ":memory:":
            await conn.execute(f"PRAGMA journal_mode={self.journal_mode}")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute("PRAGMA temp_store=MEMORY")
