"""Unit tests for drivers and driver selection."""

import pytest

from core.exceptions import DriverNotFoundError
from database import AiosqliteDriver, AiosqliteHandle, Driver, DriverRegistry, Handle


class FakeDriver:
    """Driver stub with a configurable support answer."""

    def __init__(self, name, supported=True, error=None):
        self.name = name
        self.supported = supported
        self.error = error

    def is_supported(self):
        if self.error:
            raise self.error
        return self.supported

    async def connect(self, path):
        raise NotImplementedError


class AsyncProbeDriver(FakeDriver):
    async def is_supported(self):
        return self.supported


@pytest.mark.asyncio
async def test_first_supported_driver_wins():
    """Test selection order and skipping unsupported drivers."""
    first = FakeDriver("first", supported=False)
    second = FakeDriver("second")
    third = FakeDriver("third")
    registry = DriverRegistry([first, second, third])
    assert await registry.select() is second


@pytest.mark.asyncio
async def test_async_and_failing_probes():
    """Test awaitable probes and probes that raise."""
    broken = FakeDriver("broken", error=RuntimeError("no platform"))
    probed = AsyncProbeDriver("async")
    registry = DriverRegistry([broken, probed])
    assert await registry.select() is probed


@pytest.mark.asyncio
async def test_no_supported_driver():
    """Test DriverNotFoundError when nothing can run."""
    registry = DriverRegistry([FakeDriver("off", supported=False)])
    with pytest.raises(DriverNotFoundError):
        await registry.select()

    registry.unregister(registry.drivers[0])
    with pytest.raises(DriverNotFoundError):
        await registry.select()


def test_register_is_idempotent():
    """Test the same driver is only registered once."""
    driver = FakeDriver("one")
    registry = DriverRegistry([driver])
    registry.register(driver)
    assert registry.drivers == [driver]


def test_aiosqlite_driver_satisfies_protocol():
    """Test the default driver matches the Driver protocol."""
    assert isinstance(AiosqliteDriver(), Driver)


@pytest.mark.asyncio
async def test_aiosqlite_handle_roundtrip(tmp_path):
    """Test the aiosqlite handle executes statements and closes cleanly."""
    path = tmp_path / "nested" / "store.sqlite"
    handle = await AiosqliteDriver(busy_timeout_ms=200).connect(str(path))
    assert isinstance(handle, AiosqliteHandle)
    assert isinstance(handle, Handle)
    assert path.exists()

    await handle.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT)")
    inserted = await handle.execute("INSERT INTO t (v) VALUES (?)", ["a"])
    assert inserted.rows_affected == 1
    assert inserted.last_insert_id == 1

    selected = await handle.execute("SELECT id, v FROM t")
    assert selected.rows == [{"id": 1, "v": "a"}]

    pragma = await handle.execute("PRAGMA foreign_keys")
    assert pragma.rows[0]["foreign_keys"] == 1

    await handle.close()
    await handle.close()
    assert handle.closed


@pytest.mark.asyncio
async def test_memory_database():
    """Test an in-memory store skips journal configuration."""
    handle = await AiosqliteDriver().connect(":memory:")
    result = await handle.execute("SELECT 1 AS one")
    assert result.rows == [{"one": 1}]
    await handle.close()
