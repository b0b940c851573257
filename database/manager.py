"""Connection lifecycle manager.

Maps logical database names to open engines, enforces the connection
ceiling, opens lazily, repairs stale handles, reacts to host suspend/resume
and to role changes, and tells subscribers whenever the engine behind a name
is replaced.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import replace
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from config import Config, load_config
from core.constants import AppState, DatabaseDefaults
from core.exceptions import (
    AccessDeniedError,
    ConfigurationError,
    ConnectionLimitError,
    IntegrityCheckError,
    RoleActivationError,
    SchemaNotRegisteredError,
)
from core.logger import get_logger
from database.connection import AiosqliteDriver
from database.engine import UniversalEngine
from database.factory import DriverRegistry
from database.migrations import MigrationRunner
from database.models import ColumnMapping, ImportOptions, ImportResult, OpenPolicy, RoleConfig, is_core
from database.schema_registry import SchemaLike, SchemaRegistry

logger = get_logger(__name__)

T = TypeVar("T")
ReconnectCallback = Callable[[UniversalEngine], Union[None, Awaitable[None]]]

CORE = DatabaseDefaults.CORE_SCHEMA


def _ordered_unique(names: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for name in names:
        seen.setdefault(name, None)
    return list(seen)


class ConnectionManager:
    """Owns every open handle; engines only borrow them.

    Usage::

        manager = ConnectionManager(load_config())
        manager.register_schema("core", core_schema)
        engine = await manager.get_or_open("core")
        ...
        await manager.close_all()
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        registry: Optional[SchemaRegistry] = None,
        drivers: Optional[DriverRegistry] = None,
        max_connections: Optional[int] = None,
    ) -> None:
        self.config = config or load_config()
        self.registry = registry or SchemaRegistry()
        self.drivers = drivers or DriverRegistry(
            [AiosqliteDriver(self.config.busy_timeout_ms, self.config.journal_mode)]
        )

        ceiling = self.config.max_connections if max_connections is None else max_connections
        if ceiling < 1:
            raise ConfigurationError(f"max_connections must be at least 1, got {ceiling}")
        self._max_connections = ceiling

        self._engines: Dict[str, UniversalEngine] = {}
        self._opening: Dict[str, asyncio.Task] = {}
        self._policies: Dict[str, OpenPolicy] = {}
        self._listeners: Dict[str, List[ReconnectCallback]] = {}
        self._current_roles: List[str] = []
        self._primary_role: Optional[str] = None
        self._was_active: List[str] = []
        self._suspended = False

    async def __aenter__(self) -> "ConnectionManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_all()

    # Registration

    def register_schema(self, name: str, schema: SchemaLike) -> None:
        self.registry.register_schema(name, schema)

    def register_schemas(self, schemas: Mapping[str, SchemaLike]) -> None:
        self.registry.register_schemas(schemas)

    def register_role(self, config: Union[RoleConfig, Mapping[str, Any]]) -> None:
        self.registry.register_role(config)

    def register_roles(self, configs: Iterable[Union[RoleConfig, Mapping[str, Any]]]) -> None:
        self.registry.register_roles(configs)

    def open_policy(self, name: str, create_if_not_exists: bool = True, force_recreate: bool = False) -> None:
        """Set how the next open of ``name`` treats the physical store."""
        self._policies[name] = OpenPolicy(create_if_not_exists, force_recreate)

    def available_schemas(self) -> List[str]:
        return self.registry.available_schemas()

    # Capacity

    @property
    def max_connections(self) -> int:
        return self._max_connections

    def set_max_connections(self, value: int) -> None:
        if value < 1:
            raise ConfigurationError(f"max_connections must be at least 1, got {value}")
        in_use = self._open_count()
        if value < in_use:
            raise ConnectionLimitError(
                f"Cannot lower max_connections to {value}: {in_use} connections are open"
            )
        self._max_connections = value
        logger.info("max_connections set to %d", value)

    def _open_count(self) -> int:
        return len(self._engines) + len(self._opening)

    @property
    def connection_count(self) -> int:
        return len(self._engines)

    def list_connections(self) -> List[str]:
        return list(self._engines)

    # Access

    def _derive(self, roles: Sequence[str]) -> List[str]:
        names = [CORE]
        for role in roles:
            names.extend(self.registry.get_role(role).databases)
        return _ordered_unique(names)

    def _required(self, roles: Sequence[str]) -> List[str]:
        names = [CORE]
        for role in roles:
            names.extend(self.registry.get_role(role).required_databases)
        return _ordered_unique(names)

    def active_databases(self) -> List[str]:
        return self._derive(self._current_roles)

    def has_access(self, name: str) -> bool:
        if not self.registry.has_schema(name):
            return False
        return not self._current_roles or name in self.active_databases()

    def _check_access(self, name: str) -> None:
        if not self.registry.has_schema(name):
            raise AccessDeniedError(name, "no schema is registered under this name")
        if self._current_roles and name not in self.active_databases():
            raise AccessDeniedError(
                name, f"not granted by active roles {', '.join(self._current_roles)}"
            )

    @property
    def current_user_roles(self) -> List[str]:
        return list(self._current_roles)

    @property
    def current_role(self) -> Optional[str]:
        return self._primary_role

    # Opening

    def get(self, name: str) -> UniversalEngine:
        """Return the already open engine for ``name`` without opening it."""
        self._check_access(name)
        engine = self._engines.get(name)
        if engine is None:
            raise AccessDeniedError(name, "database is not connected")
        return engine

    async def get_or_open(self, name: str) -> UniversalEngine:
        self._check_access(name)
        return await self._acquire(name)

    async def get_lazy_loading(self, name: str) -> UniversalEngine:
        return await self.get_or_open(name)

    async def ensure_connection(self, name: str) -> UniversalEngine:
        """Like :meth:`get_or_open`; kept as the name callers use after resume."""
        return await self.get_or_open(name)

    async def initialize_core_connection(self) -> UniversalEngine:
        return await self.get_or_open(CORE)

    async def _acquire(self, name: str) -> UniversalEngine:
        engine, _ = await self._acquire_checked(name)
        return engine

    async def _acquire_checked(self, name: str) -> Tuple[UniversalEngine, bool]:
        """Return a live engine and whether a stale one was replaced (and announced)."""
        engine = self._engines.get(name)
        if engine is None:
            return await self._open(name), False
        if await self._is_alive(engine):
            return engine, False
        pending = self._opening.get(name)
        if pending is not None:
            return await asyncio.shield(pending), True
        if self._engines.get(name) is not engine:
            # another caller is already replacing it
            return await self._acquire(name), True
        logger.warning("Connection to '%s' is stale, reopening", name)
        await self._discard(name)
        engine = await self._open(name)
        await self._notify_reconnect(name, engine)
        return engine, True

    async def _open(self, name: str) -> UniversalEngine:
        pending = self._opening.get(name)
        if pending is not None:
            return await asyncio.shield(pending)

        if self._open_count() >= self._max_connections:
            raise ConnectionLimitError(
                f"Cannot open '{name}': connection limit of {self._max_connections} reached "
                f"(open: {', '.join(self._engines) or 'none'})"
            )

        task = asyncio.ensure_future(self._connect(name))
        self._opening[name] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._opening.get(name) is task:
                del self._opening[name]
            elif not task.done():
                task.add_done_callback(lambda t, n=name: self._forget_opening(n, t))

    def _forget_opening(self, name: str, task: asyncio.Task) -> None:
        if self._opening.get(name) is task:
            del self._opening[name]

    async def _connect(self, name: str) -> UniversalEngine:
        schema = self.registry.get_schema(name)
        if schema is None:
            raise SchemaNotRegisteredError(name)
        policy = self._policies.get(name, OpenPolicy())
        driver = await self.drivers.select()
        path = self.config.database_path(schema.database_name)

        logger.info("Opening database '%s' at %s", name, path)
        handle = await driver.connect(path)
        engine = UniversalEngine(handle, name, schema)
        try:
            try:
                await engine.ping()
            except Exception as exc:
                raise IntegrityCheckError(f"Integrity probe failed for database '{name}': {exc}") from exc
            await engine.initialize_from_schema(
                schema,
                create_if_not_exists=policy.create_if_not_exists,
                force_recreate=policy.force_recreate,
            )
        except BaseException as exc:
            logger.error("Opening database '%s' failed: %s", name, exc)
            await self._close_quietly(engine)
            raise

        if policy.force_recreate:
            self._policies[name] = replace(policy, force_recreate=False)
        self._engines[name] = engine
        return engine

    async def _is_alive(self, engine: UniversalEngine) -> bool:
        if not engine.is_open:
            return False
        try:
            await engine.ping()
        except Exception as exc:
            logger.debug("Liveness probe on '%s' failed: %s", engine.name, exc)
            return False
        return True

    async def _discard(self, name: str) -> None:
        engine = self._engines.pop(name, None)
        if engine is not None:
            await self._close_quietly(engine)

    @staticmethod
    async def _close_quietly(engine: UniversalEngine) -> None:
        try:
            await engine.close()
        except Exception as exc:
            logger.warning("Closing database '%s' failed: %s", engine.name, exc)

    # Closing

    async def close_connection(self, name: str) -> None:
        pending = self._opening.get(name)
        if pending is not None:
            await asyncio.gather(pending, return_exceptions=True)
        self._was_active = [n for n in self._was_active if n != name]
        engine = self._engines.pop(name, None)
        if engine is None:
            logger.debug("close_connection('%s'): not open", name)
            return
        await engine.close()
        logger.info("Closed database '%s'", name)

    async def close_all(self) -> None:
        if self._opening:
            await asyncio.gather(*self._opening.values(), return_exceptions=True)
        for name in list(self._engines):
            await self._discard(name)
        self._current_roles = []
        self._primary_role = None
        self._was_active = []
        self._suspended = False
        logger.info("Closed all database connections")

    async def logout(self) -> None:
        """Drop the active roles and close everything except core."""
        for name in list(self._engines):
            if not is_core(name):
                await self._discard(name)
        self._current_roles = []
        self._primary_role = None
        logger.info("User logged out; kept '%s' open", CORE)

    # Roles

    async def set_current_user_roles(self, roles: Sequence[str], primary_role: Optional[str] = None) -> None:
        roles = _ordered_unique(roles)
        for role in roles:
            self.registry.get_role(role)
        if primary_role is not None and primary_role not in roles:
            raise ConfigurationError(f"Primary role '{primary_role}' is not among roles {roles}")

        wanted = self._derive(roles)
        required = set(self._required(roles))

        opened: List[str] = []
        failures: Dict[str, BaseException] = {}
        for name in wanted:
            if name in self._engines:
                continue
            try:
                if not self.registry.has_schema(name):
                    raise SchemaNotRegisteredError(name)
                await self._acquire(name)
                opened.append(name)
            except Exception as exc:
                if name in required:
                    failures[name] = exc
                else:
                    logger.warning("Optional database '%s' could not be opened: %s", name, exc)

        if failures:
            for name in opened:
                await self._discard(name)
            logger.error("Role activation %s failed for %s", roles, sorted(failures))
            raise RoleActivationError(failures)

        self._current_roles = roles
        self._primary_role = primary_role or (roles[0] if roles else None)

        # includes databases opened while no role was active
        for name in list(self._engines):
            if name not in wanted:
                await self._discard(name)

        logger.info("Active roles: %s (databases: %s)", roles, wanted)

    # Suspend / resume

    async def suspend(self) -> None:
        """Close every handle but remember which names were open."""
        if self._opening:
            await asyncio.gather(*self._opening.values(), return_exceptions=True)
        self._was_active = _ordered_unique([*self._was_active, *self._engines])
        for name in list(self._engines):
            await self._discard(name)
        self._suspended = True
        logger.info("Suspended; %d connections will be restored on resume", len(self._was_active))

    async def resume(self) -> List[str]:
        """Reopen core, role databases and everything open before suspend.

        Every restored name gets exactly one reconnect notification. Returns
        the names that are open afterwards.
        """
        targets = [CORE] if self.registry.has_schema(CORE) else []
        if self._current_roles:
            targets.extend(self._required(self._current_roles))
        targets = _ordered_unique([*targets, *self._was_active])

        restored = []
        for name in targets:
            try:
                engine, announced = await self._acquire_checked(name)
            except Exception as exc:
                logger.warning("Could not reopen '%s' on resume: %s", name, exc)
                continue
            restored.append(name)
            if not announced:
                await self._notify_reconnect(name, engine)

        self._was_active = []
        self._suspended = False
        logger.info("Resumed; reopened %s", restored)
        return restored

    async def handle_app_state_change(self, state: Union[AppState, str]) -> None:
        state = AppState(state)
        if state is AppState.ACTIVE:
            if self._suspended:
                await self.resume()
        elif not self._suspended:
            await self.suspend()

    @property
    def suspended(self) -> bool:
        return self._suspended

    async def reconnect(self, name: str) -> UniversalEngine:
        """Replace the engine behind ``name`` and notify subscribers."""
        self._check_access(name)
        await self._discard(name)
        engine = await self._open(name)
        await self._notify_reconnect(name, engine)
        return engine

    # Reconnect notifications

    def on_reconnect(self, name: str, callback: ReconnectCallback) -> None:
        listeners = self._listeners.setdefault(name, [])
        if callback not in listeners:
            listeners.append(callback)

    def off_reconnect(self, name: str, callback: ReconnectCallback) -> None:
        listeners = self._listeners.get(name)
        if not listeners:
            return
        if callback in listeners:
            listeners.remove(callback)
        if not listeners:
            del self._listeners[name]

    async def _notify_reconnect(self, name: str, engine: UniversalEngine) -> None:
        for callback in list(self._listeners.get(name, ())):
            try:
                result = callback(engine)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("Reconnect subscriber for '%s' failed: %s", name, exc)

    # Cross-schema work

    async def execute_cross_schema_transaction(
        self,
        names: Sequence[str],
        callback: Callable[[Dict[str, UniversalEngine]], Awaitable[T]],
    ) -> T:
        engines = {name: await self.get_or_open(name) for name in _ordered_unique(names)}
        begun: List[UniversalEngine] = []
        try:
            for engine in engines.values():
                await engine.begin_transaction()
                begun.append(engine)
            result = await callback(engines)
            for engine in begun:
                await engine.commit_transaction()
        except BaseException as exc:
            logger.error("Cross-schema transaction on %s failed: %s", list(engines), exc)
            for engine in begun:
                await engine.rollback_after(exc)
            raise
        return result

    async def migration_runner(
        self, name: str, table: str = DatabaseDefaults.MIGRATIONS_TABLE
    ) -> MigrationRunner:
        """Runner for ``name`` bounded by the configured per-step timeout."""
        engine = await self.get_or_open(name)
        return MigrationRunner(engine, table=table, step_timeout=self.config.migration_timeout)

    def _import_options(self, table_name: str, data: Sequence[Mapping[str, Any]], options: Dict[str, Any]) -> ImportOptions:
        options.setdefault("batch_size", self.config.import_batch_size)
        options.setdefault("progress_interval", self.config.import_progress_interval)
        return ImportOptions(table_name=table_name, data=data, **options)

    async def import_data_to_table(
        self, name: str, table_name: str, data: Sequence[Mapping[str, Any]], **options: Any
    ) -> ImportResult:
        engine = await self.get_or_open(name)
        return await engine.import_data(self._import_options(table_name, data, options))

    async def import_data_with_mapping(
        self,
        name: str,
        table_name: str,
        data: Sequence[Mapping[str, Any]],
        mappings: Sequence[ColumnMapping],
        **options: Any,
    ) -> ImportResult:
        engine = await self.get_or_open(name)
        options.setdefault("batch_size", self.config.import_batch_size)
        options.setdefault("progress_interval", self.config.import_progress_interval)
        return await engine.import_data_with_mapping(table_name, data, mappings, **options)

    # Status

    async def health_check(self) -> Dict[str, Dict[str, Any]]:
        report: Dict[str, Dict[str, Any]] = {}
        for name, engine in list(self._engines.items()):
            try:
                await engine.ping()
                report[name] = {"healthy": True}
            except Exception as exc:
                logger.warning("Health check failed for '%s': %s", name, exc)
                report[name] = {"healthy": False, "error": str(exc)}
        return report

    def status(self) -> Dict[str, Any]:
        return {
            "active_connections": self.list_connections(),
            "connection_count": self.connection_count,
            "max_connections": self._max_connections,
            "user_roles": self.current_user_roles,
            "primary_role": self._primary_role,
            "active_databases": self.active_databases(),
            "suspended": self._suspended,
        }
