"""Registry of logical database schemas and role definitions."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union

from cachetools import TTLCache

from core.constants import ProviderCacheDefaults
from core.exceptions import ConfigurationError, RoleNotRegisteredError, SchemaNotRegisteredError
from core.logger import get_logger
from database.models import DatabaseSchema, RoleConfig

logger = get_logger(__name__)

SchemaLike = Union[DatabaseSchema, Mapping[str, Any]]


class SchemaProvider(Protocol):
    """Host-supplied schema source consulted after the internal store."""

    def get_schema(self, name: str) -> Optional[SchemaLike]: ...


class SchemaRegistry:
    """In-memory schema and role store.

    No I/O happens here. Lookups hit the registered schemas first and then
    the optional provider, whose answers are cached for a short while so a
    hot path does not call back into the host on every connection check.
    """

    def __init__(
        self,
        provider: Optional[SchemaProvider] = None,
        provider_ttl: int = ProviderCacheDefaults.TTL,
        provider_cache_size: int = ProviderCacheDefaults.SIZE,
    ) -> None:
        self._schemas: Dict[str, DatabaseSchema] = {}
        self._roles: Dict[str, RoleConfig] = {}
        self._provider = provider
        self._provider_cache: TTLCache = TTLCache(maxsize=provider_cache_size, ttl=provider_ttl)

    # Schemas

    def register_schema(self, name: str, schema: SchemaLike) -> None:
        if not name:
            raise ConfigurationError("Schema name must not be empty")
        self._schemas[name] = DatabaseSchema.coerce(schema)
        self._provider_cache.pop(name, None)
        logger.debug("Registered schema %s", name)

    def register_schemas(self, schemas: Mapping[str, SchemaLike]) -> None:
        for name, schema in schemas.items():
            self.register_schema(name, schema)

    def unregister_schema(self, name: str) -> None:
        self._schemas.pop(name, None)
        self._provider_cache.pop(name, None)

    def set_schema_provider(self, provider: Optional[SchemaProvider]) -> None:
        self._provider = provider
        self._provider_cache.clear()

    def get_schema(self, name: str) -> Optional[DatabaseSchema]:
        schema = self._schemas.get(name)
        if schema is not None:
            return schema
        if self._provider is None:
            return None
        if name in self._provider_cache:
            return self._provider_cache[name]

        provided = self._provider.get_schema(name)
        if provided is None:
            return None
        schema = DatabaseSchema.coerce(provided)
        self._provider_cache[name] = schema
        return schema

    def require_schema(self, name: str) -> DatabaseSchema:
        schema = self.get_schema(name)
        if schema is None:
            raise SchemaNotRegisteredError(name)
        return schema

    def has_schema(self, name: str) -> bool:
        return self.get_schema(name) is not None

    def available_schemas(self) -> List[str]:
        return list(self._schemas)

    # Roles

    def register_role(self, config: Union[RoleConfig, Mapping[str, Any]]) -> None:
        role = config if isinstance(config, RoleConfig) else RoleConfig.from_dict(config)
        if not role.role_name:
            raise ConfigurationError("Role name must not be empty")
        self._roles[role.role_name] = role
        logger.debug("Registered role %s", role.role_name)

    def register_roles(self, configs: Iterable[Union[RoleConfig, Mapping[str, Any]]]) -> None:
        for config in configs:
            self.register_role(config)

    def get_role(self, role_name: str) -> RoleConfig:
        try:
            return self._roles[role_name]
        except KeyError:
            raise RoleNotRegisteredError(role_name) from None

    def has_role(self, role_name: str) -> bool:
        return role_name in self._roles

    def get_role_databases(self, role_name: str) -> List[str]:
        return self.get_role(role_name).databases

    def roles(self) -> List[str]:
        return list(self._roles)
