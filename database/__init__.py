"""Database package public API."""

from .connection import AiosqliteDriver, AiosqliteHandle, Driver, Handle
from .engine import UniversalEngine
from .factory import DriverRegistry
from .importer import BulkImporter
from .manager import ConnectionManager
from .migrations import Migration, MigrationRunner
from .models import (
    ColumnDefinition,
    ColumnMapping,
    DatabaseSchema,
    ExecuteResult,
    ForeignKeyDefinition,
    ImportOptions,
    ImportResult,
    ImportRowError,
    IndexDefinition,
    OpenPolicy,
    OrderBy,
    QueryColumn,
    QueryTable,
    RoleConfig,
    TableSchema,
    WhereClause,
)
from .schema_registry import SchemaProvider, SchemaRegistry
from .type_mapping import TypeMapper

__all__ = [
    "AiosqliteDriver",
    "AiosqliteHandle",
    "Driver",
    "Handle",
    "DriverRegistry",
    "UniversalEngine",
    "BulkImporter",
    "ConnectionManager",
    "Migration",
    "MigrationRunner",
    "SchemaProvider",
    "SchemaRegistry",
    "TypeMapper",
    # Models
    "ColumnDefinition",
    "ColumnMapping",
    "DatabaseSchema",
    "ExecuteResult",
    "ForeignKeyDefinition",
    "ImportOptions",
    "ImportResult",
    "ImportRowError",
    "IndexDefinition",
    "OpenPolicy",
    "OrderBy",
    "QueryColumn",
    "QueryTable",
    "RoleConfig",
    "TableSchema",
    "WhereClause",
]
