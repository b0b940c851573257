"""Declarative schema definitions and query/import value objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from core.constants import DatabaseDefaults, ImportDefaults
from core.exceptions import ConfigurationError


@dataclass(slots=True)
class ColumnDefinition:
    name: str
    type: str = "string"
    constraints: str = ""
    default: Any = None
    description: Optional[str] = None
    primary_key: bool = False
    auto_increment: bool = False
    unique: bool = False
    nullable: bool = True

    def __post_init__(self) -> None:
        tokens = self.constraints.upper().replace(",", " ").split()
        if "PRIMARY" in tokens:
            self.primary_key = True
        if "AUTO_INCREMENT" in tokens or "AUTOINCREMENT" in tokens:
            self.auto_increment = True
        if "NOT" in tokens and "NULL" in tokens:
            self.nullable = False
        if "UNIQUE" in tokens:
            self.unique = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ColumnDefinition":
        if not data.get("name"):
            raise ConfigurationError("Column definition without a name")
        return cls(
            name=data["name"],
            type=data.get("type", "string"),
            constraints=data.get("constraints", "") or "",
            default=data.get("default"),
            description=data.get("description"),
            primary_key=bool(data.get("primary_key", False)),
            auto_increment=bool(data.get("auto_increment", False)),
            unique=bool(data.get("unique", False)),
            nullable=bool(data.get("nullable", True)),
        )


@dataclass(slots=True)
class IndexDefinition:
    name: str
    columns: List[str]
    unique: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IndexDefinition":
        return cls(name=data["name"], columns=list(data["columns"]), unique=bool(data.get("unique", False)))


@dataclass(slots=True)
class ForeignKeyDefinition:
    column: str
    ref_table: str
    ref_column: str
    on_delete: Optional[str] = None
    on_update: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ForeignKeyDefinition":
        references = data.get("references") or {}
        return cls(
            column=data["column"],
            ref_table=references.get("table") or data["ref_table"],
            ref_column=references.get("column") or data["ref_column"],
            on_delete=data.get("on_delete"),
            on_update=data.get("on_update"),
        )


@dataclass(slots=True)
class TableSchema:
    name: str
    cols: List[ColumnDefinition]
    indexes: List[IndexDefinition] = field(default_factory=list)
    foreign_keys: List[ForeignKeyDefinition] = field(default_factory=list)
    description: Optional[str] = None

    def column(self, name: str) -> Optional[ColumnDefinition]:
        lowered = name.lower()
        for col in self.cols:
            if col.name.lower() == lowered:
                return col
        return None

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "TableSchema":
        cols = data.get("cols")
        if not cols:
            raise ConfigurationError(f"Table '{name}' declares no columns")
        return cls(
            name=name,
            cols=[c if isinstance(c, ColumnDefinition) else ColumnDefinition.from_dict(c) for c in cols],
            indexes=[IndexDefinition.from_dict(i) for i in data.get("indexes") or ()],
            foreign_keys=[ForeignKeyDefinition.from_dict(fk) for fk in data.get("foreign_keys") or ()],
            description=data.get("description"),
        )


@dataclass(slots=True)
class DatabaseSchema:
    """A logical database: its tables, version and optional type mapping."""

    database_name: str
    version: str
    schemas: Dict[str, TableSchema]
    type_mapping: Optional[Dict[str, Any]] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DatabaseSchema":
        name = data.get("database_name")
        if not name:
            raise ConfigurationError("Schema definition is missing 'database_name'")
        if data.get("version") in (None, ""):
            raise ConfigurationError(f"Schema '{name}' is missing 'version'")
        tables = data.get("schemas") or {}
        return cls(
            database_name=name,
            version=str(data["version"]),
            schemas={
                table: definition if isinstance(definition, TableSchema) else TableSchema.from_dict(table, definition)
                for table, definition in tables.items()
            },
            type_mapping=data.get("type_mapping"),
            description=data.get("description"),
        )

    @classmethod
    def coerce(cls, value: "DatabaseSchema | Mapping[str, Any]") -> "DatabaseSchema":
        if isinstance(value, DatabaseSchema):
            return value
        return cls.from_dict(value)


@dataclass(slots=True)
class RoleConfig:
    role_name: str
    required_databases: List[str]
    optional_databases: List[str] = field(default_factory=list)
    priority: int = 0

    @property
    def databases(self) -> List[str]:
        return [*self.required_databases, *self.optional_databases]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RoleConfig":
        return cls(
            role_name=data["role_name"],
            required_databases=list(data.get("required_databases") or ()),
            optional_databases=list(data.get("optional_databases") or ()),
            priority=int(data.get("priority", 0)),
        )


@dataclass(slots=True)
class OpenPolicy:
    create_if_not_exists: bool = True
    force_recreate: bool = False


@dataclass(slots=True)
class ExecuteResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    rows_affected: int = 0
    last_insert_id: Optional[int] = None


# Query descriptors

@dataclass(slots=True)
class QueryColumn:
    name: str
    value: Any = None


@dataclass(slots=True)
class WhereClause:
    name: str
    value: Any
    operator: str = "="


@dataclass(slots=True)
class OrderBy:
    name: str
    direction: str = "ASC"


@dataclass(slots=True)
class QueryTable:
    name: str
    cols: List[QueryColumn] = field(default_factory=list)
    wheres: List[WhereClause] = field(default_factory=list)
    orderbys: List[OrderBy] = field(default_factory=list)
    limit: Optional[int] = None
    offset: Optional[int] = None


# Import job

@dataclass(slots=True)
class ColumnMapping:
    source_column: str
    target_column: str
    transform: Optional[Callable[[Any], Any]] = None


@dataclass(slots=True)
class ImportRowError:
    row_index: int
    error: str
    row_data: Dict[str, Any]


@dataclass(slots=True)
class ImportOptions:
    table_name: str
    data: Sequence[Mapping[str, Any]]
    batch_size: int = ImportDefaults.BATCH_SIZE
    validate_data: bool = False
    skip_errors: bool = False
    conflict_columns: Optional[List[str]] = None
    include_auto_increment_pk: bool = False
    progress_interval: int = ImportDefaults.PROGRESS_INTERVAL
    on_progress: Optional[Callable[[int, int], Any]] = None
    on_error: Optional[Callable[[BaseException, int, Mapping[str, Any]], Any]] = None


@dataclass(slots=True)
class ImportResult:
    total_rows: int
    success_rows: int = 0
    error_rows: int = 0
    errors: List[ImportRowError] = field(default_factory=list)
    execution_time_ms: float = 0.0


def is_core(schema_name: str) -> bool:
    return schema_name == DatabaseDefaults.CORE_SCHEMA
