"""Driver-agnostic data access bound to a single handle."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from core.constants import LIST_OPERATORS, WHERE_OPERATORS, DatabaseDefaults, SortDirection
from core.exceptions import (
    ConnectionClosedError,
    QueryError,
    SchemaVersionError,
    TableNotFoundError,
    TransactionError,
)
from core.logger import get_logger
from database.connection import Handle
from database.importer import BulkImporter
from database.models import (
    ColumnDefinition,
    ColumnMapping,
    DatabaseSchema,
    ExecuteResult,
    ImportOptions,
    ImportResult,
    QueryColumn,
    QueryTable,
    TableSchema,
    WhereClause,
)
from database.sql import default_literal, quote_identifier
from database.type_mapping import TypeMapper

logger = get_logger(__name__)

SCHEMA_INFO = DatabaseDefaults.SCHEMA_INFO_TABLE


class UniversalEngine:
    """CRUD, transactions and schema bookkeeping over one borrowed handle.

    The engine never opens or reopens its handle; the connection manager owns
    that lifecycle and hands out engines. Transaction state is private to the
    instance, so two engines over the same file do not see each other's
    ``BEGIN``.
    """

    def __init__(self, handle: Handle, name: str, schema: Optional[DatabaseSchema] = None) -> None:
        self._handle: Optional[Handle] = handle
        self.name = name
        self.schema = schema
        self.type_mapper = TypeMapper(schema.type_mapping if schema else None)
        self._in_transaction = False

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<UniversalEngine {self.name} ({state})>"

    # Connection

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    async def close(self) -> None:
        handle, self._handle = self._handle, None
        self._in_transaction = False
        if handle is not None:
            await handle.close()

    async def ping(self) -> None:
        await self.execute(DatabaseDefaults.LIVENESS_QUERY)

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        if self._handle is None:
            raise ConnectionClosedError(f"Database '{self.name}' is not connected")
        logger.debug("[%s] %s %s", self.name, sql, list(params))
        return await self._handle.execute(sql, params)

    async def get_rst(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        result = await self.execute(sql, params)
        return result.rows[0] if result.rows else None

    async def get_rsts(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        result = await self.execute(sql, params)
        return result.rows

    # Transactions

    async def begin_transaction(self) -> None:
        if self._in_transaction:
            raise TransactionError(f"Transaction already in progress on '{self.name}'")
        await self.execute("BEGIN TRANSACTION")
        self._in_transaction = True

    async def commit_transaction(self) -> None:
        if not self._in_transaction:
            raise TransactionError(f"No transaction in progress on '{self.name}'")
        await self.execute("COMMIT")
        self._in_transaction = False

    async def rollback_transaction(self) -> None:
        if not self._in_transaction:
            raise TransactionError(f"No transaction in progress on '{self.name}'")
        try:
            await self.execute("ROLLBACK")
        finally:
            self._in_transaction = False

    async def rollback_after(self, error: BaseException) -> None:
        """Roll back after ``error``; a failing rollback is only logged."""
        if not self._in_transaction:
            return
        try:
            await self.rollback_transaction()
        except Exception as rollback_error:
            logger.error(
                "Rollback on '%s' failed after %r: %s", self.name, error, rollback_error
            )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["UniversalEngine"]:
        await self.begin_transaction()
        try:
            yield self
        except BaseException as exc:
            await self.rollback_after(exc)
            raise
        else:
            await self.commit_transaction()

    # Schema

    async def table_exists(self, table_name: str) -> bool:
        row = await self.get_rst(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (table_name,)
        )
        return row is not None

    async def get_schema_version(self) -> Optional[str]:
        if not await self.table_exists(SCHEMA_INFO):
            return None
        row = await self.get_rst(
            f"SELECT version FROM {SCHEMA_INFO} ORDER BY applied_at DESC, rowid DESC LIMIT 1"
        )
        return row["version"] if row else None

    async def set_schema_version(self, version: str) -> None:
        await self.execute(
            f"CREATE TABLE IF NOT EXISTS {SCHEMA_INFO} ("
            "version TEXT NOT NULL, "
            "applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
        )
        await self.execute(f"INSERT INTO {SCHEMA_INFO} (version) VALUES (?)", (version,))

    async def initialize_from_schema(
        self,
        schema: DatabaseSchema,
        create_if_not_exists: bool = True,
        force_recreate: bool = False,
    ) -> bool:
        """Bring the physical store in line with ``schema``.

        Returns True when DDL was issued, False when an existing store with
        the same version was trusted as-is.
        """
        self.schema = schema
        self.type_mapper = TypeMapper(schema.type_mapping)

        existing = await self.get_schema_version()
        if existing is not None and not force_recreate:
            if existing != schema.version:
                raise SchemaVersionError(
                    f"Database '{self.name}' is at schema version {existing}, "
                    f"expected {schema.version}; open with force_recreate to rebuild it"
                )
            logger.debug("Database '%s' already at version %s", self.name, existing)
            return False

        if existing is None and not create_if_not_exists and not force_recreate:
            raise SchemaVersionError(
                f"Database '{self.name}' has no schema and create_if_not_exists is disabled"
            )

        if force_recreate:
            await self._drop_user_tables()

        async with self.transaction():
            for table in schema.schemas.values():
                await self.execute(self._create_table_sql(table))
            for table in schema.schemas.values():
                for statement in self._create_index_sql(table):
                    await self.execute(statement)
            await self.set_schema_version(schema.version)

        logger.info(
            "Initialized database '%s' at version %s (%d tables)",
            self.name, schema.version, len(schema.schemas),
        )
        return True

    async def _drop_user_tables(self) -> None:
        rows = await self.get_rsts(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' AND name != ?",
            (SCHEMA_INFO,),
        )
        await self.execute("PRAGMA foreign_keys = OFF")
        try:
            async with self.transaction():
                for row in rows:
                    await self.execute(f"DROP TABLE IF EXISTS {quote_identifier(row['name'])}")
        finally:
            await self.execute("PRAGMA foreign_keys = ON")
        logger.warning("Dropped %d tables of '%s' for recreation", len(rows), self.name)

    def _column_sql(self, col: ColumnDefinition, inline_pk: bool) -> str:
        physical = self.type_mapper.physical_type(col.type)
        parts = [quote_identifier(col.name), physical]
        if col.primary_key and inline_pk:
            parts.append("PRIMARY KEY")
            if col.auto_increment and physical == "INTEGER":
                parts.append("AUTOINCREMENT")
        if not col.nullable:
            parts.append("NOT NULL")
        if col.unique and not col.primary_key:
            parts.append("UNIQUE")
        if col.default is not None:
            parts.append(f"DEFAULT {default_literal(col.default)}")
        return " ".join(parts)

    def _create_table_sql(self, table: TableSchema) -> str:
        pk_cols = [col.name for col in table.cols if col.primary_key]
        inline_pk = len(pk_cols) == 1
        definitions = [self._column_sql(col, inline_pk) for col in table.cols]
        if len(pk_cols) > 1:
            definitions.append(
                "PRIMARY KEY (" + ", ".join(quote_identifier(c) for c in pk_cols) + ")"
            )
        for fk in table.foreign_keys:
            clause = (
                f"FOREIGN KEY ({quote_identifier(fk.column)}) "
                f"REFERENCES {quote_identifier(fk.ref_table)}({quote_identifier(fk.ref_column)})"
            )
            if fk.on_delete:
                clause += f" ON DELETE {fk.on_delete.upper()}"
            if fk.on_update:
                clause += f" ON UPDATE {fk.on_update.upper()}"
            definitions.append(clause)
        return f"CREATE TABLE IF NOT EXISTS {quote_identifier(table.name)} ({', '.join(definitions)})"

    def _create_index_sql(self, table: TableSchema) -> List[str]:
        statements = []
        for index in table.indexes:
            columns = ", ".join(quote_identifier(c) for c in index.columns)
            unique = "UNIQUE " if index.unique else ""
            statements.append(
                f"CREATE {unique}INDEX IF NOT EXISTS {quote_identifier(index.name)} "
                f"ON {quote_identifier(table.name)} ({columns})"
            )
        return statements

    # CRUD

    def _logical_type(self, table: str, column: str) -> Optional[str]:
        if self.schema is None:
            return None
        definition = self.schema.schemas.get(table)
        if definition is None:
            return None
        col = definition.column(column)
        return col.type if col else None

    def _bind(self, table: str, column: str, value: Any) -> Any:
        return self.type_mapper.to_storage(value, self._logical_type(table, column))

    def _decode(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if self.schema is None or table not in self.schema.schemas:
            return rows
        definition = self.schema.schemas[table]
        decoded = []
        for row in rows:
            item = {}
            for key, value in row.items():
                col = definition.column(key)
                item[key] = self.type_mapper.from_storage(value, col.type) if col else value
            decoded.append(item)
        return decoded

    def _where(self, table: str, wheres: Iterable[WhereClause]) -> Tuple[str, List[Any]]:
        conditions: List[str] = []
        params: List[Any] = []
        for where in wheres:
            operator = (where.operator or "=").upper().strip()
            if operator not in WHERE_OPERATORS:
                raise QueryError(f"Unsupported operator {where.operator!r} on '{table}.{where.name}'")
            column = quote_identifier(where.name)
            if operator in LIST_OPERATORS:
                values = list(where.value) if isinstance(where.value, (list, tuple, set)) else [where.value]
                if not values:
                    raise QueryError(f"Empty value list for {operator} on '{table}.{where.name}'")
                placeholders = ", ".join("?" for _ in values)
                conditions.append(f"{column} {operator} ({placeholders})")
                params.extend(self._bind(table, where.name, v) for v in values)
            else:
                conditions.append(f"{column} {operator} ?")
                params.append(self._bind(table, where.name, where.value))
        if not conditions:
            return "", []
        return " WHERE " + " AND ".join(conditions), params

    async def insert(self, query: QueryTable) -> ExecuteResult:
        """Insert one row.

        Columns whose value is ``None`` are left out of the statement, so the
        column default (or NULL) applies. An explicit NULL cannot be bound here;
        use :meth:`execute` for that.
        """
        cols =[col for col in query.cols if col.value is not None]
        if not cols:
            raise QueryError(f"No valid columns to insert into '{query.name}'")
        names = ", ".join(quote_identifier(col.name) for col in cols)
        placeholders = ", ".join("?" for _ in cols)
        params = [self._bind(query.name, col.name, col.value) for col in cols]
        sql = f"INSERT INTO {quote_identifier(query.name)} ({names}) VALUES ({placeholders})"
        return await self.execute(sql, params)

    async def update(self, query: QueryTable) -> ExecuteResult:
        if not query.wheres:
            raise QueryError(f"WHERE clause is required for UPDATE on '{query.name}'")
        where_names = {where.name for where in query.wheres}
        cols = [col for col in query.cols if col.name not in where_names]
        if not cols:
            raise QueryError(f"No columns to update in '{query.name}'")

        set_clause = ", ".join(f"{quote_identifier(col.name)} = ?" for col in cols)
        params = [self._bind(query.name, col.name, col.value) for col in cols]
        where_sql, where_params = self._where(query.name, query.wheres)
        sql = f"UPDATE {quote_identifier(query.name)} SET {set_clause}{where_sql}"
        return await self.execute(sql, params + where_params)

    async def delete(self, query: QueryTable) -> ExecuteResult:
        if not query.wheres:
            raise QueryError(f"WHERE clause is required for DELETE on '{query.name}'")
        where_sql, params = self._where(query.name, query.wheres)
        return await self.execute(f"DELETE FROM {quote_identifier(query.name)}{where_sql}", params)

    def _select_sql(self, query: QueryTable, limit: Optional[int]) -> Tuple[str, List[Any]]:
        columns = ", ".join(quote_identifier(col.name) for col in query.cols) if query.cols else "*"
        where_sql, params = self._where(query.name, query.wheres)
        sql = f"SELECT {columns} FROM {quote_identifier(query.name)}{where_sql}"

        if query.orderbys:
            terms = []
            for order in query.orderbys:
                direction = (order.direction or "ASC").upper()
                if direction not in SortDirection.__members__:
                    raise QueryError(f"Invalid sort direction {order.direction!r} on '{query.name}'")
                terms.append(f"{quote_identifier(order.name)} {direction}")
            sql += " ORDER BY " + ", ".join(terms)

        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        elif query.offset is not None:
            sql += " LIMIT -1"
        if query.offset is not None:
            sql += " OFFSET ?"
            params.append(int(query.offset))
        return sql, params

    async def select(self, query: QueryTable) -> Optional[Dict[str, Any]]:
        sql, params = self._select_sql(query, limit=1)
        rows = self._decode(query.name, await self.get_rsts(sql, params))
        return rows[0] if rows else None

    async def select_all(self, query: QueryTable) -> List[Dict[str, Any]]:
        sql, params = self._select_sql(query, limit=query.limit)
        return self._decode(query.name, await self.get_rsts(sql, params))

    @staticmethod
    def convert_json_to_query_table(
        table_name: str, data: Mapping[str, Any], id_fields: Sequence[str] = ("id",)
    ) -> QueryTable:
        query = QueryTable(name=table_name)
        for key, value in data.items():
            query.cols.append(QueryColumn(name=key, value=value))
            if key in id_fields and value is not None:
                query.wheres.append(WhereClause(name=key, value=value))
        return query

    # Introspection and maintenance

    async def get_table_info(self, table_name: str) -> List[Dict[str, Any]]:
        return await self.get_rsts(f"PRAGMA table_info({quote_identifier(table_name)})")

    async def get_database_info(self) -> Dict[str, Any]:
        tables = await self.get_rsts(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        )
        return {
            "name": self.name,
            "tables": [row["name"] for row in tables],
            "is_connected": self.is_open,
            "version": await self.get_schema_version(),
        }

    async def drop_table(self, table_name: str) -> None:
        await self.execute(f"DROP TABLE IF EXISTS {quote_identifier(table_name)}")

    async def truncate_table(self, table_name: str, reset_sequence: bool = True) -> int:
        """Delete every row; optionally reset the AUTOINCREMENT counter."""
        if not await self.table_exists(table_name):
            raise TableNotFoundError(table_name)
        result = await self.execute(f"DELETE FROM {quote_identifier(table_name)}")
        if reset_sequence and await self.table_exists("sqlite_sequence"):
            await self.execute("DELETE FROM sqlite_sequence WHERE name = ?", (table_name,))
        return result.rows_affected

    # Import

    async def import_data(self, options: ImportOptions) -> ImportResult:
        return await BulkImporter(self).run(options)

    async def import_data_with_mapping(
        self,
        table_name: str,
        data: Sequence[Mapping[str, Any]],
        mappings: Sequence[ColumnMapping],
        **options: Any,
    ) -> ImportResult:
        mapped = BulkImporter.apply_column_mappings(data, mappings)
        return await self.import_data(ImportOptions(table_name=table_name, data=mapped, **options))
