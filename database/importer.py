"""Bulk import of record sets into a single table."""

from __future__ import annotations

import inspect
import time
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence

from core.exceptions import DataImportError, QueryError, TableNotFoundError
from core.logger import get_logger
from database.models import ColumnMapping, ImportOptions, ImportResult, ImportRowError
from database.sql import quote_identifier
from database.type_mapping import coerce_to_column

if TYPE_CHECKING:
    from database.engine import UniversalEngine

logger = get_logger(__name__)

_CONFLICT_MARKERS = ("UNIQUE constraint failed", "PRIMARY KEY constraint failed", "SQLITE_CONSTRAINT_UNIQUE")


def is_conflict_error(error: BaseException) -> bool:
    message = str(error)
    return any(marker in message for marker in _CONFLICT_MARKERS)


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class BulkImporter:
    """Runs one import job against an engine.

    The whole job shares one transaction. With ``skip_errors`` a failed row
    is recorded and the job continues (SQLite only undoes the failing
    statement); without it the first failure rolls back every row.
    """

    def __init__(self, engine: "UniversalEngine") -> None:
        self.engine = engine

    async def run(self, options: ImportOptions) -> ImportResult:
        started = time.perf_counter()
        table = options.table_name
        result = ImportResult(total_rows=len(options.data))

        if not options.data:
            result.execution_time_ms = (time.perf_counter() - started) * 1000
            return result

        quote_identifier(table)
        table_info = await self.engine.get_table_info(table)
        if not table_info:
            raise TableNotFoundError(table)

        columns = {col["name"].lower(): col for col in table_info}
        skip_column = None if options.include_auto_increment_pk else self._auto_increment_pk(table_info)
        batch_size = max(int(options.batch_size or 1), 1)
        interval = max(int(options.progress_interval or 1), 1)
        processed = 0

        logger.info(
            "Importing %d rows into %s.%s (batch_size=%d, skip_errors=%s)",
            result.total_rows, self.engine.name, table, batch_size, options.skip_errors,
        )

        await self.engine.begin_transaction()
        try:
            for start in range(0, len(options.data), batch_size):
                batch = options.data[start:start + batch_size]
                for offset, row in enumerate(batch):
                    row_index = start + offset
                    try:
                        if options.validate_data:
                            values = self._validate_row(row, columns, table, skip_column)
                        else:
                            values = self._transform_row(row, columns, skip_column)
                        if options.conflict_columns:
                            await self._insert_or_update(table, values, options.conflict_columns)
                        else:
                            await self._insert_row(table, values)
                        result.success_rows += 1
                    except Exception as exc:
                        result.error_rows += 1
                        result.errors.append(ImportRowError(row_index=row_index, error=str(exc), row_data=dict(row)))
                        if options.on_error is not None:
                            try:
                                await _maybe_await(options.on_error(exc, row_index, row))
                            except Exception as callback_exc:
                                logger.warning(
                                    "Import error callback for row %d failed: %s", row_index, callback_exc
                                )
                        if not options.skip_errors:
                            raise DataImportError(
                                f"Import into '{table}' aborted at row {row_index}: {exc}",
                                table_name=table,
                                row_index=row_index,
                                result=result,
                            ) from exc

                    processed += 1
                    if options.on_progress is not None and processed % interval == 0:
                        await _maybe_await(options.on_progress(processed, result.total_rows))

            await self.engine.commit_transaction()
        except BaseException as exc:
            await self.engine.rollback_after(exc)
            result.execution_time_ms = (time.perf_counter() - started) * 1000
            logger.error("Import into %s.%s rolled back: %s", self.engine.name, table, exc)
            raise

        if options.on_progress is not None and processed % interval != 0:
            await _maybe_await(options.on_progress(processed, result.total_rows))

        result.execution_time_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Imported %d/%d rows into %s.%s (%d errors) in %.1f ms",
            result.success_rows, result.total_rows, self.engine.name, table,
            result.error_rows, result.execution_time_ms,
        )
        return result

    @staticmethod
    def _auto_increment_pk(table_info: Sequence[Mapping[str, Any]]) -> Optional[str]:
        """Name of the rowid-alias primary key, if the table has one."""
        pk_cols = [col for col in table_info if col["pk"]]
        if len(pk_cols) == 1 and (pk_cols[0]["type"] or "").upper() == "INTEGER":
            return pk_cols[0]["name"]
        return None

    def _validate_row(
        self,
        row: Mapping[str, Any],
        columns: Dict[str, Mapping[str, Any]],
        table: str,
        skip_column: Optional[str],
    ) -> Dict[str, Any]:
        lowered = {str(key).lower(): value for key, value in row.items()}
        values: Dict[str, Any] = {}
        for key, column in columns.items():
            if column["name"] == skip_column:
                continue
            required = bool(column["notnull"]) and column["dflt_value"] is None
            value = row[column["name"]] if column["name"] in row else lowered.get(key)
            if value is not None:
                value = coerce_to_column(value, column["type"])
            if value is None:
                if required:
                    raise ValueError(
                        f"Required column '{column['name']}' is missing or null in table '{table}'"
                    )
                continue
            values[column["name"]] = value
        return values

    def _transform_row(
        self,
        row: Mapping[str, Any],
        columns: Dict[str, Mapping[str, Any]],
        skip_column: Optional[str],
    ) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for key, value in row.items():
            column = columns.get(str(key).lower())
            if column is None:
                continue
            if column["name"] == skip_column:
                continue
            if value is not None:
                values[column["name"]] = coerce_to_column(value, column["type"])
        return values

    async def _insert_row(self, table: str, values: Dict[str, Any]) -> None:
        if not values:
            raise QueryError(f"Row has no columns that map onto table '{table}'")
        names = ", ".join(quote_identifier(name) for name in values)
        placeholders = ", ".join("?" for _ in values)
        await self.engine.execute(
            f"INSERT INTO {quote_identifier(table)} ({names}) VALUES ({placeholders})",
            list(values.values()),
        )

    async def _insert_or_update(self, table: str, values: Dict[str, Any], conflict_columns: Sequence[str]) -> None:
        try:
            await self._insert_row(table, values)
        except Exception as exc:
            if not is_conflict_error(exc):
                raise
            await self._update_by_columns(table, values, conflict_columns)

    async def _update_by_columns(self, table: str, values: Dict[str, Any], conflict_columns: Sequence[str]) -> None:
        missing = [col for col in conflict_columns if col not in values]
        if missing:
            raise QueryError(
                f"Conflict columns {missing} have no value for update in table '{table}'"
            )
        update_cols = [col for col in values if col not in conflict_columns]
        if not update_cols:
            return
        set_clause = ", ".join(f"{quote_identifier(col)} = ?" for col in update_cols)
        where_clause = " AND ".join(f"{quote_identifier(col)} = ?" for col in conflict_columns)
        params: List[Any] = [values[col] for col in update_cols] + [values[col] for col in conflict_columns]
        await self.engine.execute(
            f"UPDATE {quote_identifier(table)} SET {set_clause} WHERE {where_clause}", params
        )

    @staticmethod
    def apply_column_mappings(
        data: Sequence[Mapping[str, Any]], mappings: Sequence[ColumnMapping]
    ) -> List[Dict[str, Any]]:
        """Rename (and optionally transform) source columns before import."""
        mapped = []
        for row in data:
            item: Dict[str, Any] = {}
            for mapping in mappings:
                if mapping.source_column in row:
                    value = row[mapping.source_column]
                    if mapping.transform is not None:
                        value = mapping.transform(value)
                    item[mapping.target_column] = value
            mapped.append(item)
        return mapped
