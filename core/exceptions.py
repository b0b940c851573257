"""Exception hierarchy for the database access layer."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ApplicationError(Exception):
    """Base exception for all library errors."""
    pass


class ConfigurationError(ApplicationError):
    """Raised when configuration or a schema definition is invalid."""
    pass


class SchemaNotRegisteredError(ConfigurationError):
    """Raised when a logical database name has no registered schema."""

    def __init__(self, schema_name: str) -> None:
        super().__init__(f"Schema '{schema_name}' is not registered")
        self.schema_name = schema_name


class RoleNotRegisteredError(ConfigurationError):
    """Raised when a role is looked up before it was registered."""

    def __init__(self, role_name: str) -> None:
        super().__init__(f"Role '{role_name}' is not registered")
        self.role_name = role_name


class DatabaseError(ApplicationError):
    """Base exception for database-related errors."""
    pass


class DriverNotFoundError(DatabaseError):
    """Raised when no registered driver can run in the current host."""
    pass


class ConnectionLimitError(DatabaseError):
    """Raised when opening a connection would exceed the configured ceiling."""
    pass


class AccessDeniedError(DatabaseError):
    """Raised when a logical database is unknown or not granted to the caller."""

    def __init__(self, schema_name: str, reason: str) -> None:
        super().__init__(f"Access denied to database '{schema_name}': {reason}")
        self.schema_name = schema_name


class ConnectionClosedError(DatabaseError):
    """Raised when an engine is used after its handle was closed."""
    pass


class IntegrityCheckError(DatabaseError):
    """Raised when a freshly opened handle fails its integrity probe."""
    pass


class SchemaVersionError(IntegrityCheckError):
    """Raised when the stored schema version does not match the declared one."""
    pass


class QueryError(DatabaseError):
    """Raised when a query descriptor cannot be turned into a safe statement."""
    pass


class TableNotFoundError(DatabaseError):
    """Raised when an operation targets a table that does not exist."""

    def __init__(self, table_name: str) -> None:
        super().__init__(f"Table '{table_name}' does not exist")
        self.table_name = table_name


class TransactionError(DatabaseError):
    """Raised on invalid transaction state transitions."""
    pass


class RoleActivationError(DatabaseError):
    """Raised when databases required by a new role set cannot be opened."""

    def __init__(self, failures: Dict[str, BaseException]) -> None:
        names = ", ".join(sorted(failures))
        super().__init__(f"Failed to open required databases: {names}")
        self.failures = failures


class DataImportError(DatabaseError):
    """Raised when an import job is aborted and rolled back."""

    def __init__(
        self,
        message: str,
        table_name: str,
        row_index: Optional[int] = None,
        result: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.table_name = table_name
        self.row_index = row_index
        self.result = result


class MigrationError(DatabaseError):
    """Raised when a migration step fails or times out."""
    pass
