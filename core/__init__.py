"""Core library components: logging, constants and exceptions."""

from core.logger import configure_logging, get_logger, setup_logger
from core.constants import (
    AppState,
    DatabaseDefaults,
    ImportDefaults,
    ProviderCacheDefaults,
    SortDirection,
)
from core.exceptions import (
    AccessDeniedError,
    ApplicationError,
    ConfigurationError,
    ConnectionClosedError,
    ConnectionLimitError,
    DatabaseError,
    DataImportError,
    DriverNotFoundError,
    IntegrityCheckError,
    MigrationError,
    QueryError,
    RoleActivationError,
    RoleNotRegisteredError,
    SchemaNotRegisteredError,
    SchemaVersionError,
    TableNotFoundError,
    TransactionError,
)

__all__ = [
    # Logging
    'setup_logger',
    'configure_logging',
    'get_logger',
    # Constants
    'AppState',
    'DatabaseDefaults',
    'ImportDefaults',
    'ProviderCacheDefaults',
    'SortDirection',
    # Exceptions
    'ApplicationError',
    'ConfigurationError',
    'SchemaNotRegisteredError',
    'RoleNotRegisteredError',
    'DatabaseError',
    'DriverNotFoundError',
    'ConnectionLimitError',
    'AccessDeniedError',
    'ConnectionClosedError',
    'IntegrityCheckError',
    'SchemaVersionError',
    'QueryError',
    'TableNotFoundError',
    'TransactionError',
    'RoleActivationError',
    'DataImportError',
    'MigrationError',
]
