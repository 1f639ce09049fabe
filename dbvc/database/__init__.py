"""
Storage layer of the database version control engine.

Supported stores:
- SQLite metadata store (via aiosqlite)
- MongoDB document backup store (via motor)
- In-process document store for tests and local runs

Author: DBVC Engine
Version: 0.1.0
"""

from .adapters import (
    DatabaseAdapter,
    DatabaseConnection,
    DocumentStore,
    InMemoryDocumentStore,
    MongoDocumentStore,
    QueryResult,
    SQLiteAdapter,
    TransactionContext,
)
from .config import DatabaseConnectionConfig, DatabaseEngine, DocumentStoreConfig, JournalMode
from .exceptions import (
    ConfigurationError,
    ConnectionError,
    DatabaseError,
    DatabaseErrorContext,
    DocumentStoreError,
    DuplicateDocumentError,
    IntegrityError,
    QueryError,
    TransactionError,
    wrap_database_error,
)

__all__ = [
    # Configuration
    "DatabaseConnectionConfig",
    "DocumentStoreConfig",
    "DatabaseEngine",
    "JournalMode",

    # Adapters
    "DatabaseAdapter",
    "DatabaseConnection",
    "DocumentStore",
    "QueryResult",
    "TransactionContext",
    "SQLiteAdapter",
    "MongoDocumentStore",
    "InMemoryDocumentStore",

    # Exceptions
    "DatabaseError",
    "DatabaseErrorContext",
    "ConnectionError",
    "QueryError",
    "TransactionError",
    "IntegrityError",
    "ConfigurationError",
    "DocumentStoreError",
    "DuplicateDocumentError",
    "wrap_database_error",
]
