"""
Database Exceptions for the database version control engine.

This module provides the hierarchy of storage-level exceptions with
detailed error information and context. Driver exceptions raised by
aiosqlite and motor are wrapped into this hierarchy before they leave
an adapter.

Author: DBVC Engine
Version: 0.1.0
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..exceptions import DBVCError


@dataclass
class DatabaseErrorContext:
    """Context information for database errors."""

    database_name: Optional[str] = None
    engine: Optional[str] = None
    operation: Optional[str] = None
    query: Optional[str] = None
    table_name: Optional[str] = None
    connection_id: Optional[str] = None
    transaction_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    additional_info: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            'database_name': self.database_name,
            'engine': self.engine,
            'operation': self.operation,
            'query': self.query,
            'table_name': self.table_name,
            'connection_id': self.connection_id,
            'transaction_id': self.transaction_id,
            'timestamp': self.timestamp.isoformat(),
            'additional_info': self.additional_info
        }


class DatabaseError(DBVCError):
    """Base exception for all database-related errors."""

    def __init__(
        self,
        message: str,
        context: Optional[DatabaseErrorContext] = None,
        original_error: Optional[Exception] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.context = context or DatabaseErrorContext()
        self.original_error = original_error
        self.error_code = error_code
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        """String representation of the error."""
        base_msg = super().__str__()

        if self.context.database_name:
            base_msg += f" (Database: {self.context.database_name})"
            if self.context.operation:
                base_msg += f" (Operation: {self.context.operation})"

        if self.error_code:
            base_msg += f" (Code: {self.error_code})"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            'error_type': self.__class__.__name__,
            'message': str(self),
            'error_code': self.error_code,
            'timestamp': self.timestamp.isoformat(),
            'context': self.context.to_dict() if self.context else None,
            'original_error': str(self.original_error) if self.original_error else None
        }


class ConnectionError(DatabaseError):
    """Exception raised when a store connection fails."""

    def __init__(
        self,
        message: str,
        database: Optional[str] = None,
        context: Optional[DatabaseErrorContext] = None,
        **kwargs
    ):
        if context is None:
            context = DatabaseErrorContext(
                database_name=database,
                operation="connection"
            )
        super().__init__(message, context=context, **kwargs)


class QueryError(DatabaseError):
    """Exception raised when query execution fails."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        context: Optional[DatabaseErrorContext] = None,
        **kwargs
    ):
        if context is None:
            context = DatabaseErrorContext(
                operation="query_execution",
                query=self._sanitize_query(query) if query else None,
                additional_info={
                    'parameter_count': len(parameters) if parameters else 0
                }
            )
        super().__init__(message, context=context, **kwargs)

    @staticmethod
    def _sanitize_query(query: str) -> str:
        """Sanitize query for safe logging."""
        query = re.sub(r"password\s*=\s*['\"][^'\"]*['\"]", "password='***'", query, flags=re.IGNORECASE)

        # Truncate very long queries
        if len(query) > 1000:
            query = query[:1000] + "... [truncated]"

        return query


class TransactionError(DatabaseError):
    """Exception raised when transaction operations fail."""

    def __init__(
        self,
        message: str,
        transaction_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[DatabaseErrorContext] = None,
        **kwargs
    ):
        if context is None:
            context = DatabaseErrorContext(
                operation=f"transaction_{operation}" if operation else "transaction",
                transaction_id=transaction_id
            )
        super().__init__(message, context=context, **kwargs)


class IntegrityError(DatabaseError):
    """Exception raised when a uniqueness or foreign key constraint is violated."""

    def __init__(
        self,
        message: str,
        constraint_name: Optional[str] = None,
        table_name: Optional[str] = None,
        context: Optional[DatabaseErrorContext] = None,
        **kwargs
    ):
        if context is None:
            context = DatabaseErrorContext(
                operation="integrity_check",
                table_name=table_name,
                additional_info={
                    'constraint_name': constraint_name
                }
            )
        super().__init__(message, context=context, **kwargs)


class ConfigurationError(DatabaseError):
    """Exception raised when store configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        **kwargs
    ):
        context = DatabaseErrorContext(
            operation="configuration",
            additional_info={
                'config_key': config_key,
                'config_value': str(config_value) if config_value is not None else None
            }
        )
        super().__init__(message, context=context, **kwargs)


class DocumentStoreError(DatabaseError):
    """Exception raised when the document backup store fails."""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        document_id: Optional[str] = None,
        context: Optional[DatabaseErrorContext] = None,
        **kwargs
    ):
        if context is None:
            context = DatabaseErrorContext(
                operation="document_write",
                table_name=collection,
                additional_info={
                    'document_id': document_id
                }
            )
        super().__init__(message, context=context, **kwargs)
        self.document_id = document_id


class DuplicateDocumentError(DocumentStoreError):
    """Exception raised when a document with the same id already exists."""
    pass


# Operations that open a connection; any failure in them is a connection failure
CONNECTION_OPERATIONS = frozenset({"initialize", "create_connection"})

# Driver exception types that mean the connection itself is unusable
CONNECTION_ERROR_TYPES = frozenset({
    "ConnectionFailure",
    "AutoReconnect",
    "NetworkTimeout",
    "ServerSelectionTimeoutError",
})

# Messages sqlite3 / aiosqlite raise when a statement runs on a closed connection
CLOSED_CONNECTION_MESSAGES = ("cannot operate on a closed database", "no active connection")

INTEGRITY_ERROR_TYPES = frozenset({"IntegrityError", "DuplicateKeyError"})


def _is_connection_failure(original_error: Exception, operation: str) -> bool:
    if operation in CONNECTION_OPERATIONS:
        return True
    if type(original_error).__name__ in CONNECTION_ERROR_TYPES:
        return True
    lowered = str(original_error).lower()
    return any(message in lowered for message in CLOSED_CONNECTION_MESSAGES)


def wrap_database_error(
    original_error: Exception,
    operation: str,
    database_name: Optional[str] = None,
    engine: Optional[str] = None,
    query: Optional[str] = None
) -> DatabaseError:
    """
    Wrap a driver exception as a DatabaseError with context.

    The subclass is chosen from the driver exception type and the failing
    operation. Statement errors never become ``ConnectionError``, whatever
    their message says.
    """
    if isinstance(original_error, DatabaseError):
        return original_error

    context = DatabaseErrorContext(
        database_name=database_name,
        engine=engine,
        operation=operation,
        query=query
    )

    error_message = str(original_error)
    error_type = type(original_error).__name__

    if error_type in INTEGRITY_ERROR_TYPES:
        return IntegrityError(
            f"Integrity constraint violation: {error_message}",
            context=context,
            original_error=original_error
        )
    elif _is_connection_failure(original_error, operation):
        return ConnectionError(
            f"Connection failed: {error_message}",
            context=context,
            original_error=original_error
        )
    elif operation.endswith("_transaction"):
        return TransactionError(
            f"Transaction failed: {error_message}",
            context=context,
            original_error=original_error
        )
    elif query is not None:
        return QueryError(
            f"Query failed ({error_type}): {error_message}",
            context=context,
            original_error=original_error
        )
    else:
        return DatabaseError(
            f"Database operation failed ({error_type}): {error_message}",
            context=context,
            original_error=original_error
        )


# Exception hierarchy for easy catching
DATABASE_EXCEPTIONS = (
    DatabaseError,
    ConnectionError,
    QueryError,
    TransactionError,
    IntegrityError,
    ConfigurationError,
    DocumentStoreError,
)

__all__: List[str] = [
    'DatabaseErrorContext',
    'DatabaseError',
    'ConnectionError',
    'QueryError',
    'TransactionError',
    'IntegrityError',
    'ConfigurationError',
    'DocumentStoreError',
    'DuplicateDocumentError',
    'wrap_database_error',
    'DATABASE_EXCEPTIONS',
]
