"""
Base Storage Adapter Interfaces for the database version control engine.

This module defines the abstract contracts for the two storage collaborators
of the migration engine:

- ``DatabaseAdapter``: the relational metadata store. Parameterized queries,
  explicit transactions, multi-statement script execution, the per-database
  lock procedures and schema introspection.
- ``DocumentStore``: the document backup store. One logical collection of
  documents discriminated by ``entityType``, written create-only.

Author: DBVC Engine
Version: 0.1.0
"""

import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence

from ..config import DatabaseConnectionConfig, DatabaseEngine


@dataclass
class QueryResult:
    """Result of a database query execution."""
    data: Any = None
    rows_affected: int = 0
    last_insert_id: Optional[int] = None
    rows_returned: int = 0
    execution_time: float = 0.0
    query_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class DatabaseConnection:
    """Represents an active database connection with metadata and lifecycle management."""

    def __init__(
        self,
        connection_id: str,
        config: DatabaseConnectionConfig,
        native_connection: Any,
        adapter: 'DatabaseAdapter',
        created_at: Optional[datetime] = None
    ):
        self.connection_id = connection_id
        self.config = config
        self.native_connection = native_connection
        self.adapter = adapter
        self.created_at = created_at or datetime.now(timezone.utc)
        self.last_used = self.created_at
        self.is_active = True
        self.transaction_count = 0
        self.query_count = 0

    @property
    def in_transaction(self) -> bool:
        """Check if an explicit transaction is open on this connection."""
        return self.transaction_count > 0

    def mark_used(self):
        """Mark connection as recently used."""
        self.last_used = datetime.now(timezone.utc)

    async def close(self):
        """Close the database connection."""
        if self.is_active:
            await self.adapter._close_connection(self.native_connection)
            self.is_active = False


class TransactionContext:
    """Context manager for database transactions."""

    def __init__(self, connection: DatabaseConnection, read_only: bool = False):
        self.connection = connection
        self.read_only = read_only
        self.transaction_id = str(uuid.uuid4())
        self.started_at: Optional[datetime] = None
        self.committed = False
        self.rolled_back = False

    async def __aenter__(self) -> 'TransactionContext':
        """Start the transaction."""
        self.started_at = datetime.now(timezone.utc)
        await self.connection.adapter._begin_transaction(
            self.connection,
            read_only=self.read_only
        )
        self.connection.transaction_count += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """End the transaction."""
        try:
            if exc_type is None and not self.rolled_back:
                await self.commit()
            else:
                await self.rollback()
        finally:
            self.connection.transaction_count -= 1

    async def commit(self):
        """Commit the transaction."""
        if not self.committed and not self.rolled_back:
            await self.connection.adapter._commit_transaction(self.connection)
            self.committed = True

    async def rollback(self):
        """Rollback the transaction."""
        if not self.committed and not self.rolled_back:
            await self.connection.adapter._rollback_transaction(self.connection)
            self.rolled_back = True


class DatabaseAdapter(ABC):
    """Abstract base class for the relational metadata store."""

    def __init__(self, config: DatabaseConnectionConfig):
        self.config = config
        self.engine = config.engine
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._is_initialized = False

    @property
    def is_initialized(self) -> bool:
        """Check if adapter is initialized."""
        return self._is_initialized

    # Abstract methods that must be implemented by concrete adapters

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the database adapter."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Shutdown the database adapter."""
        pass

    @abstractmethod
    async def create_connection(self) -> DatabaseConnection:
        """Create a new database connection."""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Perform a health check on the database."""
        pass

    @abstractmethod
    async def execute_query(
        self,
        connection: DatabaseConnection,
        query: str,
        parameters: Optional[Dict[str, Any]] = None
    ) -> QueryResult:
        """Execute a single parameterized statement."""
        pass

    @abstractmethod
    async def fetch_one(
        self,
        connection: DatabaseConnection,
        query: str,
        parameters: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Fetch a single row from the database."""
        pass

    @abstractmethod
    async def fetch_all(
        self,
        connection: DatabaseConnection,
        query: str,
        parameters: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Fetch all rows from the database."""
        pass

    @abstractmethod
    async def execute_script(self, connection: DatabaseConnection, script: str) -> int:
        """
        Execute a multi-statement script on an open transaction.

        Returns:
            Number of statements executed
        """
        pass

    @abstractmethod
    async def acquire_lock(
        self,
        connection: DatabaseConnection,
        database_id: str,
        locked_by: str,
        timeout_minutes: int,
        reason: Optional[str] = None
    ) -> bool:
        """Insert a lock row for ``database_id`` if none exists. Never retries."""
        pass

    @abstractmethod
    async def release_lock(
        self,
        connection: DatabaseConnection,
        database_id: str,
        locked_by: str
    ) -> None:
        """Delete the lock row held by ``locked_by`` for ``database_id``."""
        pass

    @abstractmethod
    async def introspect_schema(
        self,
        connection: DatabaseConnection,
        exclude_tables: Sequence[str] = ()
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Describe tables, columns, views, indexes, procedures, triggers and foreign keys."""
        pass

    # Transaction management (abstract methods)

    @abstractmethod
    async def _begin_transaction(self, connection: DatabaseConnection, read_only: bool = False) -> None:
        """Begin a transaction."""
        pass

    @abstractmethod
    async def _commit_transaction(self, connection: DatabaseConnection) -> None:
        """Commit a transaction."""
        pass

    @abstractmethod
    async def _rollback_transaction(self, connection: DatabaseConnection) -> None:
        """Rollback a transaction."""
        pass

    @abstractmethod
    async def _close_connection(self, native_connection: Any) -> None:
        """Close a native database connection."""
        pass

    # Concrete methods with default implementations

    async def return_connection(self, connection: DatabaseConnection) -> None:
        """Give back a connection obtained from ``connection()``."""
        if connection.transaction_count > 0:
            self.logger.warning(
                f"Returning connection {connection.connection_id} with active transactions"
            )
        await connection.close()

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[DatabaseConnection, None]:
        """Open a connection for the duration of one operation."""
        conn = await self.create_connection()
        try:
            yield conn
        finally:
            await self.return_connection(conn)

    def transaction(self, connection: DatabaseConnection, read_only: bool = False) -> TransactionContext:
        """Create a transaction context on an open connection."""
        return TransactionContext(connection, read_only=read_only)

    def _create_connection_id(self) -> str:
        """Create a unique connection ID."""
        return f"{self.engine.value}_{uuid.uuid4().hex[:8]}"

    def _log_query(self, query: str, parameters: Optional[Dict[str, Any]] = None):
        """Log query execution."""
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Executing query: {query[:100]}...")
            if parameters:
                self.logger.debug(f"Parameters: {parameters}")


class DocumentStore(ABC):
    """Abstract base class for the document backup store."""

    def __init__(self, collection_name: str):
        self.collection_name = collection_name
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if the store is connected."""
        return self._connected

    @property
    @abstractmethod
    def engine(self) -> DatabaseEngine:
        """Engine backing this store."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the document store."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the document store."""
        pass

    @abstractmethod
    async def create_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a document. Documents are never updated or replaced.

        Raises:
            DuplicateDocumentError: If a document with the same ``id`` exists
        """
        pass

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        """Read a document by id."""
        pass

    @abstractmethod
    async def find_documents(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find documents whose fields equal every value in ``filters``."""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Perform a health check on the document store."""
        pass
