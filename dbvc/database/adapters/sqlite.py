"""
SQLite Database Adapter for the database version control engine.

This module provides the aiosqlite implementation of the relational
metadata store contract.

Features:
- Autocommit connections with explicit BEGIN IMMEDIATE / COMMIT / ROLLBACK
- Named ``:param`` placeholders converted to positional parameters
- Multi-statement script execution inside an open transaction
- Table-backed per-database migration lock (insert-if-absent / delete)
- Schema introspection through sqlite_master and PRAGMA functions

Author: DBVC Engine
Version: 0.1.0
"""

import asyncio
import logging
import re
import sqlite3
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence, Tuple

import aiosqlite

from ...utils import format_timestamp, utc_now
from ..config import DatabaseConnectionConfig, DatabaseEngine
from ..exceptions import ConfigurationError, QueryError, wrap_database_error
from .base import DatabaseAdapter, DatabaseConnection, QueryResult


_PARAM_PATTERN = re.compile(r"(?<!:):([A-Za-z_]\w*)")
_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_WITHOUT_ROWID = re.compile(r"\)\s*WITHOUT\s+ROWID\s*;?\s*$", re.IGNORECASE)

_ACQUIRE_LOCK_SQL = """
INSERT OR IGNORE INTO migration_locks (database_id, locked_by, lock_reason, locked_at, expires_at)
VALUES (:database_id, :locked_by, :lock_reason, :locked_at, :expires_at)
"""

_RELEASE_LOCK_SQL = """
DELETE FROM migration_locks
WHERE database_id = :database_id AND locked_by = :locked_by
"""

_SCHEMA_OBJECTS_SQL = """
SELECT type, name, tbl_name, sql FROM sqlite_master
WHERE name NOT LIKE 'sqlite_%'
ORDER BY type, name
"""


def _has_sql(fragment: str) -> bool:
    """Check whether a script fragment contains anything besides comments."""
    stripped = _BLOCK_COMMENT.sub("", _LINE_COMMENT.sub("", fragment))
    return bool(stripped.strip().strip(";").strip())


def split_sql_script(script: str) -> List[str]:
    """
    Split a script into complete SQLite statements.

    A statement ends at a semicolon that sqlite3 considers complete, so
    semicolons inside string literals, comments and trigger bodies do not
    split. Comment-only fragments are dropped; a trailing statement without
    a semicolon is kept.
    """
    statements = []
    start = 0

    for index, char in enumerate(script):
        if char != ';':
            continue
        candidate = script[start:index + 1]
        if sqlite3.complete_statement(candidate):
            if _has_sql(candidate):
                statements.append(candidate.strip())
            start = index + 1

    tail = script[start:]
    if _has_sql(tail):
        statements.append(tail.strip())

    return statements


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SQLiteAdapter(DatabaseAdapter):
    """SQLite adapter for the relational metadata store."""

    def __init__(self, config: DatabaseConnectionConfig):
        if config.engine != DatabaseEngine.SQLITE:
            raise ConfigurationError(
                f"SQLiteAdapter cannot serve engine '{config.engine.value}'",
                config_key="engine",
                config_value=config.engine.value
            )
        super().__init__(config)
        self._database_path = self._get_database_path()
        # In-memory databases live as long as their only connection
        self._shared_connection: Optional[DatabaseConnection] = None
        # Serializes operations on the shared connection; created inside the running loop
        self._memory_lock: Optional[asyncio.Lock] = None

    def _get_database_path(self) -> str:
        """Get the SQLite database file path."""
        if self.config.is_memory:
            return ":memory:"

        db_path = Path(self.config.database)
        if not db_path.is_absolute():
            db_path = Path.cwd() / db_path

        return str(db_path)

    @property
    def database_path(self) -> str:
        return self._database_path

    async def initialize(self) -> None:
        """Initialize the SQLite adapter."""
        if self._is_initialized:
            return

        try:
            if not self.config.is_memory:
                Path(self._database_path).parent.mkdir(parents=True, exist_ok=True)

            async with self.connection() as conn:
                sqlite_version = await self._get_sqlite_version(conn)

            self._is_initialized = True
            self.logger.info(
                f"SQLite adapter initialized: {self.config.display_name} "
                f"(SQLite {sqlite_version})"
            )

        except Exception as e:
            raise wrap_database_error(
                e,
                operation="initialize",
                database_name=self.config.display_name,
                engine=self.engine.value
            )

    async def shutdown(self) -> None:
        """Shutdown the SQLite adapter."""
        shared = self._shared_connection
        if shared is not None:
            self._shared_connection = None
            await shared.close()
        self._memory_lock = None

        self._is_initialized = False
        self.logger.info("SQLite adapter shutdown completed")

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[DatabaseConnection, None]:
        """
        Open a connection for the duration of one operation.

        An in-memory database has a single native connection, so each
        operation holds it exclusively until the scope exits. Operations
        on other database ids wait instead of interleaving their
        transactions. The scope is not reentrant within one task.
        """
        if not self.config.is_memory:
            async with super().connection() as conn:
                yield conn
            return

        if self._memory_lock is None:
            self._memory_lock = asyncio.Lock()
        async with self._memory_lock:
            async with super().connection() as conn:
                yield conn

    async def create_connection(self) -> DatabaseConnection:
        """Create a new SQLite connection."""
        if self.config.is_memory and self._shared_connection is not None:
            return self._shared_connection

        try:
            native_conn = await aiosqlite.connect(
                self._database_path,
                timeout=self.config.connection_timeout,
                isolation_level=None  # Autocommit; transactions are explicit
            )
            await self._configure_connection(native_conn)

            connection = DatabaseConnection(
                connection_id=self._create_connection_id(),
                config=self.config,
                native_connection=native_conn,
                adapter=self
            )

            if self.config.is_memory:
                self._shared_connection = connection

            self.logger.debug(f"Created SQLite connection: {connection.connection_id}")
            return connection

        except Exception as e:
            raise wrap_database_error(
                e,
                operation="create_connection",
                database_name=self.config.display_name,
                engine=self.engine.value
            )

    async def _configure_connection(self, conn) -> None:
        """Configure SQLite connection settings."""
        conn.row_factory = aiosqlite.Row

        if not self.config.is_memory:
            await conn.execute(f"PRAGMA journal_mode={self.config.journal_mode.value}")
        await conn.execute(f"PRAGMA foreign_keys={'ON' if self.config.foreign_keys else 'OFF'}")
        await conn.execute(f"PRAGMA busy_timeout={int(self.config.connection_timeout * 1000)}")

    async def _get_sqlite_version(self, connection: DatabaseConnection) -> str:
        row = await self.fetch_one(connection, "SELECT sqlite_version() AS version")
        return row["version"] if row else "unknown"

    async def health_check(self) -> Dict[str, Any]:
        """Perform a health check on the database."""
        started = utc_now()
        try:
            async with self.connection() as conn:
                version = await self._get_sqlite_version(conn)
            return {
                'healthy': True,
                'engine': self.engine.value,
                'database': self.config.display_name,
                'path': self.database_path,
                'sqlite_version': version,
                'response_time_ms': (utc_now() - started).total_seconds() * 1000,
                'timestamp': format_timestamp()
            }
        except Exception as e:
            self.logger.warning(f"SQLite health check failed: {e}")
            return {
                'healthy': False,
                'engine': self.engine.value,
                'error': str(e),
                'timestamp': format_timestamp()
            }

    def _process_parameters(
        self,
        query: str,
        parameters: Optional[Dict[str, Any]]
    ) -> Tuple[str, List[Any]]:
        """Convert named parameters to the positional format expected by SQLite."""
        if not parameters:
            return query, []

        param_values = []

        def _replace(match):
            name = match.group(1)
            if name not in parameters:
                raise QueryError(f"Missing query parameter: {name}", query=query, parameters=parameters)
            param_values.append(parameters[name])
            return "?"

        processed_query = _PARAM_PATTERN.sub(_replace, query)
        return processed_query, param_values

    async def execute_query(
        self,
        connection: DatabaseConnection,
        query: str,
        parameters: Optional[Dict[str, Any]] = None
    ) -> QueryResult:
        """Execute a single parameterized statement."""
        start_time = utc_now()

        try:
            self._log_query(query, parameters)
            connection.mark_used()

            processed_query, param_values = self._process_parameters(query, parameters)
            cursor = await connection.native_connection.execute(processed_query, param_values)
            rows_affected = cursor.rowcount
            last_insert_id = cursor.lastrowid
            await cursor.close()

            connection.query_count += 1
            return QueryResult(
                rows_affected=rows_affected,
                last_insert_id=last_insert_id,
                execution_time=(utc_now() - start_time).total_seconds()
            )

        except Exception as e:
            raise wrap_database_error(
                e,
                operation="execute_query",
                database_name=self.config.display_name,
                engine=self.engine.value,
                query=query[:100] + "..." if len(query) > 100 else query
            )

    async def fetch_one(
        self,
        connection: DatabaseConnection,
        query: str,
        parameters: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Fetch a single row from SQLite."""
        try:
            connection.mark_used()
            processed_query, param_values = self._process_parameters(query, parameters)

            async with connection.native_connection.execute(processed_query, param_values) as cursor:
                result = await cursor.fetchone()

            connection.query_count += 1
            return dict(result) if result else None

        except Exception as e:
            raise wrap_database_error(
                e,
                operation="fetch_one",
                database_name=self.config.display_name,
                engine=self.engine.value,
                query=query[:100] + "..." if len(query) > 100 else query
            )

    async def fetch_all(
        self,
        connection: DatabaseConnection,
        query: str,
        parameters: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Fetch all rows from SQLite."""
        try:
            connection.mark_used()
            processed_query, param_values = self._process_parameters(query, parameters)

            async with connection.native_connection.execute(processed_query, param_values) as cursor:
                results = await cursor.fetchall()

            connection.query_count += 1
            return [dict(row) for row in results] if results else []

        except Exception as e:
            raise wrap_database_error(
                e,
                operation="fetch_all",
                database_name=self.config.display_name,
                engine=self.engine.value,
                query=query[:100] + "..." if len(query) > 100 else query
            )

    async def execute_script(self, connection: DatabaseConnection, script: str) -> int:
        """
        Execute every statement of ``script`` on the connection.

        ``executescript`` is not used because it commits any open
        transaction first; statements run one by one instead so that the
        caller's transaction covers the whole script.
        """
        statements = split_sql_script(script)

        for statement in statements:
            try:
                self._log_query(statement)
                connection.mark_used()
                cursor = await connection.native_connection.execute(statement)
                await cursor.close()
                connection.query_count += 1
            except Exception as e:
                raise wrap_database_error(
                    e,
                    operation="execute_script",
                    database_name=self.config.display_name,
                    engine=self.engine.value,
                    query=statement[:100] + "..." if len(statement) > 100 else statement
                )

        return len(statements)

    # Migration lock procedures

    async def acquire_lock(
        self,
        connection: DatabaseConnection,
        database_id: str,
        locked_by: str,
        timeout_minutes: int,
        reason: Optional[str] = None
    ) -> bool:
        """Insert the lock row unless one already exists, expired or not."""
        now = utc_now()
        result = await self.execute_query(
            connection,
            _ACQUIRE_LOCK_SQL,
            {
                'database_id': database_id,
                'locked_by': locked_by,
                'lock_reason': reason,
                'locked_at': format_timestamp(now),
                'expires_at': format_timestamp(now + timedelta(minutes=timeout_minutes)),
            }
        )
        return result.rows_affected == 1

    async def release_lock(
        self,
        connection: DatabaseConnection,
        database_id: str,
        locked_by: str
    ) -> None:
        """Delete the lock row held by ``locked_by``."""
        await self.execute_query(
            connection,
            _RELEASE_LOCK_SQL,
            {'database_id': database_id, 'locked_by': locked_by}
        )

    # Schema introspection

    async def introspect_schema(
        self,
        connection: DatabaseConnection,
        exclude_tables: Sequence[str] = ()
    ) -> Dict[str, List[Dict[str, Any]]]:
        """Describe the user schema of the database, sorted by object name."""
        excluded = set(exclude_tables)
        objects = await self.fetch_all(connection, _SCHEMA_OBJECTS_SQL)

        tables: List[Dict[str, Any]] = []
        views: List[Dict[str, Any]] = []
        indexes: List[Dict[str, Any]] = []
        triggers: List[Dict[str, Any]] = []
        foreign_keys: List[Dict[str, Any]] = []

        for obj in objects:
            if obj['tbl_name'] in excluded:
                continue

            if obj['type'] == 'table':
                tables.append({
                    'name': obj['name'],
                    'columns': await self._describe_columns(connection, obj['name']),
                })
                without_rowid = bool(_WITHOUT_ROWID.search(obj['sql'] or ''))
                indexes.extend(await self._describe_indexes(connection, obj['name'], without_rowid))
                foreign_keys.extend(await self._describe_foreign_keys(connection, obj['name']))
            elif obj['type'] == 'view':
                views.append({'name': obj['name'], 'definition': obj['sql']})
            elif obj['type'] == 'trigger':
                triggers.append({
                    'name': obj['name'],
                    'table_name': obj['tbl_name'],
                    'definition': obj['sql'],
                })

        indexes.sort(key=lambda item: (item['table_name'], item['name']))

        return {
            'tables': tables,
            'views': views,
            'indexes': indexes,
            'stored_procedures': [],  # SQLite has no stored procedures
            'triggers': triggers,
            'foreign_keys': foreign_keys,
        }

    async def _describe_columns(self, connection: DatabaseConnection, table: str) -> List[Dict[str, Any]]:
        rows = await self.fetch_all(connection, f"PRAGMA table_info({_quote_identifier(table)})")
        pk_count = sum(1 for row in rows if row['pk'])

        columns = []
        for row in sorted(rows, key=lambda r: r['cid']):
            data_type = row['type'] or ''
            is_identity = bool(row['pk']) and pk_count == 1 and data_type.upper() == 'INTEGER'
            columns.append({
                'name': row['name'],
                'data_type': data_type,
                'is_nullable': not row['notnull'] and not is_identity,
                'default_value': row['dflt_value'],
                'is_primary_key': bool(row['pk']),
                'is_identity': is_identity,
            })
        return columns

    async def _describe_indexes(
        self,
        connection: DatabaseConnection,
        table: str,
        without_rowid: bool = False
    ) -> List[Dict[str, Any]]:
        """Indexes of a table; only the primary key of a WITHOUT ROWID table stores the rows."""
        index_rows = await self.fetch_all(connection, f"PRAGMA index_list({_quote_identifier(table)})")

        indexes = []
        for index_row in index_rows:
            column_rows = await self.fetch_all(
                connection,
                f"PRAGMA index_info({_quote_identifier(index_row['name'])})"
            )
            indexes.append({
                'name': index_row['name'],
                'table_name': table,
                'columns': [row['name'] for row in sorted(column_rows, key=lambda r: r['seqno'])],
                'is_unique': bool(index_row['unique']),
                'is_clustered': without_rowid and index_row['origin'] == 'pk',
                'origin': index_row['origin'],
            })
        return indexes

    async def _describe_foreign_keys(self, connection: DatabaseConnection, table: str) -> List[Dict[str, Any]]:
        rows = await self.fetch_all(connection, f"PRAGMA foreign_key_list({_quote_identifier(table)})")
        return [
            {
                'name': f"fk_{table}_{row['id']}_{row['seq']}",
                'table_name': table,
                'column_name': row['from'],
                'referenced_table': row['table'],
                'referenced_column': row['to'],
                'on_delete': row['on_delete'],
            }
            for row in sorted(rows, key=lambda r: (r['id'], r['seq']))
        ]

    # Transaction management

    async def _begin_transaction(self, connection: DatabaseConnection, read_only: bool = False) -> None:
        """Begin a SQLite transaction."""
        try:
            if read_only:
                await connection.native_connection.execute("BEGIN DEFERRED")
            else:
                await connection.native_connection.execute("BEGIN IMMEDIATE")

            self.logger.debug(f"Transaction started on connection {connection.connection_id}")

        except Exception as e:
            raise wrap_database_error(
                e,
                operation="begin_transaction",
                database_name=self.config.display_name,
                engine=self.engine.value
            )

    async def _commit_transaction(self, connection: DatabaseConnection) -> None:
        """Commit a SQLite transaction."""
        try:
            await connection.native_connection.commit()
            self.logger.debug(f"Transaction committed on connection {connection.connection_id}")

        except Exception as e:
            raise wrap_database_error(
                e,
                operation="commit_transaction",
                database_name=self.config.display_name,
                engine=self.engine.value
            )

    async def _rollback_transaction(self, connection: DatabaseConnection) -> None:
        """Rollback a SQLite transaction."""
        try:
            await connection.native_connection.rollback()
            self.logger.debug(f"Transaction rolled back on connection {connection.connection_id}")

        except Exception as e:
            raise wrap_database_error(
                e,
                operation="rollback_transaction",
                database_name=self.config.display_name,
                engine=self.engine.value
            )

    async def return_connection(self, connection: DatabaseConnection) -> None:
        """Close per-operation connections; the in-memory connection stays open until shutdown."""
        if connection is self._shared_connection:
            connection.mark_used()
            return
        await super().return_connection(connection)

    async def _close_connection(self, native_connection: Any) -> None:
        """Close a SQLite connection."""
        try:
            if native_connection:
                await native_connection.close()

        except Exception as e:
            # Cleanup path; the operation result has already been decided
            self.logger.error(f"Error closing SQLite connection: {e}")

    def __repr__(self) -> str:
        return f"SQLiteAdapter(database={self.config.display_name!r})"
