"""
Migration service.

Single entry point of the engine. Holds the relational metadata store
adapter, the document backup store and the migration components built on
them, and opens one metadata store connection per public operation.

Example:
    async with MigrationService.from_settings() as service:
        created = await service.create_migration("app", "add users", author="dev@example.com",
                                                 up_script="CREATE TABLE users (id INTEGER PRIMARY KEY);")
        result = await service.run_migrations("app", "dev", executor="ci")

Author: DBVC Engine
Version: 0.1.0
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .config import DBVCSettings
from .database.adapters import DatabaseAdapter, DocumentStore, InMemoryDocumentStore, MongoDocumentStore, SQLiteAdapter
from .database.migrations import queries
from .database.migrations.base import (
    CaptureType, CreateMigrationResult, ExecutionContext, ExecutionRecord, IntegrityReport, Migration,
    RollbackResult, RunMigrationsResult, SnapshotResult, StatusReport
)
from .database.migrations.config import MigrationConfig
from .database.migrations.history import ExecutionHistory
from .database.migrations.lock import LockManager
from .database.migrations.manager import MigrationManager
from .database.migrations.registry import MigrationRegistry
from .database.migrations.snapshot import SchemaSnapshotCapturer
from .database.migrations.status import StatusReporter
from .database.migrations.validator import IntegrityVerifier
from .exceptions import SettingsError


class MigrationService:
    """
    Database version control service.

    ``connect`` is idempotent and is also performed lazily by the first
    operation; ``disconnect`` tears down both stores. The service can be
    used as an async context manager.
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        document_store: Optional[DocumentStore] = None,
        config: Optional[MigrationConfig] = None
    ):
        self.adapter = adapter
        self.config = config or MigrationConfig()
        self.logger = logging.getLogger(__name__)

        if document_store is None:
            self.logger.warning("No document store configured; backups are kept in process memory only")
            document_store = InMemoryDocumentStore(self.config.document_container)
        self.document_store = document_store

        self.registry = MigrationRegistry(adapter, document_store, self.config)
        self.history = ExecutionHistory(adapter, document_store, self.config)
        self.lock_manager = LockManager(adapter, self.config)
        self.manager = MigrationManager(adapter, self.registry, self.history, self.lock_manager, self.config)
        self.status_reporter = StatusReporter(adapter, self.registry, self.history, self.config)
        self.snapshots = SchemaSnapshotCapturer(adapter, document_store, self.config)
        self.verifier = IntegrityVerifier(
            adapter, self.registry, self.history, self.lock_manager, self.snapshots, self.config
        )

        self._connected = False
        self._connect_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Optional[DBVCSettings] = None) -> 'MigrationService':
        """
        Build a service from process settings.

        Raises:
            SettingsError: If the settings are invalid
        """
        try:
            settings = settings or DBVCSettings()
            database_config = settings.database_config()
            document_config = settings.document_store_config()
            migration_config = settings.migration_config()
        except ValidationError as e:
            raise SettingsError(f"Invalid settings: {e}", details={'errors': e.errors()})

        document_store = MongoDocumentStore(document_config) if document_config else None
        return cls(SQLiteAdapter(database_config), document_store, migration_config)

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open both stores and create the metadata tables if missing."""
        async with self._connect_lock:
            if self._connected:
                return

            self.logger.info("Connecting migration service...")
            await self.adapter.initialize()
            await self.document_store.connect()

            async with self.adapter.connection() as conn:
                async with self.adapter.transaction(conn):
                    await self.adapter.execute_script(conn, queries.METADATA_SCHEMA)

            self._connected = True
            self.logger.info(
                f"Migration service connected ({self.adapter.config.display_name}, "
                f"{self.document_store.engine.value} backup store)"
            )

    async def disconnect(self) -> None:
        """Close both stores."""
        async with self._connect_lock:
            if not self._connected:
                return
            try:
                await self.document_store.disconnect()
            finally:
                await self.adapter.shutdown()
                self._connected = False
            self.logger.info("Migration service disconnected")

    async def __aenter__(self) -> 'MigrationService':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def health_check(self) -> Dict[str, Any]:
        return {
            'connected': self._connected,
            'metadata_store': await self.adapter.health_check(),
            'document_store': await self.document_store.health_check(),
        }

    # Registry

    async def create_migration(
        self,
        database_id: str,
        name: str,
        author: str,
        up_script: Optional[str] = None,
        down_script: Optional[str] = None,
        description: Optional[str] = None,
        depends_on: Optional[Iterable[str]] = None,
        tags: Optional[Iterable[str]] = None,
        irreversible: bool = False
    ) -> CreateMigrationResult:
        """Register a migration. See ``MigrationRegistry.create_migration``."""
        await self.connect()
        async with self.adapter.connection() as conn:
            return await self.registry.create_migration(
                conn,
                database_id,
                name,
                author,
                up_script=up_script,
                down_script=down_script,
                description=description,
                depends_on=depends_on,
                tags=tags,
                irreversible=irreversible,
            )

    async def get_migration(self, migration_id: str, database_id: str) -> Migration:
        """
        Raises:
            MigrationNotFoundError: If no such migration is registered
        """
        await self.connect()
        async with self.adapter.connection() as conn:
            return await self.registry.get_migration(conn, migration_id, database_id)

    async def list_migrations(self, database_id: str) -> List[Migration]:
        await self.connect()
        async with self.adapter.connection() as conn:
            return await self.registry.list_migrations(conn, database_id)

    async def resync_backups(self, database_id: str) -> List[str]:
        """Recreate missing backup documents from the metadata store."""
        await self.connect()
        async with self.adapter.connection() as conn:
            return await self.registry.resync_backups(conn, database_id)

    async def register_database(
        self,
        database_id: str,
        database_name: str,
        database_type: str = "sqlite",
        environment: str = "dev",
        current_version: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        await self.connect()
        async with self.adapter.connection() as conn:
            await self.registry.register_database(
                conn,
                database_id,
                database_name,
                database_type=database_type,
                environment=self.config.normalize_environment(environment),
                current_version=current_version,
                metadata=metadata,
            )

    # Execution

    async def run_migrations(
        self,
        database_id: str,
        environment: str,
        executor: str,
        target_migration_id: Optional[str] = None,
        dry_run: bool = False,
        execution_context: Optional[ExecutionContext] = None
    ) -> RunMigrationsResult:
        """Apply pending migrations. See ``MigrationManager.run_migrations``."""
        await self.connect()
        async with self.adapter.connection() as conn:
            return await self.manager.run_migrations(
                conn,
                database_id,
                environment,
                executor,
                target_migration_id=target_migration_id,
                dry_run=dry_run,
                execution_context=execution_context,
            )

    async def rollback_migration(
        self,
        database_id: str,
        environment: str,
        executor: str,
        migration_id: str,
        execution_context: Optional[ExecutionContext] = None
    ) -> RollbackResult:
        """Roll back one applied migration. See ``MigrationManager.rollback_migration``."""
        await self.connect()
        async with self.adapter.connection() as conn:
            return await self.manager.rollback_migration(
                conn,
                database_id,
                environment,
                executor,
                migration_id,
                execution_context=execution_context,
            )

    async def list_executions(
        self,
        database_id: str,
        environment: Optional[str] = None,
        migration_id: Optional[str] = None
    ) -> List[ExecutionRecord]:
        await self.connect()
        if environment:
            environment = self.config.normalize_environment(environment)
        async with self.adapter.connection() as conn:
            return await self.history.list_executions(
                conn, database_id, environment=environment, migration_id=migration_id
            )

    # Reporting

    async def get_migration_status(
        self,
        database_id: Optional[str] = None,
        environment: Optional[str] = None
    ) -> StatusReport:
        await self.connect()
        async with self.adapter.connection() as conn:
            return await self.status_reporter.get_migration_status(conn, database_id, environment)

    async def capture_schema_snapshot(
        self,
        database_id: str,
        environment: str,
        captured_by: str,
        triggering_migration_id: Optional[str] = None,
        capture_type: CaptureType = CaptureType.AUTO
    ) -> SnapshotResult:
        await self.connect()
        async with self.adapter.connection() as conn:
            return await self.snapshots.capture_schema_snapshot(
                conn,
                database_id,
                environment,
                captured_by,
                triggering_migration_id=triggering_migration_id,
                capture_type=capture_type,
            )

    async def verify_integrity(
        self,
        database_id: str,
        environment: str,
        fix_drift: bool = False
    ) -> IntegrityReport:
        await self.connect()
        async with self.adapter.connection() as conn:
            return await self.verifier.verify_integrity(conn, database_id, environment, fix_drift=fix_drift)
