"""
Migration registry.

Registers migrations in the relational metadata store, which is the
authoritative copy, and mirrors each migration body into the document
backup store under ``<databaseId>_<migrationId>``. The two writes are not
atomic: a failed mirror write is logged and reported through
``CreateMigrationResult.backup_synced`` and can be repaired later with
``resync_backups``.

Author: DBVC Engine
Version: 0.1.0
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from ...utils import format_timestamp, utc_now
from ..adapters.base import DatabaseAdapter, DatabaseConnection, DocumentStore
from ..exceptions import DatabaseError, DuplicateDocumentError, IntegrityError
from . import queries
from .base import CreateMigrationResult, Migration
from .config import MigrationConfig
from .exceptions import MigrationNotFoundError, RegistrationError
from .utils import (
    calculate_checksum,
    down_script_template,
    generate_migration_id,
    storage_path,
    up_script_template,
)


def _unique(values: Optional[Iterable[str]]) -> List[str]:
    seen = []
    for value in values or ():
        if value not in seen:
            seen.append(value)
    return seen


class MigrationRegistry:
    """Create and look up registered migrations."""

    def __init__(self, adapter: DatabaseAdapter, document_store: DocumentStore, config: MigrationConfig):
        self.adapter = adapter
        self.document_store = document_store
        self.config = config
        self.logger = logging.getLogger(__name__)

    async def create_migration(
        self,
        connection: DatabaseConnection,
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
        """
        Register a new migration.

        Args:
            connection: Open metadata store connection
            database_id: Target database
            name: Human readable name, sanitized into the migration id
            author: Who wrote the migration
            up_script: Forward script; a commented template when omitted
            down_script: Rollback script; a commented template when omitted
            description: Defaults to ``name``
            depends_on: Migration ids that must be applied first, in order
            tags: Free-form labels, stored as a sorted set
            irreversible: Register without a rollback script

        Returns:
            Generated id, checksum, conventional storage path and backup state

        Raises:
            RegistrationError: Invalid input, or the metadata store write failed
        """
        for field_name, value in (('database_id', database_id), ('name', name), ('author', author)):
            if not value or not value.strip():
                raise RegistrationError(f"{field_name} must not be empty", database_id=database_id or None)
        if irreversible and down_script is not None:
            raise RegistrationError(
                "An irreversible migration cannot have a down script",
                database_id=database_id
            )

        created_at = utc_now()
        migration_id = generate_migration_id(name, now=created_at, max_name_length=self.config.max_name_length)
        description = description or name

        if up_script is None:
            up_script = up_script_template(migration_id, description, author, created_at)
        if down_script is None and not irreversible:
            down_script = down_script_template(migration_id, description, author, created_at)

        migration = Migration(
            migration_id=migration_id,
            database_id=database_id,
            description=description,
            author=author,
            up_script=up_script,
            down_script=down_script,
            checksum=calculate_checksum(up_script),
            depends_on=_unique(depends_on),
            tags=sorted(set(tags or ())),
            created_at=created_at,
        )

        try:
            await self.adapter.execute_query(connection, queries.INSERT_MIGRATION, {
                'migration_id': migration.migration_id,
                'database_id': migration.database_id,
                'description': migration.description,
                'up_script': migration.up_script,
                'down_script': migration.down_script,
                'checksum': migration.checksum,
                'author': migration.author,
                'created_at': format_timestamp(migration.created_at),
                'is_reversible': 1 if migration.is_reversible else 0,
                'depends_on': json.dumps(migration.depends_on),
                'tags': json.dumps(migration.tags),
            })
        except IntegrityError as e:
            raise RegistrationError(
                f"Migration {migration_id} is already registered for {database_id}",
                migration_id=migration_id,
                database_id=database_id,
                original_error=e
            )
        except DatabaseError as e:
            raise RegistrationError(
                f"Failed to register migration {migration_id}: {e}",
                migration_id=migration_id,
                database_id=database_id,
                original_error=e
            )

        path = storage_path(migration_id, self.config.migrations_path)
        backup_synced = await self._mirror(migration, path)

        self.logger.info(
            f"Registered migration {migration_id} for {database_id} "
            f"(reversible={migration.is_reversible}, backup_synced={backup_synced})"
        )

        return CreateMigrationResult(
            migration_id=migration_id,
            database_id=database_id,
            checksum=migration.checksum,
            storage_path=path,
            is_reversible=migration.is_reversible,
            backup_synced=backup_synced,
        )

    async def _mirror(self, migration: Migration, path: str) -> bool:
        """Create the backup document; failures are reported, not raised."""
        try:
            await self.document_store.create_document(migration.to_document(path))
            return True
        except DuplicateDocumentError:
            return True
        except DatabaseError as e:
            self.logger.warning(
                f"Backup write for migration {migration.migration_id} failed; "
                f"metadata store copy is authoritative: {e}"
            )
            return False

    async def find_migration(
        self,
        connection: DatabaseConnection,
        migration_id: str,
        database_id: str
    ) -> Optional[Migration]:
        row = await self.adapter.fetch_one(
            connection,
            queries.SELECT_MIGRATION,
            {'migration_id': migration_id, 'database_id': database_id}
        )
        return Migration.from_row(row) if row else None

    async def get_migration(self, connection: DatabaseConnection, migration_id: str, database_id: str) -> Migration:
        """
        Raises:
            MigrationNotFoundError: If no such migration is registered
        """
        migration = await self.find_migration(connection, migration_id, database_id)
        if migration is None:
            raise MigrationNotFoundError(
                f"Migration {migration_id} is not registered for database {database_id}",
                migration_id=migration_id,
                database_id=database_id
            )
        return migration

    async def list_migrations(self, connection: DatabaseConnection, database_id: str) -> List[Migration]:
        """All migrations of a database in ascending id order."""
        rows = await self.adapter.fetch_all(
            connection,
            queries.SELECT_MIGRATIONS_FOR_DATABASE,
            {'database_id': database_id}
        )
        return [Migration.from_row(row) for row in rows]

    async def list_pending(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: str
    ) -> List[Migration]:
        """Migrations not applied in ``environment``, ascending."""
        rows = await self.adapter.fetch_all(
            connection,
            queries.SELECT_PENDING_MIGRATIONS,
            {'database_id': database_id, 'environment': environment}
        )
        return [Migration.from_row(row) for row in rows]

    async def list_database_ids(self, connection: DatabaseConnection) -> List[str]:
        rows = await self.adapter.fetch_all(connection, queries.SELECT_REGISTERED_DATABASE_IDS)
        return [row['database_id'] for row in rows]

    async def resync_backups(self, connection: DatabaseConnection, database_id: str) -> List[str]:
        """
        Create backup documents missing for registered migrations.

        Existing documents are never updated or replaced.

        Returns:
            Migration ids whose documents were created
        """
        created = []
        for migration in await self.list_migrations(connection, database_id):
            if await self.document_store.get_document(migration.document_id) is not None:
                continue
            path = storage_path(migration.migration_id, self.config.migrations_path)
            await self.document_store.create_document(migration.to_document(path))
            created.append(migration.migration_id)

        if created:
            self.logger.info(f"Restored {len(created)} backup document(s) for {database_id}")
        return created

    # Database inventory

    async def register_database(
        self,
        connection: DatabaseConnection,
        database_id: str,
        database_name: str,
        database_type: str = "sqlite",
        environment: str = "dev",
        current_version: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Add or update an entry of the database inventory."""
        await self.adapter.execute_query(connection, queries.UPSERT_DATABASE, {
            'database_id': database_id,
            'database_name': database_name,
            'database_type': database_type,
            'environment': environment,
            'current_version': current_version,
            'now': format_timestamp(),
            'metadata': json.dumps(metadata) if metadata else None,
        })
        self.logger.info(f"Database {database_id} registered in inventory")

    async def list_databases(self, connection: DatabaseConnection) -> List[Dict[str, Any]]:
        """Active inventory entries."""
        return await self.adapter.fetch_all(connection, queries.SELECT_ACTIVE_DATABASES)
