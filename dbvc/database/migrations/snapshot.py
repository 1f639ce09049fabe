"""
Schema snapshot capture.

Introspects the live schema, hashes its canonical serialization, stores the
full definition in the document backup store and a compact index row
(counts, hash and document pointer) in the metadata store. The metadata
tables of the engine are never part of a snapshot.

Author: DBVC Engine
Version: 0.1.0
"""

import logging
from typing import Any, Dict, List, Optional

from ...utils import format_timestamp, utc_now
from ..adapters.base import DatabaseAdapter, DatabaseConnection, DocumentStore
from . import queries
from .base import CaptureType, SchemaSnapshot, SnapshotResult
from .config import MigrationConfig
from .utils import calculate_schema_hash, generate_snapshot_id


class SchemaSnapshotCapturer:
    """Captures and looks up schema snapshots."""

    def __init__(self, adapter: DatabaseAdapter, document_store: DocumentStore, config: MigrationConfig):
        self.adapter = adapter
        self.document_store = document_store
        self.config = config
        self.logger = logging.getLogger(__name__)

    async def introspect(self, connection: DatabaseConnection) -> Dict[str, List[Dict[str, Any]]]:
        """Current user schema without the engine's own tables."""
        return await self.adapter.introspect_schema(connection, exclude_tables=queries.METADATA_TABLES)

    async def current_hash(self, connection: DatabaseConnection) -> str:
        return calculate_schema_hash(await self.introspect(connection))

    async def capture_schema_snapshot(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: str,
        captured_by: str,
        triggering_migration_id: Optional[str] = None,
        capture_type: CaptureType = CaptureType.AUTO
    ) -> SnapshotResult:
        """
        Capture the live schema.

        The document is written first; if that write fails the error
        propagates and no index row is created.
        """
        environment = self.config.normalize_environment(environment)
        capture_type = CaptureType(capture_type)

        definition = await self.introspect(connection)
        captured_at = utc_now()

        snapshot = SchemaSnapshot(
            snapshot_id=generate_snapshot_id(database_id, now=captured_at),
            database_id=database_id,
            environment=environment,
            captured_at=captured_at,
            schema_hash=calculate_schema_hash(definition),
            capture_type=capture_type,
            captured_by=captured_by,
            triggering_migration_id=triggering_migration_id,
            table_count=len(definition['tables']),
            view_count=len(definition['views']),
            index_count=len(definition['indexes']),
            stored_procedure_count=len(definition['stored_procedures']),
            schema_definition=definition,
        )
        snapshot.document_id = snapshot.snapshot_id

        await self.document_store.create_document(snapshot.to_document())

        await self.adapter.execute_query(connection, queries.INSERT_SNAPSHOT, {
            'snapshot_id': snapshot.snapshot_id,
            'database_id': database_id,
            'environment': environment,
            'captured_at': format_timestamp(captured_at),
            'triggering_migration_id': triggering_migration_id,
            'capture_type': capture_type.value,
            'schema_hash': snapshot.schema_hash,
            'document_id': snapshot.document_id,
            'table_count': snapshot.table_count,
            'view_count': snapshot.view_count,
            'index_count': snapshot.index_count,
            'stored_procedure_count': snapshot.stored_procedure_count,
            'captured_by': captured_by,
        })

        self.logger.info(
            f"Captured {capture_type.value} snapshot {snapshot.snapshot_id} of {database_id} ({environment}): "
            f"{snapshot.table_count} tables, hash {snapshot.schema_hash[:12]}"
        )

        return SnapshotResult(
            snapshot_id=snapshot.snapshot_id,
            schema_hash=snapshot.schema_hash,
            table_count=snapshot.table_count,
            view_count=snapshot.view_count,
            index_count=snapshot.index_count,
            stored_procedure_count=snapshot.stored_procedure_count,
        )

    async def get_latest_snapshot(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: str
    ) -> Optional[SchemaSnapshot]:
        row = await self.adapter.fetch_one(connection, queries.SELECT_LATEST_SNAPSHOT, {
            'database_id': database_id,
            'environment': self.config.normalize_environment(environment),
        })
        return SchemaSnapshot.from_row(row) if row else None

    async def list_snapshots(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: Optional[str] = None
    ) -> List[SchemaSnapshot]:
        parameters = {'database_id': database_id}
        if environment:
            environment = self.config.normalize_environment(environment)
            parameters['environment'] = environment
        rows = await self.adapter.fetch_all(connection, queries.snapshots_query(environment), parameters)
        return [SchemaSnapshot.from_row(row) for row in rows]

    async def load_definition(self, snapshot: SchemaSnapshot) -> SchemaSnapshot:
        """Fill ``schema_definition`` from the backup document, if it exists."""
        document = await self.document_store.get_document(snapshot.document_id or snapshot.snapshot_id)
        if document is not None:
            snapshot.schema_definition = document.get('schemaDefinition')
        return snapshot
