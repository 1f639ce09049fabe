"""
Execution history, applied status and change events.

Execution records are created in ``running`` state when a script starts and
updated exactly once when it completes; they are never deleted. Applied
status holds one row per (migration, database, environment). Change events
are appended to the document backup store and never read back.

Author: DBVC Engine
Version: 0.1.0
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from ...utils import elapsed_ms, format_timestamp, parse_timestamp, utc_now
from ..adapters.base import DatabaseAdapter, DatabaseConnection, DocumentStore
from ..exceptions import DatabaseError
from . import queries
from .base import (
    AppliedStatus, ChangeEvent, ChangeEventType, ExecutionMode, ExecutionRecord, ExecutionStatus
)
from .config import MigrationConfig


class ExecutionHistory:
    """Bookkeeping for script executions."""

    def __init__(self, adapter: DatabaseAdapter, document_store: DocumentStore, config: MigrationConfig):
        self.adapter = adapter
        self.document_store = document_store
        self.config = config
        self.logger = logging.getLogger(__name__)

    # Execution records

    async def start_execution(
        self,
        connection: DatabaseConnection,
        migration_id: str,
        database_id: str,
        environment: str,
        executor: str,
        mode: ExecutionMode,
        execution_context: Optional[Dict[str, Any]] = None
    ) -> ExecutionRecord:
        """Create an execution record in ``running`` state."""
        started_at = utc_now()
        context = execution_context if self.config.record_execution_context else None

        result = await self.adapter.execute_query(connection, queries.INSERT_EXECUTION, {
            'migration_id': migration_id,
            'database_id': database_id,
            'environment': environment,
            'started_at': format_timestamp(started_at),
            'executor': executor,
            'execution_mode': mode.value,
            'execution_context': json.dumps(context, default=str) if context else None,
        })

        return ExecutionRecord(
            execution_id=result.last_insert_id,
            migration_id=migration_id,
            database_id=database_id,
            environment=environment,
            executor=executor,
            mode=mode,
            status=ExecutionStatus.RUNNING,
            started_at=started_at,
            execution_context=context or {},
        )

    async def complete_execution(
        self,
        connection: DatabaseConnection,
        record: ExecutionRecord,
        status: ExecutionStatus,
        error_message: Optional[str] = None
    ) -> ExecutionRecord:
        """Move a running record to its final state."""
        completed_at = utc_now()
        duration = elapsed_ms(record.started_at, completed_at)

        await self.adapter.execute_query(connection, queries.COMPLETE_EXECUTION, {
            'execution_id': record.execution_id,
            'status': status.value,
            'completed_at': format_timestamp(completed_at),
            'duration_ms': duration,
            'error_message': error_message,
        })

        record.status = status
        record.completed_at = completed_at
        record.duration_ms = duration
        record.error_message = error_message
        return record

    async def get_execution(self, connection: DatabaseConnection, execution_id: int) -> Optional[ExecutionRecord]:
        row = await self.adapter.fetch_one(connection, queries.SELECT_EXECUTION, {'execution_id': execution_id})
        return ExecutionRecord.from_row(row) if row else None

    async def list_executions(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: Optional[str] = None,
        migration_id: Optional[str] = None
    ) -> List[ExecutionRecord]:
        """Execution records of a database, oldest first."""
        parameters = {'database_id': database_id}
        if environment:
            parameters['environment'] = environment
        if migration_id:
            parameters['migration_id'] = migration_id

        rows = await self.adapter.fetch_all(
            connection,
            queries.executions_query(migration_id, environment),
            parameters
        )
        return [ExecutionRecord.from_row(row) for row in rows]

    async def list_running(self, connection: DatabaseConnection, database_id: str) -> List[ExecutionRecord]:
        rows = await self.adapter.fetch_all(
            connection,
            queries.SELECT_RUNNING_EXECUTIONS,
            {'database_id': database_id}
        )
        return [ExecutionRecord.from_row(row) for row in rows]

    async def last_success_at(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: Optional[str] = None
    ) -> Optional[datetime]:
        parameters = {'database_id': database_id}
        if environment:
            parameters['environment'] = environment
        row = await self.adapter.fetch_one(connection, queries.last_success_query(environment), parameters)
        return parse_timestamp(row['last_completed_at']) if row else None

    # Applied status

    async def mark_applied(
        self,
        connection: DatabaseConnection,
        migration_id: str,
        database_id: str,
        environment: str,
        applied_by: str,
        execution_id: int
    ) -> None:
        await self.adapter.execute_query(connection, queries.UPSERT_APPLIED_STATUS, {
            'migration_id': migration_id,
            'database_id': database_id,
            'environment': environment,
            'is_applied': 1,
            'applied_at': format_timestamp(),
            'applied_by': applied_by,
            'last_execution_id': execution_id,
        })

    async def mark_unapplied(
        self,
        connection: DatabaseConnection,
        migration_id: str,
        database_id: str,
        environment: str,
        execution_id: int
    ) -> None:
        await self.adapter.execute_query(connection, queries.UPSERT_APPLIED_STATUS, {
            'migration_id': migration_id,
            'database_id': database_id,
            'environment': environment,
            'is_applied': 0,
            'applied_at': None,
            'applied_by': None,
            'last_execution_id': execution_id,
        })

    async def get_applied_status(
        self,
        connection: DatabaseConnection,
        migration_id: str,
        database_id: str,
        environment: str
    ) -> Optional[AppliedStatus]:
        row = await self.adapter.fetch_one(connection, queries.SELECT_APPLIED_STATUS, {
            'migration_id': migration_id,
            'database_id': database_id,
            'environment': environment,
        })
        return AppliedStatus.from_row(row) if row else None

    async def is_applied(
        self,
        connection: DatabaseConnection,
        migration_id: str,
        database_id: str,
        environment: str
    ) -> bool:
        status = await self.get_applied_status(connection, migration_id, database_id, environment)
        return status is not None and status.is_applied

    async def get_applied_ids(self, connection: DatabaseConnection, database_id: str, environment: str) -> Set[str]:
        rows = await self.adapter.fetch_all(
            connection,
            queries.SELECT_APPLIED_MIGRATION_IDS,
            {'database_id': database_id, 'environment': environment}
        )
        return {row['migration_id'] for row in rows}

    async def list_applied_statuses(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: Optional[str] = None
    ) -> List[AppliedStatus]:
        parameters = {'database_id': database_id}
        if environment:
            parameters['environment'] = environment
        rows = await self.adapter.fetch_all(connection, queries.applied_statuses_query(environment), parameters)
        return [AppliedStatus.from_row(row) for row in rows]

    # Change events

    async def log_event(
        self,
        migration_id: str,
        database_id: str,
        event_type: ChangeEventType,
        environment: str,
        context: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Append a change event to the document store.

        Returns:
            False if the write failed; the failure is logged and not raised
        """
        event = ChangeEvent(
            migration_id=migration_id,
            database_id=database_id,
            event_type=event_type,
            environment=environment,
            context=dict(context or {}),
        )
        try:
            await self.document_store.create_document(event.to_document())
            return True
        except DatabaseError as e:
            self.logger.warning(
                f"Failed to record {event_type.value} event for {migration_id} on {database_id}: {e}"
            )
            return False
