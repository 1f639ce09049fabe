"""
Migration status reporting.

Read-only aggregation of the registry, applied status and execution
history into per-database status reports.

Author: DBVC Engine
Version: 0.1.0
"""

import logging
from typing import Dict, List, Optional

from ..adapters.base import DatabaseAdapter, DatabaseConnection
from .base import (
    AppliedStatus, DatabaseStatus, EnvironmentStatus, ExecutionRecord, MigrationStatusItem, StatusReport
)
from .config import MigrationConfig
from .history import ExecutionHistory
from .registry import MigrationRegistry


class StatusReporter:
    """Builds status reports; never writes."""

    def __init__(
        self,
        adapter: DatabaseAdapter,
        registry: MigrationRegistry,
        history: ExecutionHistory,
        config: MigrationConfig
    ):
        self.adapter = adapter
        self.registry = registry
        self.history = history
        self.config = config
        self.logger = logging.getLogger(__name__)

    async def get_migration_status(
        self,
        connection: DatabaseConnection,
        database_id: Optional[str] = None,
        environment: Optional[str] = None
    ) -> StatusReport:
        """
        Status of one database, or of every known database.

        Args:
            connection: Open metadata store connection
            database_id: Restrict the report to this database
            environment: Count applied migrations in this environment only;
                without it a migration counts as applied when it is applied
                in any environment

        Returns:
            Report with one entry per database, sorted by database id
        """
        if environment:
            environment = self.config.normalize_environment(environment)

        inventory = {row['database_id']: row for row in await self.registry.list_databases(connection)}

        if database_id:
            database_ids = [database_id]
        else:
            registered = await self.registry.list_database_ids(connection)
            database_ids = sorted(set(inventory) | set(registered))

        report = StatusReport(environment=environment)
        for current_id in database_ids:
            report.databases.append(
                await self._database_status(connection, current_id, environment, inventory.get(current_id))
            )

        self.logger.debug(f"Status report built for {len(report.databases)} database(s)")
        return report

    async def _database_status(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: Optional[str],
        inventory_row: Optional[Dict] = None
    ) -> DatabaseStatus:
        migrations = await self.registry.list_migrations(connection, database_id)
        statuses = await self.history.list_applied_statuses(connection, database_id, environment)
        executions = await self.history.list_executions(connection, database_id, environment)

        applied_by_migration: Dict[str, List[AppliedStatus]] = {}
        for status in statuses:
            applied_by_migration.setdefault(status.migration_id, []).append(status)

        latest_execution: Dict[str, ExecutionRecord] = {}
        for record in executions:
            # Records arrive oldest first
            latest_execution[record.migration_id] = record

        items = []
        applied_count = 0
        for migration in migrations:
            environments = self._environment_map(applied_by_migration.get(migration.migration_id, []), environment)
            if any(value == EnvironmentStatus.SUCCESS for value in environments.values()):
                applied_count += 1

            record = latest_execution.get(migration.migration_id)
            items.append(MigrationStatusItem(
                migration_id=migration.migration_id,
                description=migration.description,
                author=migration.author,
                created_at=migration.created_at,
                is_reversible=migration.is_reversible,
                environments=environments,
                last_execution={
                    'environment': record.environment,
                    'status': record.status.value,
                    'mode': record.mode.value,
                    'executed_at': record.completed_at or record.started_at,
                    'executor': record.executor,
                } if record else None,
            ))

        inventory_row = inventory_row or {}
        return DatabaseStatus(
            database_id=database_id,
            total_migrations=len(migrations),
            applied_migrations=applied_count,
            pending_migrations=len(migrations) - applied_count,
            last_migration_at=await self.history.last_success_at(connection, database_id, environment),
            database_name=inventory_row.get('database_name'),
            database_type=inventory_row.get('database_type'),
            current_version=inventory_row.get('current_version'),
            migrations=items,
        )

    def _environment_map(
        self,
        statuses: List[AppliedStatus],
        environment: Optional[str]
    ) -> Dict[str, EnvironmentStatus]:
        if environment:
            names = [environment]
        else:
            names = list(self.config.known_environments)
        environments = {name: EnvironmentStatus.NOT_APPLIED for name in names}

        for status in statuses:
            name = self.config.normalize_environment(status.environment)
            if status.is_applied:
                environments[name] = EnvironmentStatus.SUCCESS
            else:
                environments.setdefault(name, EnvironmentStatus.NOT_APPLIED)
        return environments
