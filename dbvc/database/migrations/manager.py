"""
Migration execution engine.

Runs pending migrations forward and single migrations backward for one
database and environment, under that database's migration lock.

Per migration and run the states are ``pending -> running -> success|failed``;
a rollback goes ``applied -> running(rollback) -> not-applied|failed``. Every
script runs in one transaction. A forward run stops at the first failing
script; migrations after it are neither executed nor reported as skipped.

Author: DBVC Engine
Version: 0.1.0
"""

import logging
from typing import Any, Dict, Optional, Set

from ...utils import elapsed_ms, utc_now
from ..adapters.base import DatabaseAdapter, DatabaseConnection
from ..exceptions import ConnectionError, DatabaseError
from .base import (
    ChangeEventType, ExecutedMigration, ExecutionContext, ExecutionMode, ExecutionStatus, Migration,
    RollbackResult, RunMigrationsResult, SkipReason
)
from .config import MigrationConfig
from .exceptions import (
    InvalidMigrationIdError, NonReversibleMigrationError, NotAppliedError, ScriptExecutionError
)
from .history import ExecutionHistory
from .lock import LockManager
from .registry import MigrationRegistry
from .utils import is_valid_migration_id


class MigrationManager:
    """
    Forward and rollback execution of registered migrations.

    The manager does not own a connection; every call receives the
    connection of the public operation it belongs to.
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        registry: MigrationRegistry,
        history: ExecutionHistory,
        lock_manager: LockManager,
        config: MigrationConfig
    ):
        self.adapter = adapter
        self.registry = registry
        self.history = history
        self.lock_manager = lock_manager
        self.config = config
        self.logger = logging.getLogger(__name__)

    def _check_id(self, migration_id: str, database_id: str) -> None:
        if not is_valid_migration_id(migration_id):
            raise InvalidMigrationIdError(
                f"Invalid migration id: {migration_id!r}",
                migration_id=migration_id,
                database_id=database_id
            )

    def _context_dict(self, execution_context: Optional[ExecutionContext]) -> Dict[str, Any]:
        return execution_context.to_dict() if execution_context else {}

    async def _execute_script(
        self,
        connection: DatabaseConnection,
        migration: Migration,
        script: str,
        mode: ExecutionMode
    ) -> None:
        """Run a whole script in one transaction."""
        try:
            async with self.adapter.transaction(connection):
                await self.adapter.execute_script(connection, script)
        except ConnectionError:
            raise
        except DatabaseError as e:
            raise ScriptExecutionError(
                f"{mode.value.capitalize()} script of {migration.migration_id} failed: "
                f"{e.original_error or e}",
                mode=mode.value,
                migration_id=migration.migration_id,
                database_id=migration.database_id,
                original_error=e
            )

    async def run_migrations(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: str,
        executor: str,
        target_migration_id: Optional[str] = None,
        dry_run: bool = False,
        execution_context: Optional[ExecutionContext] = None
    ) -> RunMigrationsResult:
        """
        Apply pending migrations in ascending id order.

        Args:
            connection: Open metadata store connection
            database_id: Target database
            environment: Environment name; aliases are normalized
            executor: Identity recorded on the lock and execution records
            target_migration_id: Skip every candidate with a greater id
            dry_run: Report what would run without executing anything
            execution_context: Caller provenance stored with records and events

        Returns:
            Executed, skipped and failed migrations of the run

        Raises:
            InvalidMigrationIdError: If the target id is malformed
            LockAcquisitionError: If the database lock is held
        """
        if target_migration_id is not None:
            self._check_id(target_migration_id, database_id)
        environment = self.config.normalize_environment(environment)
        started_at = utc_now()
        context = self._context_dict(execution_context)

        result = RunMigrationsResult(
            success=True,
            database_id=database_id,
            environment=environment,
            dry_run=dry_run
        )

        async with self.lock_manager.hold(
            connection, database_id, executor, reason=f"run_migrations ({environment})"
        ):
            candidates = await self.registry.list_pending(connection, database_id, environment)
            applied: Set[str] = await self.history.get_applied_ids(connection, database_id, environment)

            self.logger.info(
                f"{len(candidates)} pending migration(s) for {database_id} in {environment}"
                f"{' (dry run)' if dry_run else ''}"
            )

            for migration in candidates:
                migration_id = migration.migration_id

                if target_migration_id and migration_id > target_migration_id:
                    result.skip(migration_id, SkipReason.TARGET_EXCEEDED)
                    continue

                missing = [dependency for dependency in migration.depends_on if dependency not in applied]
                if missing:
                    self.logger.warning(
                        f"Skipping {migration_id}: dependencies not applied in {environment}: {missing}"
                    )
                    result.skip(migration_id, SkipReason.DEPENDENCY_UNMET)
                    continue

                if dry_run:
                    result.skip(migration_id, SkipReason.DRY_RUN)
                    # Later candidates may depend on this one
                    applied.add(migration_id)
                    continue

                if not await self._apply(connection, migration, environment, executor, context, result):
                    break
                applied.add(migration_id)

        result.total_duration_ms = elapsed_ms(started_at)
        self.logger.info(
            f"Migration run for {database_id} in {environment} finished: "
            f"{len(result.executed_migrations)} executed, {len(result.skipped_migrations)} skipped, "
            f"failed={result.failed_migration_id}"
        )
        return result

    async def _apply(
        self,
        connection: DatabaseConnection,
        migration: Migration,
        environment: str,
        executor: str,
        context: Dict[str, Any],
        result: RunMigrationsResult
    ) -> bool:
        """Run one forward script with its bookkeeping; False stops the run."""
        migration_id = migration.migration_id
        database_id = migration.database_id

        await self.history.log_event(migration_id, database_id, ChangeEventType.STARTED, environment, context)
        record = await self.history.start_execution(
            connection, migration_id, database_id, environment, executor, ExecutionMode.FORWARD, context
        )

        try:
            await self._execute_script(connection, migration, migration.up_script, ExecutionMode.FORWARD)
        except ScriptExecutionError as e:
            self.logger.error(f"Migration {migration_id} failed on {database_id} ({environment}): {e.message}")
            await self.history.complete_execution(connection, record, ExecutionStatus.FAILED, e.message)
            await self.history.log_event(
                migration_id, database_id, ChangeEventType.FAILED, environment,
                {**context, 'error': e.message}
            )
            result.executed_migrations.append(ExecutedMigration(
                migration_id=migration_id,
                status=ExecutionStatus.FAILED,
                duration_ms=record.duration_ms or 0,
                error=e.message,
            ))
            result.success = False
            result.failed_migration_id = migration_id
            result.error = e.message
            return False

        await self.history.complete_execution(connection, record, ExecutionStatus.SUCCESS)
        await self.history.mark_applied(
            connection, migration_id, database_id, environment, executor, record.execution_id
        )
        await self.history.log_event(migration_id, database_id, ChangeEventType.COMPLETED, environment, context)

        result.executed_migrations.append(ExecutedMigration(
            migration_id=migration_id,
            status=ExecutionStatus.SUCCESS,
            duration_ms=record.duration_ms or 0,
        ))
        self.logger.info(f"Applied {migration_id} to {database_id} ({environment}) in {record.duration_ms}ms")
        return True

    async def rollback_migration(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: str,
        executor: str,
        migration_id: str,
        execution_context: Optional[ExecutionContext] = None
    ) -> RollbackResult:
        """
        Run the down script of one applied migration.

        Raises:
            InvalidMigrationIdError: If the migration id is malformed
            LockAcquisitionError: If the database lock is held
            MigrationNotFoundError: If the migration is not registered
            NonReversibleMigrationError: If the migration has no down script
            NotAppliedError: If the migration is not applied in ``environment``
        """
        self._check_id(migration_id, database_id)
        environment = self.config.normalize_environment(environment)
        started_at = utc_now()
        context = {**self._context_dict(execution_context), 'mode': ExecutionMode.ROLLBACK.value}

        async with self.lock_manager.hold(
            connection, database_id, executor, reason=f"rollback {migration_id} ({environment})"
        ):
            migration = await self.registry.get_migration(connection, migration_id, database_id)

            if not migration.down_script:
                raise NonReversibleMigrationError(
                    f"Migration {migration_id} has no down script",
                    migration_id=migration_id,
                    database_id=database_id
                )

            if not await self.history.is_applied(connection, migration_id, database_id, environment):
                raise NotAppliedError(
                    f"Migration {migration_id} is not applied to {database_id} in {environment}",
                    environment=environment,
                    migration_id=migration_id,
                    database_id=database_id
                )

            await self.history.log_event(migration_id, database_id, ChangeEventType.STARTED, environment, context)
            record = await self.history.start_execution(
                connection, migration_id, database_id, environment, executor, ExecutionMode.ROLLBACK, context
            )

            try:
                await self._execute_script(connection, migration, migration.down_script, ExecutionMode.ROLLBACK)
            except ScriptExecutionError as e:
                self.logger.error(f"Rollback of {migration_id} failed on {database_id} ({environment}): {e.message}")
                await self.history.complete_execution(connection, record, ExecutionStatus.FAILED, e.message)
                await self.history.log_event(
                    migration_id, database_id, ChangeEventType.FAILED, environment,
                    {**context, 'error': e.message}
                )
                return RollbackResult(
                    success=False,
                    migration_id=migration_id,
                    database_id=database_id,
                    environment=environment,
                    duration_ms=elapsed_ms(started_at),
                    error=e.message,
                    execution_id=record.execution_id,
                )

            await self.history.complete_execution(connection, record, ExecutionStatus.SUCCESS)
            await self.history.mark_unapplied(
                connection, migration_id, database_id, environment, record.execution_id
            )
            await self.history.log_event(
                migration_id, database_id, ChangeEventType.ROLLED_BACK, environment, context
            )

        self.logger.info(f"Rolled back {migration_id} on {database_id} ({environment})")
        return RollbackResult(
            success=True,
            migration_id=migration_id,
            database_id=database_id,
            environment=environment,
            duration_ms=elapsed_ms(started_at),
            execution_id=record.execution_id,
        )
