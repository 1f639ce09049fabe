"""
Integrity verification.

Checks a database's migration metadata for tampered scripts, expired
locks, schema drift, dependencies on unknown migrations and executions
that never completed. Findings are returned as data and never raised.

Author: DBVC Engine
Version: 0.1.0
"""

import logging
from typing import List

from ...utils import format_timestamp, utc_now
from ..adapters.base import DatabaseAdapter, DatabaseConnection
from .base import (
    ChecksumMismatch, IntegrityIssue, IntegrityReport, IssueSeverity, IssueType, Migration, SchemaDrift
)
from .config import MigrationConfig
from .history import ExecutionHistory
from .lock import LockManager
from .registry import MigrationRegistry
from .snapshot import SchemaSnapshotCapturer
from .utils import calculate_checksum


class IntegrityVerifier:
    """Runs every integrity check for one database and environment."""

    def __init__(
        self,
        adapter: DatabaseAdapter,
        registry: MigrationRegistry,
        history: ExecutionHistory,
        lock_manager: LockManager,
        snapshots: SchemaSnapshotCapturer,
        config: MigrationConfig
    ):
        self.adapter = adapter
        self.registry = registry
        self.history = history
        self.lock_manager = lock_manager
        self.snapshots = snapshots
        self.config = config
        self.logger = logging.getLogger(__name__)

    async def verify_integrity(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: str,
        fix_drift: bool = False
    ) -> IntegrityReport:
        """
        Verify one database.

        Args:
            connection: Open metadata store connection
            database_id: Database to check
            environment: Environment whose latest snapshot is compared
            fix_drift: Delete expired migration locks of this database; expired
                locks of other databases are only reported

        Returns:
            Report whose ``is_valid`` is False only for error-severity issues
        """
        environment = self.config.normalize_environment(environment)
        report = IntegrityReport(database_id=database_id, environment=environment, is_valid=True)

        migrations = await self.registry.list_migrations(connection, database_id)
        self._check_checksums(migrations, report)
        self._check_dependencies(migrations, report)
        await self._check_locks(connection, database_id, fix_drift, report)
        await self._check_schema_drift(connection, database_id, environment, report)
        await self._check_running_executions(connection, database_id, report)

        report.is_valid = not any(issue.severity == IssueSeverity.ERROR for issue in report.issues)

        log = self.logger.info if report.is_valid else self.logger.warning
        log(
            f"Integrity check of {database_id} ({environment}): "
            f"{len(report.issues)} issue(s), valid={report.is_valid}"
        )
        return report

    def _check_checksums(self, migrations: List[Migration], report: IntegrityReport) -> None:
        for migration in migrations:
            actual = calculate_checksum(migration.up_script)
            if actual == migration.checksum:
                continue

            report.checksum_mismatches.append(ChecksumMismatch(
                migration_id=migration.migration_id,
                expected_checksum=migration.checksum,
                actual_checksum=actual,
            ))
            report.issues.append(IntegrityIssue(
                issue_type=IssueType.CHECKSUM_MISMATCH,
                severity=IssueSeverity.ERROR,
                message=f"Checksum mismatch for migration {migration.migration_id}; the script may have been modified",
                recommendation="Re-register migration or investigate script tampering",
                migration_id=migration.migration_id,
                details={'expected_checksum': migration.checksum, 'actual_checksum': actual},
            ))

    def _check_dependencies(self, migrations: List[Migration], report: IntegrityReport) -> None:
        registered = {migration.migration_id for migration in migrations}
        for migration in migrations:
            missing = [dependency for dependency in migration.depends_on if dependency not in registered]
            if not missing:
                continue

            report.issues.append(IntegrityIssue(
                issue_type=IssueType.MISSING_MIGRATION,
                severity=IssueSeverity.WARNING,
                message=f"Migration {migration.migration_id} depends on unregistered migration(s): {', '.join(missing)}",
                recommendation="Register the missing migrations or correct the dependency list",
                migration_id=migration.migration_id,
                details={'missing_dependencies': missing},
            ))

    async def _check_locks(
        self,
        connection: DatabaseConnection,
        database_id: str,
        fix_drift: bool,
        report: IntegrityReport
    ) -> None:
        now = utc_now()
        for lock in await self.lock_manager.find_expired(connection, database_id, now=now):
            removed = fix_drift and await self.lock_manager.remove_expired(connection, lock, now=now)
            if removed:
                report.locks_removed += 1

            report.issues.append(IntegrityIssue(
                issue_type=IssueType.LOCK_EXPIRED,
                severity=IssueSeverity.WARNING,
                message=f"Migration lock for {database_id} held by {lock.locked_by} expired at "
                        f"{format_timestamp(lock.expires_at)}",
                recommendation="Lock removed" if removed else "Release the expired lock",
                details={
                    'database_id': database_id,
                    'locked_by': lock.locked_by,
                    'locked_at': format_timestamp(lock.locked_at),
                    'expires_at': format_timestamp(lock.expires_at),
                    'lock_reason': lock.lock_reason,
                    'removed': removed,
                },
            ))

        # Locks of other databases are reported but only reclaimed when that database is verified
        for lock in await self.lock_manager.find_expired_elsewhere(connection, database_id, now=now):
            report.issues.append(IntegrityIssue(
                issue_type=IssueType.LOCK_EXPIRED,
                severity=IssueSeverity.WARNING,
                message=f"Migration lock for {lock.database_id} held by {lock.locked_by} expired at "
                        f"{format_timestamp(lock.expires_at)}",
                recommendation=f"Verify {lock.database_id} with fix_drift to remove the expired lock",
                details={
                    'database_id': lock.database_id,
                    'locked_by': lock.locked_by,
                    'locked_at': format_timestamp(lock.locked_at),
                    'expires_at': format_timestamp(lock.expires_at),
                    'lock_reason': lock.lock_reason,
                    'removed': False,
                },
            ))

    async def _check_schema_drift(
        self,
        connection: DatabaseConnection,
        database_id: str,
        environment: str,
        report: IntegrityReport
    ) -> None:
        snapshot = await self.snapshots.get_latest_snapshot(connection, database_id, environment)
        if snapshot is None:
            return

        actual_hash = await self.snapshots.current_hash(connection)
        if actual_hash == snapshot.schema_hash:
            return

        report.schema_drift = SchemaDrift(
            snapshot_id=snapshot.snapshot_id,
            expected_hash=snapshot.schema_hash,
            actual_hash=actual_hash,
            snapshot_captured_at=snapshot.captured_at,
        )
        report.issues.append(IntegrityIssue(
            issue_type=IssueType.SCHEMA_DRIFT,
            severity=IssueSeverity.WARNING,
            message=f"Schema of {database_id} ({environment}) differs from snapshot {snapshot.snapshot_id}",
            recommendation="Capture a new snapshot or investigate manual schema changes",
            details={
                'snapshot_id': snapshot.snapshot_id,
                'expected_hash': snapshot.schema_hash,
                'actual_hash': actual_hash,
            },
        ))

    async def _check_running_executions(
        self,
        connection: DatabaseConnection,
        database_id: str,
        report: IntegrityReport
    ) -> None:
        active = await self.lock_manager.get_lock(connection, database_id)
        if active is not None and not active.is_expired():
            # A live run owns its running records
            return

        for record in await self.history.list_running(connection, database_id):
            report.issues.append(IntegrityIssue(
                issue_type=IssueType.ORPHANED_RECORD,
                severity=IssueSeverity.INFO,
                message=f"Execution {record.execution_id} of {record.migration_id} ({record.environment}) "
                        f"never completed",
                recommendation="Check the target database and re-run or roll back the migration",
                migration_id=record.migration_id,
                details={
                    'execution_id': record.execution_id,
                    'started_at': format_timestamp(record.started_at),
                    'executor': record.executor,
                },
            ))
