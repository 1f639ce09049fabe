"""
Unit tests for MigrationManager forward runs and rollbacks.
"""

from unittest.mock import AsyncMock

import pytest

from dbvc.database.exceptions import DocumentStoreError
from dbvc.database.migrations.base import (
    ExecutionContext, ExecutionMode, ExecutionStatus, SkipReason
)
from dbvc.database.migrations.exceptions import (
    InvalidMigrationIdError,
    LockAcquisitionError,
    MigrationNotFoundError,
    NonReversibleMigrationError,
    NotAppliedError,
)


async def _table_names(service):
    async with service.adapter.connection() as conn:
        rows = await service.adapter.fetch_all(
            conn, "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        )
    return [row['name'] for row in rows]


class TestRunMigrations:
    """Test cases for forward runs."""

    @pytest.mark.asyncio
    async def test_applies_in_order(self, service):
        """Test that pending migrations run in ascending id order."""
        users = await service.create_migration(
            "app", "create users", "dev", up_script="CREATE TABLE users (id INTEGER PRIMARY KEY);"
        )
        orders = await service.create_migration(
            "app", "create orders", "dev",
            up_script="CREATE TABLE orders (id INTEGER PRIMARY KEY, user_id INTEGER REFERENCES users(id));"
        )

        result = await service.run_migrations("app", "dev", "ci")

        assert result.success
        assert result.executed_ids == [users.migration_id, orders.migration_id]
        assert all(entry.status == ExecutionStatus.SUCCESS for entry in result.executed_migrations)
        assert result.skipped_migrations == []
        assert result.total_duration_ms >= 0
        assert {"users", "orders"} <= set(await _table_names(service))

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, service):
        """Test that applied migrations are not executed again."""
        await service.create_migration("app", "t", "dev", up_script="CREATE TABLE t (id INTEGER);")
        await service.run_migrations("app", "dev", "ci")

        result = await service.run_migrations("app", "dev", "ci")

        assert result.success
        assert result.executed_migrations == []

    @pytest.mark.asyncio
    async def test_environments_are_independent(self, service):
        """Test that applying in dev leaves prod pending."""
        created = await service.create_migration("app", "noop", "dev", up_script="SELECT 1;")
        await service.run_migrations("app", "development", "ci")

        result = await service.run_migrations("app", "production", "ci")

        assert result.environment == "prod"
        assert result.executed_ids == [created.migration_id]

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, service):
        """Test fail-fast behavior and the failed record."""
        good = await service.create_migration("app", "good", "dev", up_script="CREATE TABLE good (id INTEGER);")
        bad = await service.create_migration(
            "app", "bad", "dev",
            up_script="CREATE TABLE half (id INTEGER); INSERT INTO no_such_table VALUES (1);"
        )
        later = await service.create_migration("app", "later", "dev", up_script="CREATE TABLE later (id INTEGER);")

        result = await service.run_migrations("app", "dev", "ci")

        assert not result.success
        assert result.failed_migration_id == bad.migration_id
        assert result.executed_ids == [good.migration_id, bad.migration_id]
        assert result.executed_migrations[1].status == ExecutionStatus.FAILED
        assert "no_such_table" in result.error
        assert later.migration_id not in result.executed_ids
        assert later.migration_id not in result.skipped_migrations

        tables = await _table_names(service)
        assert "good" in tables
        assert "half" not in tables
        assert "later" not in tables

        [record] = await service.list_executions("app", migration_id=bad.migration_id)
        assert record.status == ExecutionStatus.FAILED
        assert "no_such_table" in record.error_message

        migration = await service.get_migration(bad.migration_id, "app")
        async with service.adapter.connection() as conn:
            assert not await service.history.is_applied(conn, migration.migration_id, "app", "dev")

    @pytest.mark.asyncio
    async def test_script_error_naming_connections_table(self, service, document_store):
        """Test that a script error mentioning a *_connections table is a script failure."""
        bad = await service.create_migration(
            "app", "seed connections", "dev", up_script="INSERT INTO user_connections VALUES (1);"
        )

        result = await service.run_migrations("app", "dev", "ci")

        assert not result.success
        assert result.failed_migration_id == bad.migration_id
        assert "user_connections" in result.error

        [record] = await service.list_executions("app", migration_id=bad.migration_id)
        assert record.status == ExecutionStatus.FAILED
        assert "user_connections" in record.error_message

        events = await document_store.find_documents({'entityType': "change_event"})
        assert "failed" in [event['eventType'] for event in events if event['migrationId'] == bad.migration_id]

        async with service.adapter.connection() as conn:
            assert await service.lock_manager.get_lock(conn, "app") is None

    @pytest.mark.asyncio
    async def test_dependency_unmet_is_skipped(self, service):
        """Test that a migration with an unapplied dependency is skipped."""
        blocked = await service.create_migration(
            "app", "blocked", "dev", up_script="SELECT 1;",
            depends_on=["20000101_000000_000000_never_registered"]
        )
        free = await service.create_migration("app", "free", "dev", up_script="SELECT 1;")

        result = await service.run_migrations("app", "dev", "ci")

        assert result.success
        assert result.executed_ids == [free.migration_id]
        assert result.skip_reasons == {blocked.migration_id: SkipReason.DEPENDENCY_UNMET}

    @pytest.mark.asyncio
    async def test_dependency_applied_earlier_in_run(self, service):
        """Test that a dependency applied in the same run satisfies later migrations."""
        base = await service.create_migration("app", "base", "dev", up_script="SELECT 1;")
        child = await service.create_migration(
            "app", "child", "dev", up_script="SELECT 2;", depends_on=[base.migration_id]
        )

        result = await service.run_migrations("app", "dev", "ci")

        assert result.executed_ids == [base.migration_id, child.migration_id]

    @pytest.mark.asyncio
    async def test_target_migration(self, service):
        """Test that candidates after the target are skipped."""
        first = await service.create_migration("app", "first", "dev", up_script="SELECT 1;")
        second = await service.create_migration("app", "second", "dev", up_script="SELECT 2;")

        result = await service.run_migrations("app", "dev", "ci", target_migration_id=first.migration_id)

        assert result.executed_ids == [first.migration_id]
        assert result.skip_reasons == {second.migration_id: SkipReason.TARGET_EXCEEDED}

    @pytest.mark.asyncio
    async def test_invalid_target(self, service):
        """Test that a malformed target id is rejected."""
        with pytest.raises(InvalidMigrationIdError):
            await service.run_migrations("app", "dev", "ci", target_migration_id="latest")

    @pytest.mark.asyncio
    async def test_dry_run(self, service):
        """Test that a dry run executes nothing."""
        base = await service.create_migration("app", "base", "dev", up_script="CREATE TABLE dry (id INTEGER);")
        child = await service.create_migration(
            "app", "child", "dev", up_script="SELECT 1;", depends_on=[base.migration_id]
        )

        result = await service.run_migrations("app", "dev", "ci", dry_run=True)

        assert result.success and result.dry_run
        assert result.executed_migrations == []
        assert result.skipped_migrations == [base.migration_id, child.migration_id]
        assert set(result.skip_reasons.values()) == {SkipReason.DRY_RUN}
        assert "dry" not in await _table_names(service)
        assert await service.list_executions("app") == []

    @pytest.mark.asyncio
    async def test_lock_held(self, service):
        """Test that a held lock fails the run before anything executes."""
        await service.create_migration("app", "x", "dev", up_script="SELECT 1;")
        async with service.adapter.connection() as conn:
            await service.lock_manager.acquire(conn, "app", "someone-else")

        with pytest.raises(LockAcquisitionError):
            await service.run_migrations("app", "dev", "ci")
        assert await service.list_executions("app") == []

    @pytest.mark.asyncio
    async def test_lock_released_after_run(self, service):
        """Test that the lock does not outlive the run."""
        await service.create_migration("app", "bad", "dev", up_script="INSERT INTO missing VALUES (1);")
        await service.run_migrations("app", "dev", "ci")

        async with service.adapter.connection() as conn:
            assert await service.lock_manager.get_lock(conn, "app") is None

    @pytest.mark.asyncio
    async def test_execution_context_recorded(self, service, document_store):
        """Test that caller provenance lands on records and events."""
        created = await service.create_migration("app", "x", "dev", up_script="SELECT 1;")
        context = ExecutionContext(pipeline_run_id="run-7", commit_sha="abc123")

        await service.run_migrations("app", "dev", "ci", execution_context=context)

        [record] = await service.list_executions("app")
        assert record.execution_context == {'pipeline_run_id': "run-7", 'commit_sha': "abc123"}

        events = await document_store.find_documents({'entityType': "change_event"})
        assert sorted(event['eventType'] for event in events if event['migrationId'] == created.migration_id) \
            == ["completed", "started"]
        assert all(event['context']['pipeline_run_id'] == "run-7" for event in events)

    @pytest.mark.asyncio
    async def test_backup_outage_does_not_fail_run(self, service, document_store):
        """Test that change event failures are not fatal."""
        await service.create_migration("app", "x", "dev", up_script="SELECT 1;")
        document_store.create_document = AsyncMock(side_effect=DocumentStoreError("unavailable"))

        result = await service.run_migrations("app", "dev", "ci")

        assert result.success
        assert len(result.executed_migrations) == 1


class TestRollbackMigration:
    """Test cases for rollbacks."""

    @pytest.mark.asyncio
    async def test_rollback(self, service):
        """Test the rollback round trip."""
        created = await service.create_migration(
            "app", "widgets", "dev",
            up_script="CREATE TABLE widgets (id INTEGER);",
            down_script="DROP TABLE widgets;"
        )
        await service.run_migrations("app", "dev", "ci")

        result = await service.rollback_migration("app", "dev", "ci", created.migration_id)

        assert result.success
        assert result.execution_id is not None
        assert "widgets" not in await _table_names(service)

        records = await service.list_executions("app", migration_id=created.migration_id)
        assert [record.mode for record in records] == [ExecutionMode.FORWARD, ExecutionMode.ROLLBACK]
        assert records[1].execution_context == {'mode': "rollback"}

        again = await service.run_migrations("app", "dev", "ci")
        assert again.executed_ids == [created.migration_id]

    @pytest.mark.asyncio
    async def test_rollback_failure(self, service):
        """Test a failing down script."""
        created = await service.create_migration(
            "app", "x", "dev", up_script="SELECT 1;", down_script="DROP TABLE does_not_exist;"
        )
        await service.run_migrations("app", "dev", "ci")

        result = await service.rollback_migration("app", "dev", "ci", created.migration_id)

        assert not result.success
        assert "does_not_exist" in result.error
        async with service.adapter.connection() as conn:
            assert await service.history.is_applied(conn, created.migration_id, "app", "dev")

    @pytest.mark.asyncio
    async def test_rollback_failure_naming_connections_table(self, service):
        """Test that a down script error mentioning a *_connections table is reported, not raised."""
        created = await service.create_migration(
            "app", "x", "dev", up_script="SELECT 1;", down_script="DELETE FROM user_connections;"
        )
        await service.run_migrations("app", "dev", "ci")

        result = await service.rollback_migration("app", "dev", "ci", created.migration_id)

        assert not result.success
        assert "user_connections" in result.error
        records = await service.list_executions("app", migration_id=created.migration_id)
        assert records[-1].mode == ExecutionMode.ROLLBACK
        assert records[-1].status == ExecutionStatus.FAILED
        async with service.adapter.connection() as conn:
            assert await service.lock_manager.get_lock(conn, "app") is None

    @pytest.mark.asyncio
    async def test_not_applied(self, service):
        """Test rolling back a migration that never ran."""
        created = await service.create_migration("app", "x", "dev", up_script="SELECT 1;")
        with pytest.raises(NotAppliedError) as exc_info:
            await service.rollback_migration("app", "prod", "ci", created.migration_id)
        assert exc_info.value.environment == "prod"

    @pytest.mark.asyncio
    async def test_non_reversible(self, service):
        """Test rolling back a migration without a down script."""
        created = await service.create_migration("app", "x", "dev", up_script="SELECT 1;", irreversible=True)
        await service.run_migrations("app", "dev", "ci")
        with pytest.raises(NonReversibleMigrationError):
            await service.rollback_migration("app", "dev", "ci", created.migration_id)

    @pytest.mark.asyncio
    async def test_not_found(self, service):
        """Test rolling back an unregistered migration."""
        with pytest.raises(MigrationNotFoundError):
            await service.rollback_migration("app", "dev", "ci", "20240101_000000_000000_ghost")

    @pytest.mark.asyncio
    async def test_invalid_id(self, service):
        """Test rolling back with a malformed id."""
        with pytest.raises(InvalidMigrationIdError):
            await service.rollback_migration("app", "dev", "ci", "ghost")

    @pytest.mark.asyncio
    async def test_lock_released_after_error(self, service):
        """Test that a rejected rollback releases the lock."""
        with pytest.raises(MigrationNotFoundError):
            await service.rollback_migration("app", "dev", "ci", "20240101_000000_000000_ghost")
        async with service.adapter.connection() as conn:
            assert await service.lock_manager.get_lock(conn, "app") is None
