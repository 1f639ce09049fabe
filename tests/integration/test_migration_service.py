"""
Migration Service Integration Tests
End-to-end scenarios over a file-backed SQLite metadata store and an
in-process backup store.
"""

import asyncio

import pytest

from dbvc import DBVCSettings, MigrationService
from dbvc.database.adapters import InMemoryDocumentStore, SQLiteAdapter
from dbvc.database.config import DatabaseConnectionConfig
from dbvc.database.migrations.base import ExecutionStatus, IssueType, SkipReason
from dbvc.database.migrations.exceptions import LockAcquisitionError
from dbvc.database.migrations.utils import calculate_checksum


async def _tables(service):
    async with service.adapter.connection() as conn:
        rows = await service.adapter.fetch_all(
            conn, "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        )
    return {row['name'] for row in rows}


@pytest.mark.asyncio
async def test_checksum_matches_stored_script(service):
    """Registered checksum equals the hash of the stored forward script"""
    for name in ("one", "two", "three"):
        created = await service.create_migration("app", name, "dev", up_script=f"SELECT '{name}';")
        migration = await service.get_migration(created.migration_id, "app")
        assert migration.checksum == calculate_checksum(migration.up_script) == created.checksum


@pytest.mark.asyncio
async def test_second_run_executes_nothing(service):
    """Running twice with nothing new registered is a no-op"""
    await service.create_migration("app", "a", "dev", up_script="CREATE TABLE a (id INTEGER);")
    await service.create_migration("app", "b", "dev", up_script="CREATE TABLE b (id INTEGER);")

    first = await service.run_migrations("app", "dev", "ci")
    second = await service.run_migrations("app", "dev", "ci")

    assert len(first.executed_migrations) == 2
    assert second.success
    assert second.executed_migrations == []


@pytest.mark.asyncio
async def test_rollback_round_trip(service):
    """Apply, roll back and re-apply restores the same state"""
    created = await service.create_migration(
        "app", "customers", "dev",
        up_script="CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT);",
        down_script="DROP TABLE customers;"
    )
    before = await service.capture_schema_snapshot("app", "dev", "ci")

    await service.run_migrations("app", "dev", "ci")
    applied = await service.capture_schema_snapshot("app", "dev", "ci")
    rollback = await service.rollback_migration("app", "dev", "ci", created.migration_id)
    rolled_back = await service.capture_schema_snapshot("app", "dev", "ci")
    reapplied = await service.run_migrations("app", "dev", "ci")

    assert rollback.success
    assert rolled_back.schema_hash == before.schema_hash
    assert applied.schema_hash != before.schema_hash
    assert reapplied.executed_ids == [created.migration_id]

    status = (await service.get_migration_status("app", "dev")).get("app")
    assert status.applied_migrations == 1


@pytest.mark.asyncio
async def test_dependency_scenario(service):
    """B depends on A; one run applies both in order"""
    a = await service.create_migration("app", "a", "dev", up_script="CREATE TABLE parent (id INTEGER PRIMARY KEY);")
    b = await service.create_migration(
        "app", "b", "dev",
        up_script="CREATE TABLE child (id INTEGER PRIMARY KEY, parent_id INTEGER REFERENCES parent(id));",
        depends_on=[a.migration_id]
    )

    result = await service.run_migrations("app", "dev", "ci")

    assert result.success
    assert len(result.executed_migrations) == 2
    assert result.executed_ids == [a.migration_id, b.migration_id]


@pytest.mark.asyncio
async def test_dependency_unmet_scenario(service):
    """A migration whose dependency is not applied is skipped and stays pending"""
    orphan = await service.create_migration(
        "app", "orphan", "dev", up_script="SELECT 1;", depends_on=["20000101_000000_000000_missing"]
    )

    result = await service.run_migrations("app", "dev", "ci")

    assert result.success
    assert result.skipped_migrations == [orphan.migration_id]
    assert result.skip_reasons[orphan.migration_id] == SkipReason.DEPENDENCY_UNMET
    assert (await service.get_migration_status("app", "dev")).get("app").pending_migrations == 1


@pytest.mark.asyncio
async def test_fail_fast_scenario(service):
    """A run stops at the first failing script and reports nothing after it"""
    a = await service.create_migration("app", "a", "dev", up_script="CREATE TABLE first_ok (id INTEGER);")
    b = await service.create_migration("app", "b", "dev", up_script="CREATE TABLE second_ok (id INTEGER);")
    c = await service.create_migration("app", "c", "dev", up_script="THIS IS NOT SQL;")
    d = await service.create_migration("app", "d", "dev", up_script="CREATE TABLE never (id INTEGER);")

    result = await service.run_migrations("app", "dev", "ci")

    assert not result.success
    assert result.failed_migration_id == c.migration_id
    assert result.executed_ids == [a.migration_id, b.migration_id, c.migration_id]
    assert result.executed_migrations[-1].status == ExecutionStatus.FAILED
    assert d.migration_id not in result.executed_ids
    assert d.migration_id not in result.skipped_migrations
    assert "never" not in await _tables(service)

    retry = await service.run_migrations("app", "dev", "ci")
    assert retry.failed_migration_id == c.migration_id
    assert retry.executed_ids == [c.migration_id]


@pytest.mark.asyncio
async def test_lock_contention_and_reclaim(service, expire_lock):
    """A held lock blocks runs, even after expiry, until the verifier reclaims it"""
    await service.create_migration("app", "x", "dev", up_script="SELECT 1;")
    async with service.adapter.connection() as conn:
        assert await service.lock_manager.acquire(conn, "app", "crashed-runner")

    with pytest.raises(LockAcquisitionError) as exc_info:
        await service.run_migrations("app", "dev", "ci")
    assert exc_info.value.lock_holder == "crashed-runner"

    await expire_lock("app")
    with pytest.raises(LockAcquisitionError):
        await service.run_migrations("app", "dev", "ci")

    report = await service.verify_integrity("app", "dev", fix_drift=True)
    assert report.locks_removed == 1

    result = await service.run_migrations("app", "dev", "ci")
    assert result.success
    assert len(result.executed_migrations) == 1


@pytest.mark.asyncio
async def test_concurrent_runs_one_wins(adapter, document_store, migration_config):
    """Two services racing for the same database: one runs, one is refused"""
    first = MigrationService(adapter, document_store, migration_config)
    second = MigrationService(
        SQLiteAdapter(DatabaseConnectionConfig(database=adapter.config.database, connection_timeout=5.0)),
        InMemoryDocumentStore(),
        migration_config
    )
    async with first, second:
        await first.create_migration("app", "x", "dev", up_script="CREATE TABLE raced (id INTEGER);")

        outcomes = await asyncio.gather(
            first.run_migrations("app", "dev", "runner-1"),
            second.run_migrations("app", "dev", "runner-2"),
            return_exceptions=True
        )

        succeeded = [outcome for outcome in outcomes if not isinstance(outcome, Exception)]
        refused = [outcome for outcome in outcomes if isinstance(outcome, LockAcquisitionError)]
        assert len(succeeded) + len(refused) == 2
        assert sum(len(result.executed_migrations) for result in succeeded) == 1
        assert len(await first.list_executions("app")) == 1


@pytest.mark.asyncio
async def test_concurrent_runs_on_memory_store(migration_config):
    """Runs for two databases on one in-memory store both complete"""
    service = MigrationService(
        SQLiteAdapter(DatabaseConnectionConfig(database=":memory:")),
        InMemoryDocumentStore(),
        migration_config
    )
    async with service:
        for database_id in ("a", "b"):
            for name in ("first", "second"):
                await service.create_migration(
                    database_id, name, "dev", up_script=f"CREATE TABLE {database_id}_{name} (id INTEGER);"
                )

        results = await asyncio.wait_for(
            asyncio.gather(
                service.run_migrations("a", "dev", "runner-a"),
                service.run_migrations("b", "dev", "runner-b"),
            ),
            timeout=30
        )

        assert all(result.success for result in results)
        assert [len(result.executed_migrations) for result in results] == [2, 2]
        for database_id in ("a", "b"):
            records = await service.list_executions(database_id)
            assert len(records) == 2
            assert all(record.status == ExecutionStatus.SUCCESS for record in records)
        assert {"a_first", "a_second", "b_first", "b_second"} <= await _tables(service)


@pytest.mark.asyncio
async def test_tampering_detected_once(service, tamper_up_script):
    """Tampering with one script yields exactly one checksum issue"""
    created = [
        await service.create_migration("app", name, "dev", up_script=f"SELECT '{name}';")
        for name in ("a", "b", "c")
    ]
    await tamper_up_script(created[1].migration_id, "app", "DROP TABLE everything;")

    report = await service.verify_integrity("app", "dev")

    assert not report.is_valid
    issues = report.issues_of(IssueType.CHECKSUM_MISMATCH)
    assert len(issues) == 1
    assert issues[0].migration_id == created[1].migration_id


@pytest.mark.asyncio
async def test_drift_after_manual_change(service):
    """A schema change outside the engine is reported as drift"""
    await service.create_migration("app", "base", "dev", up_script="CREATE TABLE base (id INTEGER);")
    await service.run_migrations("app", "dev", "ci")
    await service.capture_schema_snapshot("app", "dev", "ci")

    async with service.adapter.connection() as conn:
        await service.adapter.execute_script(conn, "ALTER TABLE base ADD COLUMN hotfix TEXT;")

    report = await service.verify_integrity("app", "dev")
    assert report.is_valid
    assert report.schema_drift is not None

    await service.capture_schema_snapshot("app", "dev", "ci")
    assert (await service.verify_integrity("app", "dev")).schema_drift is None


@pytest.mark.asyncio
async def test_service_from_settings_lifecycle(tmp_path):
    """Settings-built service connects lazily and keeps state across instances"""
    settings = DBVCSettings(_env_file=None, sqlite_path=str(tmp_path / "dbvc.sqlite3"))

    service = MigrationService.from_settings(settings)
    assert not service.is_connected
    created = await service.create_migration("app", "x", "dev", up_script="CREATE TABLE kept (id INTEGER);")
    assert service.is_connected
    await service.run_migrations("app", "dev", "ci")

    health = await service.health_check()
    assert health['connected']
    assert health['metadata_store']['healthy']
    await service.disconnect()
    assert not service.is_connected

    async with MigrationService.from_settings(settings) as reopened:
        status = (await reopened.get_migration_status("app", "dev")).get("app")
        assert status.applied_migrations == 1
        assert status.migrations[0].migration_id == created.migration_id
        assert (await reopened.run_migrations("app", "dev", "ci")).executed_migrations == []
