"""
Shared fixtures: a temporary SQLite metadata store, an in-process document
store and a connected migration service built on them.
"""

from datetime import timedelta

import pytest
import pytest_asyncio

from dbvc.database.adapters import InMemoryDocumentStore, SQLiteAdapter
from dbvc.database.config import DatabaseConnectionConfig
from dbvc.database.migrations.config import MigrationConfig
from dbvc.database.migrations.queries import METADATA_SCHEMA
from dbvc.service import MigrationService
from dbvc.utils import format_timestamp, utc_now


@pytest.fixture
def sqlite_path(tmp_path):
    """Path of a fresh metadata store file."""
    return str(tmp_path / "metadata.sqlite3")


@pytest.fixture
def adapter(sqlite_path):
    """Uninitialized SQLite adapter on a temporary file."""
    return SQLiteAdapter(DatabaseConnectionConfig(database=sqlite_path, connection_timeout=5.0))


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


@pytest.fixture
def migration_config():
    return MigrationConfig(lock_timeout_minutes=5)


@pytest_asyncio.fixture
async def metadata_adapter(adapter):
    """Initialized adapter with the metadata tables created."""
    await adapter.initialize()
    async with adapter.connection() as conn:
        async with adapter.transaction(conn):
            await adapter.execute_script(conn, METADATA_SCHEMA)
    yield adapter
    await adapter.shutdown()


@pytest_asyncio.fixture
async def service(adapter, document_store, migration_config):
    """Connected migration service."""
    svc = MigrationService(adapter, document_store, migration_config)
    await svc.connect()
    yield svc
    await svc.disconnect()


@pytest.fixture
def expire_lock(adapter):
    """Move the expiry of a held lock into the past."""
    async def _expire(database_id: str) -> None:
        async with adapter.connection() as conn:
            await adapter.execute_query(
                conn,
                "UPDATE migration_locks SET expires_at = :expires_at WHERE database_id = :database_id",
                {'expires_at': format_timestamp(utc_now() - timedelta(minutes=1)), 'database_id': database_id}
            )
    return _expire


@pytest.fixture
def tamper_up_script(adapter):
    """Rewrite a stored forward script without touching its checksum."""
    async def _tamper(migration_id: str, database_id: str, up_script: str) -> None:
        async with adapter.connection() as conn:
            await adapter.execute_query(
                conn,
                "UPDATE migration_registry SET up_script = :up_script "
                "WHERE migration_id = :migration_id AND database_id = :database_id",
                {'up_script': up_script, 'migration_id': migration_id, 'database_id': database_id}
            )
    return _tamper
