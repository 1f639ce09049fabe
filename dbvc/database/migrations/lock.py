"""
Per-database migration lock.

A lock is a row in the metadata store keyed by database id with a TTL.
Acquisition inserts the row only when no row exists and never retries.
A row past its expiry still blocks acquisition; only the integrity
verifier removes expired rows.

Author: DBVC Engine
Version: 0.1.0
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, List, Optional

from ...utils import format_timestamp, utc_now
from ..adapters.base import DatabaseAdapter, DatabaseConnection
from ..exceptions import DatabaseError
from . import queries
from .base import MigrationLockInfo
from .config import MigrationConfig
from .exceptions import LockAcquisitionError


class LockManager:
    """Acquires and releases migration locks through the metadata store."""

    def __init__(self, adapter: DatabaseAdapter, config: MigrationConfig):
        self.adapter = adapter
        self.config = config
        self.logger = logging.getLogger(__name__)

    async def acquire(
        self,
        connection: DatabaseConnection,
        database_id: str,
        locked_by: str,
        reason: Optional[str] = None
    ) -> bool:
        """Try once to take the lock for ``database_id``."""
        acquired = await self.adapter.acquire_lock(
            connection,
            database_id,
            locked_by,
            self.config.lock_timeout_minutes,
            reason=reason
        )
        if acquired:
            self.logger.info(f"Migration lock acquired for {database_id} by {locked_by}")
        else:
            self.logger.warning(f"Migration lock for {database_id} is already held")
        return acquired

    async def release(self, connection: DatabaseConnection, database_id: str, locked_by: str) -> None:
        await self.adapter.release_lock(connection, database_id, locked_by)
        self.logger.info(f"Migration lock released for {database_id} by {locked_by}")

    async def get_lock(self, connection: DatabaseConnection, database_id: str) -> Optional[MigrationLockInfo]:
        row = await self.adapter.fetch_one(connection, queries.SELECT_LOCK, {'database_id': database_id})
        return MigrationLockInfo.from_row(row) if row else None

    async def find_expired(
        self,
        connection: DatabaseConnection,
        database_id: str,
        now: Optional[datetime] = None
    ) -> List[MigrationLockInfo]:
        rows = await self.adapter.fetch_all(
            connection,
            queries.SELECT_EXPIRED_LOCKS,
            {'database_id': database_id, 'now': format_timestamp(now or utc_now())}
        )
        return [MigrationLockInfo.from_row(row) for row in rows]

    async def find_expired_elsewhere(
        self,
        connection: DatabaseConnection,
        database_id: str,
        now: Optional[datetime] = None
    ) -> List[MigrationLockInfo]:
        """Expired locks held on every database except ``database_id``."""
        rows = await self.adapter.fetch_all(
            connection,
            queries.SELECT_EXPIRED_LOCKS_ELSEWHERE,
            {'database_id': database_id, 'now': format_timestamp(now or utc_now())}
        )
        return [MigrationLockInfo.from_row(row) for row in rows]

    async def remove_expired(
        self,
        connection: DatabaseConnection,
        lock: MigrationLockInfo,
        now: Optional[datetime] = None
    ) -> bool:
        """Delete an expired lock row. A row that was renewed in the meantime is left alone."""
        result = await self.adapter.execute_query(
            connection,
            queries.DELETE_EXPIRED_LOCK,
            {
                'database_id': lock.database_id,
                'locked_by': lock.locked_by,
                'now': format_timestamp(now or utc_now()),
            }
        )
        removed = result.rows_affected > 0
        if removed:
            self.logger.warning(
                f"Reclaimed expired migration lock for {lock.database_id} "
                f"(held by {lock.locked_by}, expired {format_timestamp(lock.expires_at)})"
            )
        return removed

    @asynccontextmanager
    async def hold(
        self,
        connection: DatabaseConnection,
        database_id: str,
        locked_by: str,
        reason: Optional[str] = None
    ) -> AsyncGenerator[None, None]:
        """
        Hold the lock for the body of the block.

        Raises:
            LockAcquisitionError: If the lock is held, expired or not
        """
        if not await self.acquire(connection, database_id, locked_by, reason=reason):
            current = await self.get_lock(connection, database_id)
            holder = current.locked_by if current else None
            expires_at = format_timestamp(current.expires_at) if current else None
            raise LockAcquisitionError(
                f"Migration lock for database '{database_id}' is held by {holder or 'another run'}",
                database_id=database_id,
                lock_holder=holder,
                expires_at=expires_at
            )

        try:
            yield
        finally:
            try:
                await self.release(connection, database_id, locked_by)
            except DatabaseError as e:
                # Lock expires on its own; the operation result stands
                self.logger.error(f"Failed to release migration lock for {database_id}: {e}")
