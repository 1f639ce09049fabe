"""
Checksum and identifier utilities for the migration engine.

Migration ids have the form ``YYYYMMDD_HHMMSS_ffffff_<name>`` (UTC). Ids
issued by one process are strictly increasing, so lexicographic order of
ids equals registration order.

Author: DBVC Engine
Version: 0.1.0
"""

import hashlib
import json
import re
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, NamedTuple, Optional

_MIGRATION_ID_PATTERN = re.compile(r"^(\d{8})_(\d{6})(?:_(\d{6}))?_([a-z0-9_]+)$")
_WHITESPACE = re.compile(r"\s+")
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9_]")

DEFAULT_NAME = "migration"


class _MonotonicClock:
    """UTC clock that never returns the same instant twice."""

    def __init__(self):
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def next(self, now: Optional[datetime] = None) -> datetime:
        with self._lock:
            current = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current


_migration_clock = _MonotonicClock()
_snapshot_clock = _MonotonicClock()


class ParsedMigrationId(NamedTuple):
    timestamp: Optional[datetime]
    name: str
    is_valid: bool


def sanitize_name(name: str, max_length: int = 50) -> str:
    """Lower-case, join words with underscores, drop other characters and truncate."""
    sanitized = _WHITESPACE.sub("_", name.strip().lower())
    sanitized = _INVALID_NAME_CHARS.sub("", sanitized)[:max_length]
    return sanitized or DEFAULT_NAME


def generate_migration_id(name: str, now: Optional[datetime] = None, max_name_length: int = 50) -> str:
    """
    Generate a time-ordered migration id.

    Args:
        name: Human readable migration name
        now: Registration time, defaults to the current UTC time
        max_name_length: Maximum length of the name part

    Returns:
        Migration id such as ``20251127_143000_000123_add_users_table``
    """
    issued = _migration_clock.next(now)
    return f"{issued:%Y%m%d_%H%M%S_%f}_{sanitize_name(name, max_name_length)}"


def generate_snapshot_id(database_id: str, now: Optional[datetime] = None) -> str:
    """Generate a snapshot id such as ``snapshot_maindb_20251127143000000123``."""
    issued = _snapshot_clock.next(now)
    return f"snapshot_{database_id}_{issued:%Y%m%d%H%M%S%f}"


def parse_migration_id(migration_id: str) -> ParsedMigrationId:
    """Split a migration id into its timestamp and name."""
    match = _MIGRATION_ID_PATTERN.match(migration_id)
    if not match:
        return ParsedMigrationId(timestamp=None, name=migration_id, is_valid=False)

    date_part, time_part, micro_part, name = match.groups()
    try:
        timestamp = datetime.strptime(
            f"{date_part}{time_part}{micro_part or '000000'}", "%Y%m%d%H%M%S%f"
        ).replace(tzinfo=timezone.utc)
    except ValueError:
        return ParsedMigrationId(timestamp=None, name=name, is_valid=False)

    return ParsedMigrationId(timestamp=timestamp, name=name, is_valid=True)


def is_valid_migration_id(migration_id: str) -> bool:
    return parse_migration_id(migration_id).is_valid


def calculate_checksum(content: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def canonical_json(value: Any) -> str:
    """Serialize with sorted keys and no insignificant whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def calculate_schema_hash(schema_definition: Any) -> str:
    """Hash of the canonical serialization of a schema definition."""
    return calculate_checksum(canonical_json(schema_definition))


def storage_path(migration_id: str, base_path: str = "migrations/versioned") -> str:
    """Conventional location of a migration script."""
    return f"{base_path.rstrip('/')}/{migration_id}.sql"


def up_script_template(migration_id: str, description: str, author: str, created_at: datetime) -> str:
    """Placeholder forward script; comments only, so it executes as a no-op."""
    return (
        f"-- Migration: {migration_id}\n"
        f"-- Description: {description}\n"
        f"-- Author: {author}\n"
        f"-- Created: {created_at:%Y-%m-%d %H:%M:%S} UTC\n"
        f"--\n"
        f"-- Write the forward schema change below.\n"
    )


def down_script_template(migration_id: str, description: str, author: str, created_at: datetime) -> str:
    """Placeholder rollback script; comments only, so it executes as a no-op."""
    return (
        f"-- Rollback: {migration_id}\n"
        f"-- Reverts: {description}\n"
        f"-- Author: {author}\n"
        f"-- Created: {created_at:%Y-%m-%d %H:%M:%S} UTC\n"
        f"--\n"
        f"-- Write the statements that undo {migration_id} below.\n"
    )
