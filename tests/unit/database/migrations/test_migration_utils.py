"""
Unit tests for migration id, checksum and template helpers.
"""

import hashlib
from datetime import datetime, timezone

import pytest

from dbvc.database.migrations import utils
from dbvc.database.migrations.utils import (
    calculate_checksum,
    calculate_schema_hash,
    down_script_template,
    generate_migration_id,
    generate_snapshot_id,
    is_valid_migration_id,
    parse_migration_id,
    sanitize_name,
    storage_path,
    up_script_template,
)
from dbvc.database.adapters import split_sql_script


@pytest.fixture(autouse=True)
def fresh_clocks(monkeypatch):
    """Keep explicit timestamps from leaking into ids issued by other tests."""
    monkeypatch.setattr(utils, "_migration_clock", utils._MonotonicClock())
    monkeypatch.setattr(utils, "_snapshot_clock", utils._MonotonicClock())


class TestMigrationIds:
    """Test cases for migration id generation and parsing."""

    def test_sanitize_name(self):
        """Test name normalization."""
        assert sanitize_name("Add Users Table!") == "add_users_table"
        assert sanitize_name("  trim  me ") == "trim_me"
        assert sanitize_name("***") == "migration"
        assert len(sanitize_name("x" * 80, max_length=50)) == 50

    def test_generate_migration_id_format(self):
        """Test the generated id layout."""
        now = datetime(2030, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)
        migration_id = generate_migration_id("Create Orders", now=now)

        assert migration_id == "20300102_030405_123456_create_orders"
        assert is_valid_migration_id(migration_id)

    def test_ids_sort_in_creation_order(self):
        """Test that ids from the same instant still sort by creation."""
        now = datetime(2031, 5, 6, 7, 8, 9, 0, tzinfo=timezone.utc)
        first = generate_migration_id("zzz", now=now)
        second = generate_migration_id("aaa", now=now)
        third = generate_migration_id("mmm", now=now)

        assert first < second < third

    def test_parse_migration_id(self):
        """Test splitting an id into timestamp and name."""
        parsed = parse_migration_id("20240115_143000_000123_add_users")
        assert parsed.is_valid
        assert parsed.name == "add_users"
        assert parsed.timestamp == datetime(2024, 1, 15, 14, 30, 0, 123, tzinfo=timezone.utc)

    def test_parse_id_without_microseconds(self):
        """Test ids with only seconds precision."""
        parsed = parse_migration_id("20240115_143000_add_users")
        assert parsed.is_valid
        assert parsed.name == "add_users"

    def test_invalid_ids(self):
        """Test rejected ids."""
        assert not is_valid_migration_id("add_users")
        assert not is_valid_migration_id("20241340_250000_bad_date")
        assert not is_valid_migration_id("20240115_143000_Upper")

    def test_snapshot_id(self):
        """Test the snapshot id layout."""
        now = datetime(2032, 1, 1, 0, 0, 0, 42, tzinfo=timezone.utc)
        assert generate_snapshot_id("app", now=now) == "snapshot_app_20320101000000000042"


class TestHashing:
    """Test cases for checksums and schema hashes."""

    def test_checksum_is_sha256(self):
        """Test checksum of the forward script."""
        script = "CREATE TABLE t (id INTEGER);"
        assert calculate_checksum(script) == hashlib.sha256(script.encode("utf-8")).hexdigest()

    def test_schema_hash_ignores_key_order(self):
        """Test canonical serialization."""
        first = {'tables': [{'name': "a", 'columns': []}], 'views': []}
        second = {'views': [], 'tables': [{'columns': [], 'name': "a"}]}
        assert calculate_schema_hash(first) == calculate_schema_hash(second)

    def test_schema_hash_changes_with_content(self):
        """Test that a schema change changes the hash."""
        assert calculate_schema_hash({'tables': []}) != calculate_schema_hash({'tables': [{'name': "a"}]})


class TestTemplates:
    """Test cases for placeholder scripts and storage paths."""

    def test_templates_are_comment_only(self):
        """Test that placeholder scripts execute as no-ops."""
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        up = up_script_template("20240101_000000_000000_x", "x", "dev", created)
        down = down_script_template("20240101_000000_000000_x", "x", "dev", created)

        assert "20240101_000000_000000_x" in up
        assert "Author: dev" in down
        assert split_sql_script(up) == []
        assert split_sql_script(down) == []

    def test_storage_path(self):
        """Test the conventional script location."""
        assert storage_path("20240101_000000_000000_x", "migrations/versioned/") == \
            "migrations/versioned/20240101_000000_000000_x.sql"
