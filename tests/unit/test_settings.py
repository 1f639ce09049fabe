"""
Unit tests for process settings and migration configuration.
"""

import pytest
from pydantic import ValidationError

from dbvc.config import DBVCSettings
from dbvc.database.adapters import InMemoryDocumentStore, MongoDocumentStore, SQLiteAdapter
from dbvc.database.config import DocumentStoreConfig
from dbvc.database.migrations.config import MigrationConfig
from dbvc.exceptions import SettingsError
from dbvc.service import MigrationService


class TestMigrationConfig:
    """Test cases for MigrationConfig."""

    def test_defaults(self):
        """Test default configuration."""
        config = MigrationConfig()
        assert config.lock_timeout_minutes == 30
        assert config.known_environments == ["dev", "prod"]
        assert config.migrations_path == "migrations/versioned"

    def test_environment_aliases(self):
        """Test environment normalization."""
        config = MigrationConfig()
        assert config.normalize_environment("Production") == "prod"
        assert config.normalize_environment("staging") == "dev"
        assert config.normalize_environment("development") == "dev"
        assert config.normalize_environment("qa") == "qa"

    def test_empty_environment(self):
        """Test that an empty environment is rejected."""
        with pytest.raises(ValueError):
            MigrationConfig().normalize_environment("  ")

    def test_invalid_values(self):
        """Test validation of numeric and list fields."""
        with pytest.raises(ValidationError):
            MigrationConfig(lock_timeout_minutes=0)
        with pytest.raises(ValidationError):
            MigrationConfig(known_environments=[])


class TestDBVCSettings:
    """Test cases for environment driven settings."""

    def test_environment_variables(self, monkeypatch, tmp_path):
        """Test reading DBVC_ variables."""
        monkeypatch.setenv("DBVC_SQLITE_PATH", str(tmp_path / "meta.db"))
        monkeypatch.setenv("DBVC_LOCK_TIMEOUT_MINUTES", "7")
        monkeypatch.setenv("DBVC_LOG_LEVEL", "debug")

        settings = DBVCSettings(_env_file=None)

        assert settings.sqlite_path == str(tmp_path / "meta.db")
        assert settings.log_level == "DEBUG"
        assert settings.migration_config().lock_timeout_minutes == 7
        assert settings.database_config().database == str(tmp_path / "meta.db")
        assert settings.document_store_config() is None

    @pytest.mark.parametrize("name,expected", [
        ("production", "prod"),
        ("PROD", "prod"),
        ("staging", "dev"),
        ("stage", "dev"),
        ("anything-else", "dev"),
    ])
    def test_resolve_environment(self, name, expected):
        """Test process environment resolution."""
        assert DBVCSettings(_env_file=None, environment=name).resolve_environment() == expected

    def test_invalid_log_level(self):
        """Test log level validation."""
        with pytest.raises(ValidationError):
            DBVCSettings(_env_file=None, log_level="verbose")

    def test_document_store_config(self):
        """Test MongoDB configuration."""
        settings = DBVCSettings(_env_file=None, document_store_url="mongodb://localhost:27017")
        config = settings.document_store_config()
        assert isinstance(config, DocumentStoreConfig)
        assert config.collection == "version-control"

    def test_document_store_url_scheme(self):
        """Test that only MongoDB URLs are accepted."""
        settings = DBVCSettings(_env_file=None, document_store_url="http://localhost")
        with pytest.raises(ValidationError):
            settings.document_store_config()


class TestServiceFromSettings:
    """Test cases for building the service from settings."""

    def test_in_memory_backup_store(self, tmp_path):
        """Test the fallback document store."""
        service = MigrationService.from_settings(DBVCSettings(_env_file=None, sqlite_path=str(tmp_path / "m.db")))
        assert isinstance(service.adapter, SQLiteAdapter)
        assert isinstance(service.document_store, InMemoryDocumentStore)

    def test_mongo_backup_store(self, tmp_path):
        """Test that a MongoDB URL selects the MongoDB store."""
        service = MigrationService.from_settings(DBVCSettings(
            _env_file=None,
            sqlite_path=str(tmp_path / "m.db"),
            document_store_url="mongodb://localhost:27017",
        ))
        assert isinstance(service.document_store, MongoDocumentStore)
        assert not service.document_store.is_connected

    def test_invalid_settings(self):
        """Test that invalid derived configuration is reported as SettingsError."""
        settings = DBVCSettings(_env_file=None, document_store_url="http://localhost")
        with pytest.raises(SettingsError):
            MigrationService.from_settings(settings)
