"""
Process settings for the database version control engine.

Settings are read from environment variables prefixed with ``DBVC_``
(or a ``.env`` file) and turned into the store and migration
configuration objects used by the service.

Author: DBVC Engine
Version: 0.1.0
"""

import logging
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database.config import DatabaseConnectionConfig, DatabaseEngine, DocumentStoreConfig
from .database.migrations.config import MigrationConfig


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Process-level environment names, as accepted from DBVC_ENVIRONMENT
PROCESS_ENVIRONMENT_ALIASES: Dict[str, str] = {
    "production": "prod",
    "prod": "prod",
    "staging": "dev",
    "stage": "dev",
    "development": "dev",
    "dev": "dev",
}


class DBVCSettings(BaseSettings):
    """Environment driven settings."""

    model_config = SettingsConfigDict(
        env_prefix="DBVC_",
        env_file=".env",
        extra="ignore",
    )

    environment: str = Field(default="dev", description="Deployment environment of this process")
    sqlite_path: str = Field(default="dbvc.sqlite3", description="Path of the relational metadata store")

    document_store_url: Optional[str] = Field(
        default=None,
        description="MongoDB connection URL; the in-process store is used when unset"
    )
    document_database: str = Field(default="dbvc", description="Document store database name")
    document_container: str = Field(default="version-control", description="Document store collection name")

    lock_timeout_minutes: int = Field(default=30, description="Migration lock TTL in minutes")
    transaction_timeout_seconds: int = Field(
        default=300,
        description="Seconds a transaction waits on a locked metadata store before failing"
    )
    migrations_path: str = Field(default="migrations/versioned", description="Conventional script storage path")

    log_level: str = Field(default="INFO", description="Root logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("lock_timeout_minutes", "transaction_timeout_seconds")
    @classmethod
    def validate_positive(cls, v):
        """Validate positive timeouts."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    def resolve_environment(self) -> str:
        """Map the configured environment name onto a tracked environment."""
        return PROCESS_ENVIRONMENT_ALIASES.get(self.environment.strip().lower(), "dev")

    def database_config(self) -> DatabaseConnectionConfig:
        """Build the relational metadata store configuration."""
        return DatabaseConnectionConfig(
            engine=DatabaseEngine.SQLITE,
            database=self.sqlite_path,
            connection_timeout=float(self.transaction_timeout_seconds),
        )

    def document_store_config(self) -> Optional[DocumentStoreConfig]:
        """Build the document store configuration, if one is configured."""
        if not self.document_store_url:
            return None
        return DocumentStoreConfig(
            url=self.document_store_url,
            database=self.document_database,
            collection=self.document_container,
        )

    def migration_config(self) -> MigrationConfig:
        """Build the migration engine configuration."""
        return MigrationConfig(
            lock_timeout_minutes=self.lock_timeout_minutes,
            migrations_path=self.migrations_path,
            document_container=self.document_container,
        )


_logging_configured = False


def configure_logging(settings: Optional[DBVCSettings] = None) -> None:
    """
    Configure process logging.

    Should be called once at application start; repeated calls are ignored.

    Args:
        settings: Settings to read the log level from. Defaults are used if None.
    """
    global _logging_configured

    if _logging_configured:
        return

    if settings is None:
        settings = DBVCSettings()

    logging.basicConfig(
        level=settings.log_level,
        format=LOG_FORMAT
    )

    _logging_configured = True
