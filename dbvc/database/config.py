"""
Database Configuration for the database version control engine.

This module provides the configuration classes for the two storage
collaborators: the relational metadata store and the document backup store.

Author: DBVC Engine
Version: 0.1.0
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DatabaseEngine(str, Enum):
    """Supported database engines."""
    SQLITE = "sqlite"
    MONGODB = "mongodb"
    MEMORY = "memory"


class JournalMode(str, Enum):
    """SQLite journal modes."""
    DELETE = "DELETE"
    WAL = "WAL"
    MEMORY = "MEMORY"


class DatabaseConnectionConfig(BaseModel):
    """Configuration for the relational metadata store connection."""

    model_config = ConfigDict(use_enum_values=False)

    engine: DatabaseEngine = DatabaseEngine.SQLITE
    database: str = Field(description="Database file path, or ':memory:'")
    name: Optional[str] = Field(default=None, description="Logical name used in error reports")

    connection_timeout: float = Field(default=30.0, description="Seconds to wait on a locked database file")
    journal_mode: JournalMode = JournalMode.WAL
    foreign_keys: bool = True

    @field_validator("connection_timeout")
    @classmethod
    def validate_connection_timeout(cls, v):
        """Validate connection timeout."""
        if v <= 0:
            raise ValueError("connection_timeout must be positive")
        return v

    @property
    def display_name(self) -> str:
        """Name used in logs and error contexts."""
        return self.name or self.database

    @property
    def is_memory(self) -> bool:
        """Check if this is an in-memory database."""
        return self.database == ":memory:"


class DocumentStoreConfig(BaseModel):
    """Configuration for the document backup store."""

    url: str = Field(description="MongoDB connection URL")
    database: str = Field(default="dbvc", description="Database name")
    collection: str = Field(default="version-control", description="Single logical collection for all entities")
    server_selection_timeout_ms: int = Field(default=30000, description="Server selection timeout")
    connect_timeout_ms: int = Field(default=10000, description="Connection timeout")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        """Validate MongoDB URL scheme."""
        if not v.startswith(("mongodb://", "mongodb+srv://")):
            raise ValueError("url must start with mongodb:// or mongodb+srv://")
        return v

    @field_validator("collection", "database")
    @classmethod
    def validate_not_empty(cls, v):
        """Validate names are not empty."""
        if not v or not v.strip():
            raise ValueError("Value must not be empty")
        return v
