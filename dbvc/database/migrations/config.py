"""
Migration configuration for the database version control engine.

Author: DBVC Engine
Version: 0.1.0
"""

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MigrationConfig(BaseModel):
    """Configuration for the migration engine."""

    model_config = ConfigDict(validate_assignment=True)

    # Locking
    lock_timeout_minutes: int = Field(
        default=30,
        description="Lifetime of a migration lock before it counts as expired"
    )

    # Naming and storage
    migrations_path: str = Field(
        default="migrations/versioned",
        description="Conventional storage location reported for registered scripts"
    )

    max_name_length: int = Field(
        default=50,
        description="Maximum length of the sanitized name part of a migration id"
    )

    document_container: str = Field(
        default="version-control",
        description="Name of the document store collection"
    )

    # Environments
    known_environments: List[str] = Field(
        default_factory=lambda: ["dev", "prod"],
        description="Environments always present in status maps"
    )

    environment_aliases: Dict[str, str] = Field(
        default_factory=lambda: {
            "production": "prod",
            "staging": "dev",
            "stage": "dev",
            "development": "dev",
        },
        description="Alternative environment names and the environment they map to"
    )

    # Execution records
    record_execution_context: bool = Field(
        default=True,
        description="Store the caller's execution context on execution records"
    )

    @field_validator('lock_timeout_minutes', 'max_name_length')
    @classmethod
    def validate_positive_int(cls, v):
        """Validate positive integer values."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator('known_environments')
    @classmethod
    def validate_known_environments(cls, v):
        """Validate environment list."""
        if not v:
            raise ValueError("At least one environment must be configured")
        return [env.strip().lower() for env in v]

    @field_validator('environment_aliases')
    @classmethod
    def validate_environment_aliases(cls, v):
        """Normalize alias keys and targets."""
        return {alias.strip().lower(): target.strip().lower() for alias, target in v.items()}

    def normalize_environment(self, environment: str) -> str:
        """
        Map an environment name onto its tracked name.

        Args:
            environment: Caller-supplied environment name

        Returns:
            The aliased name, or the lower-cased input when it has no alias
        """
        name = environment.strip().lower()
        if not name:
            raise ValueError("Environment must not be empty")
        return self.environment_aliases.get(name, name)
