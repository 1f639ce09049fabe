"""
DBVC Engine

Database version control: registers versioned migration scripts, applies
and rolls them back per database and environment under a per-database
lock, reports status, captures schema snapshots and verifies integrity.

Example usage:
    from dbvc import MigrationService, configure_logging

    configure_logging()
    async with MigrationService.from_settings() as service:
        await service.run_migrations("app", "dev", executor="ci")
"""

from .version import __version__, get_version, get_version_info
from .config import DBVCSettings, configure_logging
from .service import MigrationService
from .exceptions import DBVCError, SettingsError
from .database.exceptions import DatabaseError
from .database.migrations import (
    CaptureType,
    CreateMigrationResult,
    ExecutionContext,
    IntegrityReport,
    LockAcquisitionError,
    MigrationConfig,
    MigrationError,
    MigrationNotFoundError,
    NonReversibleMigrationError,
    NotAppliedError,
    RegistrationError,
    RollbackResult,
    RunMigrationsResult,
    SnapshotResult,
    StatusReport,
)

# Package metadata
__title__ = "dbvc-engine"
__license__ = "MIT"

VERSION_INFO = get_version_info()

__all__ = [
    # Version
    "__version__",
    "VERSION_INFO",
    "get_version",

    # Service and configuration
    "MigrationService",
    "MigrationConfig",
    "DBVCSettings",
    "configure_logging",

    # Inputs and results
    "ExecutionContext",
    "CaptureType",
    "CreateMigrationResult",
    "RunMigrationsResult",
    "RollbackResult",
    "StatusReport",
    "SnapshotResult",
    "IntegrityReport",

    # Exceptions
    "DBVCError",
    "SettingsError",
    "DatabaseError",
    "MigrationError",
    "RegistrationError",
    "LockAcquisitionError",
    "MigrationNotFoundError",
    "NonReversibleMigrationError",
    "NotAppliedError",
]
