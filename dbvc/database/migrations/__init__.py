"""
Migration engine of the database version control engine.

Features:
- Migration registry with checksums and a document store mirror
- Forward runs in id order with dependencies, targets and dry runs
- Transactional rollback of single migrations
- Per-database migration locks with a TTL
- Status reports across environments
- Schema snapshots and integrity verification

Author: DBVC Engine
Version: 0.1.0
"""

from .base import (
    AppliedStatus,
    CaptureType,
    ChangeEvent,
    ChangeEventType,
    ChecksumMismatch,
    CreateMigrationResult,
    DatabaseStatus,
    EntityType,
    EnvironmentStatus,
    ExecutedMigration,
    ExecutionContext,
    ExecutionMode,
    ExecutionRecord,
    ExecutionStatus,
    IntegrityIssue,
    IntegrityReport,
    IssueSeverity,
    IssueType,
    Migration,
    MigrationLockInfo,
    MigrationStatusItem,
    RollbackResult,
    RunMigrationsResult,
    SchemaDrift,
    SchemaSnapshot,
    SkipReason,
    SnapshotResult,
    StatusReport,
)
from .config import MigrationConfig
from .exceptions import (
    ChecksumMismatchError,
    DependencyUnmetError,
    InvalidMigrationIdError,
    LockAcquisitionError,
    MigrationError,
    MigrationNotFoundError,
    NonReversibleMigrationError,
    NotAppliedError,
    RegistrationError,
    SchemaDriftWarning,
    ScriptExecutionError,
)
from .history import ExecutionHistory
from .lock import LockManager
from .manager import MigrationManager
from .registry import MigrationRegistry
from .snapshot import SchemaSnapshotCapturer
from .status import StatusReporter
from .validator import IntegrityVerifier

__all__ = [
    # Core classes
    "MigrationConfig",
    "MigrationRegistry",
    "MigrationManager",
    "ExecutionHistory",
    "LockManager",
    "StatusReporter",
    "SchemaSnapshotCapturer",
    "IntegrityVerifier",

    # Records and results
    "Migration",
    "AppliedStatus",
    "ExecutionRecord",
    "ExecutionContext",
    "ExecutedMigration",
    "MigrationLockInfo",
    "SchemaSnapshot",
    "ChangeEvent",
    "CreateMigrationResult",
    "RunMigrationsResult",
    "RollbackResult",
    "MigrationStatusItem",
    "DatabaseStatus",
    "StatusReport",
    "SnapshotResult",
    "ChecksumMismatch",
    "SchemaDrift",
    "IntegrityIssue",
    "IntegrityReport",

    # Enums
    "ExecutionMode",
    "ExecutionStatus",
    "ChangeEventType",
    "CaptureType",
    "EntityType",
    "SkipReason",
    "EnvironmentStatus",
    "IssueType",
    "IssueSeverity",

    # Exceptions
    "MigrationError",
    "RegistrationError",
    "InvalidMigrationIdError",
    "LockAcquisitionError",
    "MigrationNotFoundError",
    "NonReversibleMigrationError",
    "NotAppliedError",
    "ScriptExecutionError",
    "ChecksumMismatchError",
    "SchemaDriftWarning",
    "DependencyUnmetError",
]
