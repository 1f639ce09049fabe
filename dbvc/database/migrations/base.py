"""
Data model for the migration engine.

This module defines the enums, stored records and operation results shared
by the registry, the execution engine, the status reporter, the snapshot
capturer and the integrity verifier.

Author: DBVC Engine
Version: 0.1.0
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from ...utils import format_timestamp, parse_timestamp, utc_now
from .exceptions import (
    ChecksumMismatchError, DependencyUnmetError, MigrationError, SchemaDriftWarning
)


class ExecutionMode(str, Enum):
    """Direction of a script execution."""
    FORWARD = "forward"
    ROLLBACK = "rollback"


class ExecutionStatus(str, Enum):
    """Lifecycle of an execution record."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ChangeEventType(str, Enum):
    """Types of append-only change events."""
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled-back"


class CaptureType(str, Enum):
    """Why a schema snapshot was taken."""
    AUTO = "auto"
    MANUAL = "manual"
    BASELINE = "baseline"


class EntityType(str, Enum):
    """Discriminator of documents in the backup store."""
    MIGRATION = "migration"
    SCHEMA_SNAPSHOT = "schema_snapshot"
    CHANGE_EVENT = "change_event"


class SkipReason(str, Enum):
    """Why a pending migration was not executed in a run."""
    TARGET_EXCEEDED = "target_exceeded"
    DEPENDENCY_UNMET = "dependency_unmet"
    DRY_RUN = "dry_run"


class EnvironmentStatus(str, Enum):
    """Per-environment state in a status report."""
    SUCCESS = "success"
    NOT_APPLIED = "not-applied"


class IssueType(str, Enum):
    """Integrity issue categories."""
    CHECKSUM_MISMATCH = "checksum_mismatch"
    MISSING_MIGRATION = "missing_migration"
    SCHEMA_DRIFT = "schema_drift"
    ORPHANED_RECORD = "orphaned_record"
    LOCK_EXPIRED = "lock_expired"


class IssueSeverity(str, Enum):
    """Integrity issue severities."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


def _to_plain(value: Any) -> Any:
    """Convert enums and datetimes for serialization."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, dict):
        return {key: _to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(item) for item in value]
    return value


def _load_json(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    return json.loads(value)


class ExecutionContext(BaseModel):
    """Caller supplied provenance of a run; unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    pipeline_run_id: Optional[str] = None
    commit_sha: Optional[str] = None
    branch: Optional[str] = None
    triggered_by: Optional[str] = None
    workflow_name: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    custom_data: Dict[str, Any] = {}

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude_defaults=True)


# Stored records


@dataclass
class Migration:
    """A registered migration. Immutable after creation."""
    migration_id: str
    database_id: str
    description: str
    author: str
    up_script: str
    down_script: Optional[str]
    checksum: str
    depends_on: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_reversible(self) -> bool:
        return self.down_script is not None

    @property
    def document_id(self) -> str:
        return f"{self.database_id}_{self.migration_id}"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Migration':
        return cls(
            migration_id=row['migration_id'],
            database_id=row['database_id'],
            description=row['description'],
            author=row['author'],
            up_script=row['up_script'],
            down_script=row['down_script'],
            checksum=row['checksum'],
            depends_on=_load_json(row.get('depends_on'), []),
            tags=_load_json(row.get('tags'), []),
            created_at=parse_timestamp(row['created_at']),
        )

    def to_document(self, storage_path: str) -> Dict[str, Any]:
        """Full body for the document backup store."""
        return {
            'id': self.document_id,
            'entityType': EntityType.MIGRATION.value,
            'partitionKey': self.database_id,
            'migrationId': self.migration_id,
            'databaseId': self.database_id,
            'description': self.description,
            'author': self.author,
            'upScript': self.up_script,
            'downScript': self.down_script,
            'checksum': self.checksum,
            'isReversible': self.is_reversible,
            'dependsOn': list(self.depends_on),
            'tags': list(self.tags),
            'storagePath': storage_path,
            'appliedEnvironments': {},
            'createdAt': format_timestamp(self.created_at),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = _to_plain(asdict(self))
        data['is_reversible'] = self.is_reversible
        return data


@dataclass
class AppliedStatus:
    """Whether a migration is applied in one environment."""
    migration_id: str
    database_id: str
    environment: str
    is_applied: bool
    applied_at: Optional[datetime] = None
    applied_by: Optional[str] = None
    last_execution_id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'AppliedStatus':
        return cls(
            migration_id=row['migration_id'],
            database_id=row['database_id'],
            environment=row['environment'],
            is_applied=bool(row['is_applied']),
            applied_at=parse_timestamp(row.get('applied_at')),
            applied_by=row.get('applied_by'),
            last_execution_id=row.get('last_execution_id'),
        )


@dataclass
class ExecutionRecord:
    """One attempt to run a script forward or backward."""
    execution_id: int
    migration_id: str
    database_id: str
    environment: str
    executor: str
    mode: ExecutionMode
    status: ExecutionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    execution_context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'ExecutionRecord':
        return cls(
            execution_id=row['id'],
            migration_id=row['migration_id'],
            database_id=row['database_id'],
            environment=row['environment'],
            executor=row['executor'],
            mode=ExecutionMode(row['execution_mode']),
            status=ExecutionStatus(row['status']),
            started_at=parse_timestamp(row['started_at']),
            completed_at=parse_timestamp(row.get('completed_at')),
            duration_ms=row.get('duration_ms'),
            error_message=row.get('error_message'),
            execution_context=_load_json(row.get('execution_context'), {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(asdict(self))


@dataclass
class MigrationLockInfo:
    """A lock row."""
    database_id: str
    locked_by: str
    locked_at: datetime
    expires_at: datetime
    lock_reason: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at < (now or utc_now())

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'MigrationLockInfo':
        return cls(
            database_id=row['database_id'],
            locked_by=row['locked_by'],
            locked_at=parse_timestamp(row['locked_at']),
            expires_at=parse_timestamp(row['expires_at']),
            lock_reason=row.get('lock_reason'),
        )


@dataclass
class SchemaSnapshot:
    """Point-in-time schema capture. ``schema_definition`` is only loaded from the document store."""
    snapshot_id: str
    database_id: str
    environment: str
    captured_at: datetime
    schema_hash: str
    capture_type: CaptureType
    captured_by: str
    triggering_migration_id: Optional[str] = None
    table_count: int = 0
    view_count: int = 0
    index_count: int = 0
    stored_procedure_count: int = 0
    document_id: Optional[str] = None
    schema_definition: Optional[Dict[str, List[Dict[str, Any]]]] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'SchemaSnapshot':
        return cls(
            snapshot_id=row['snapshot_id'],
            database_id=row['database_id'],
            environment=row['environment'],
            captured_at=parse_timestamp(row['captured_at']),
            schema_hash=row['schema_hash'],
            capture_type=CaptureType(row['capture_type']),
            captured_by=row['captured_by'],
            triggering_migration_id=row.get('triggering_migration_id'),
            table_count=row.get('table_count') or 0,
            view_count=row.get('view_count') or 0,
            index_count=row.get('index_count') or 0,
            stored_procedure_count=row.get('stored_procedure_count') or 0,
            document_id=row.get('document_id'),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': self.snapshot_id,
            'entityType': EntityType.SCHEMA_SNAPSHOT.value,
            'partitionKey': self.database_id,
            'snapshotId': self.snapshot_id,
            'databaseId': self.database_id,
            'environment': self.environment,
            'capturedAt': format_timestamp(self.captured_at),
            'capturedBy': self.captured_by,
            'captureType': self.capture_type.value,
            'triggeringMigrationId': self.triggering_migration_id,
            'schemaHash': self.schema_hash,
            'schemaDefinition': self.schema_definition,
        }


@dataclass
class ChangeEvent:
    """Append-only audit entry."""
    migration_id: str
    database_id: str
    event_type: ChangeEventType
    environment: str
    timestamp: datetime = field(default_factory=utc_now)
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_id(self) -> str:
        return f"{self.database_id}_{self.migration_id}_{self.event_type.value}_{self.timestamp:%Y%m%d%H%M%S%f}"

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': self.event_id,
            'entityType': EntityType.CHANGE_EVENT.value,
            'partitionKey': self.database_id,
            'migrationId': self.migration_id,
            'databaseId': self.database_id,
            'eventType': self.event_type.value,
            'environment': self.environment,
            'timestamp': format_timestamp(self.timestamp),
            'context': _to_plain(self.context),
        }


# Operation results


@dataclass
class CreateMigrationResult:
    """Outcome of registering a migration."""
    migration_id: str
    database_id: str
    checksum: str
    storage_path: str
    is_reversible: bool
    backup_synced: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExecutedMigration:
    """One migration a forward run attempted."""
    migration_id: str
    status: ExecutionStatus
    duration_ms: int = 0
    error: Optional[str] = None


@dataclass
class RunMigrationsResult:
    """Outcome of a forward run."""
    success: bool
    database_id: str
    environment: str
    executed_migrations: List[ExecutedMigration] = field(default_factory=list)
    skipped_migrations: List[str] = field(default_factory=list)
    skip_reasons: Dict[str, SkipReason] = field(default_factory=dict)
    failed_migration_id: Optional[str] = None
    error: Optional[str] = None
    total_duration_ms: int = 0
    dry_run: bool = False

    @property
    def executed_ids(self) -> List[str]:
        return [entry.migration_id for entry in self.executed_migrations]

    def skip(self, migration_id: str, reason: SkipReason) -> None:
        self.skipped_migrations.append(migration_id)
        self.skip_reasons[migration_id] = reason

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(asdict(self))


@dataclass
class RollbackResult:
    """Outcome of rolling back one migration."""
    success: bool
    migration_id: str
    database_id: str
    environment: str
    duration_ms: int = 0
    error: Optional[str] = None
    execution_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MigrationStatusItem:
    """Status of one migration across environments."""
    migration_id: str
    description: str
    author: str
    created_at: datetime
    is_reversible: bool
    environments: Dict[str, EnvironmentStatus] = field(default_factory=dict)
    last_execution: Optional[Dict[str, Any]] = None


@dataclass
class DatabaseStatus:
    """Status of every migration registered for one database."""
    database_id: str
    total_migrations: int
    applied_migrations: int
    pending_migrations: int
    last_migration_at: Optional[datetime] = None
    database_name: Optional[str] = None
    database_type: Optional[str] = None
    current_version: Optional[str] = None
    migrations: List[MigrationStatusItem] = field(default_factory=list)


@dataclass
class StatusReport:
    """Read-only migration status for one or all databases."""
    environment: Optional[str]
    databases: List[DatabaseStatus] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utc_now)

    def get(self, database_id: str) -> Optional[DatabaseStatus]:
        for database in self.databases:
            if database.database_id == database_id:
                return database
        return None

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(asdict(self))


@dataclass
class SnapshotResult:
    """Outcome of capturing a schema snapshot."""
    snapshot_id: str
    schema_hash: str
    table_count: int
    view_count: int = 0
    index_count: int = 0
    stored_procedure_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChecksumMismatch:
    migration_id: str
    expected_checksum: str
    actual_checksum: str


@dataclass
class SchemaDrift:
    """Difference between the live schema and the latest snapshot."""
    snapshot_id: str
    expected_hash: str
    actual_hash: str
    snapshot_captured_at: datetime


@dataclass
class IntegrityIssue:
    """One finding of an integrity check."""
    issue_type: IssueType
    severity: IssueSeverity
    message: str
    recommendation: str
    migration_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_exception(self, database_id: Optional[str] = None) -> MigrationError:
        """Typed exception describing this finding; never raised by the verifier itself."""
        if self.issue_type == IssueType.CHECKSUM_MISMATCH:
            return ChecksumMismatchError(
                self.message,
                migration_id=self.migration_id,
                database_id=database_id,
                expected_checksum=self.details.get('expected_checksum'),
                actual_checksum=self.details.get('actual_checksum'),
            )
        if self.issue_type == IssueType.SCHEMA_DRIFT:
            return SchemaDriftWarning(
                self.message,
                database_id=database_id,
                expected_hash=self.details.get('expected_hash'),
                actual_hash=self.details.get('actual_hash'),
                snapshot_id=self.details.get('snapshot_id'),
            )
        if self.issue_type == IssueType.MISSING_MIGRATION:
            return DependencyUnmetError(
                self.message,
                migration_id=self.migration_id,
                database_id=database_id,
                missing_dependencies=self.details.get('missing_dependencies'),
            )
        return MigrationError(self.message, migration_id=self.migration_id, database_id=database_id)


@dataclass
class IntegrityReport:
    """Outcome of an integrity verification."""
    database_id: str
    environment: str
    is_valid: bool
    issues: List[IntegrityIssue] = field(default_factory=list)
    checksum_mismatches: List[ChecksumMismatch] = field(default_factory=list)
    schema_drift: Optional[SchemaDrift] = None
    locks_removed: int = 0
    checked_at: datetime = field(default_factory=utc_now)

    def issues_of(self, issue_type: IssueType) -> List[IntegrityIssue]:
        return [issue for issue in self.issues if issue.issue_type == issue_type]

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(asdict(self))
