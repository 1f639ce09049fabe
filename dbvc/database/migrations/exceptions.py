"""
Migration-specific exceptions for the database version control engine.

Raised: RegistrationError, LockAcquisitionError, MigrationNotFoundError,
NonReversibleMigrationError, NotAppliedError and InvalidMigrationIdError.
ScriptExecutionError is raised inside the engine and turned into a recorded
failure before it reaches the caller. ChecksumMismatchError,
SchemaDriftWarning and DependencyUnmetError are never raised by the engine;
they describe findings carried in result objects.

Author: DBVC Engine
Version: 0.1.0
"""

from typing import List, Optional

from ..exceptions import DatabaseError, DatabaseErrorContext


class MigrationError(DatabaseError):
    """Base exception for migration-related errors."""

    def __init__(
        self,
        message: str,
        migration_id: Optional[str] = None,
        database_id: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
        error_code: Optional[str] = None
    ):
        context = DatabaseErrorContext(
            database_name=database_id,
            operation=f"migration_{operation}" if operation else "migration",
            additional_info={'migration_id': migration_id}
        )
        super().__init__(message, context=context, original_error=original_error, error_code=error_code)
        self.migration_id = migration_id
        self.database_id = database_id


class RegistrationError(MigrationError):
    """Exception raised when a migration cannot be written to the metadata store."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, operation="register", error_code="REGISTRATION_FAILED", **kwargs)


class InvalidMigrationIdError(MigrationError):
    """Exception raised for identifiers that do not follow the migration id format."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, operation="validate", error_code="INVALID_MIGRATION_ID", **kwargs)


class LockAcquisitionError(MigrationError):
    """Exception raised when the database migration lock is already held."""

    def __init__(
        self,
        message: str,
        database_id: Optional[str] = None,
        lock_holder: Optional[str] = None,
        expires_at: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            database_id=database_id,
            operation="lock",
            error_code="LOCK_HELD",
            **kwargs
        )
        self.lock_holder = lock_holder
        self.expires_at = expires_at


class MigrationNotFoundError(MigrationError):
    """Exception raised when a migration is not registered for a database."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, operation="lookup", error_code="MIGRATION_NOT_FOUND", **kwargs)


class NonReversibleMigrationError(MigrationError):
    """Exception raised when rolling back a migration without a down script."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, operation="rollback", error_code="NOT_REVERSIBLE", **kwargs)


class NotAppliedError(MigrationError):
    """Exception raised when rolling back a migration that is not applied."""

    def __init__(self, message: str, environment: Optional[str] = None, **kwargs):
        super().__init__(message, operation="rollback", error_code="NOT_APPLIED", **kwargs)
        self.environment = environment


class ScriptExecutionError(MigrationError):
    """Exception raised when an up or down script fails inside its transaction."""

    def __init__(self, message: str, mode: Optional[str] = None, **kwargs):
        super().__init__(message, operation="execute", error_code="SCRIPT_FAILED", **kwargs)
        self.mode = mode


class ChecksumMismatchError(MigrationError):
    """A stored script no longer matches its recorded checksum."""

    def __init__(
        self,
        message: str,
        expected_checksum: Optional[str] = None,
        actual_checksum: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, operation="verify", error_code="CHECKSUM_MISMATCH", **kwargs)
        self.expected_checksum = expected_checksum
        self.actual_checksum = actual_checksum


class SchemaDriftWarning(MigrationError):
    """The live schema no longer matches the latest snapshot."""

    def __init__(
        self,
        message: str,
        expected_hash: Optional[str] = None,
        actual_hash: Optional[str] = None,
        snapshot_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, operation="verify", error_code="SCHEMA_DRIFT", **kwargs)
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        self.snapshot_id = snapshot_id


class DependencyUnmetError(MigrationError):
    """A migration depends on migrations not applied in the target environment."""

    def __init__(self, message: str, missing_dependencies: Optional[List[str]] = None, **kwargs):
        super().__init__(message, operation="dependency_check", error_code="DEPENDENCY_UNMET", **kwargs)
        self.missing_dependencies = missing_dependencies or []
