"""
Metadata store tables and named query templates.

Table names are constants and never come from callers. Where a lookup has
optional filters, one template exists per filter combination and callers
pick the template by which filters are present.

Author: DBVC Engine
Version: 0.1.0
"""

from typing import Optional

DB_INVENTORY = "db_inventory"
MIGRATION_REGISTRY = "migration_registry"
EXECUTION_HISTORY = "migration_execution_history"
APPLIED_STATUS = "migration_applied_status"
SCHEMA_SNAPSHOTS = "schema_snapshots"
MIGRATION_LOCKS = "migration_locks"

METADATA_TABLES = (
    DB_INVENTORY,
    MIGRATION_REGISTRY,
    EXECUTION_HISTORY,
    APPLIED_STATUS,
    SCHEMA_SNAPSHOTS,
    MIGRATION_LOCKS,
)

METADATA_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {DB_INVENTORY} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    database_id TEXT NOT NULL UNIQUE,
    database_name TEXT NOT NULL,
    database_type TEXT NOT NULL,
    environment TEXT NOT NULL,
    current_version TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    metadata TEXT
);

CREATE INDEX IF NOT EXISTS idx_db_inventory_environment ON {DB_INVENTORY}(environment);
CREATE INDEX IF NOT EXISTS idx_db_inventory_active ON {DB_INVENTORY}(is_active);

CREATE TABLE IF NOT EXISTS {MIGRATION_REGISTRY} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    migration_id TEXT NOT NULL,
    database_id TEXT NOT NULL,
    description TEXT NOT NULL,
    up_script TEXT NOT NULL,
    down_script TEXT,
    checksum TEXT NOT NULL,
    author TEXT NOT NULL,
    created_at TEXT NOT NULL,
    is_reversible INTEGER NOT NULL DEFAULT 1,
    depends_on TEXT,
    tags TEXT,
    UNIQUE (migration_id, database_id)
);

CREATE INDEX IF NOT EXISTS idx_migration_registry_database ON {MIGRATION_REGISTRY}(database_id);
CREATE INDEX IF NOT EXISTS idx_migration_registry_author ON {MIGRATION_REGISTRY}(author);

CREATE TABLE IF NOT EXISTS {EXECUTION_HISTORY} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    migration_id TEXT NOT NULL,
    database_id TEXT NOT NULL,
    environment TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('running', 'success', 'failed')),
    started_at TEXT NOT NULL,
    completed_at TEXT,
    duration_ms INTEGER,
    executor TEXT NOT NULL,
    execution_mode TEXT NOT NULL DEFAULT 'forward' CHECK (execution_mode IN ('forward', 'rollback')),
    error_message TEXT,
    execution_context TEXT,
    FOREIGN KEY (migration_id, database_id)
        REFERENCES {MIGRATION_REGISTRY}(migration_id, database_id)
);

CREATE INDEX IF NOT EXISTS idx_execution_history_migration ON {EXECUTION_HISTORY}(migration_id, database_id);
CREATE INDEX IF NOT EXISTS idx_execution_history_environment ON {EXECUTION_HISTORY}(environment);
CREATE INDEX IF NOT EXISTS idx_execution_history_status ON {EXECUTION_HISTORY}(status);

CREATE TABLE IF NOT EXISTS {APPLIED_STATUS} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    migration_id TEXT NOT NULL,
    database_id TEXT NOT NULL,
    environment TEXT NOT NULL,
    is_applied INTEGER NOT NULL DEFAULT 0,
    applied_at TEXT,
    applied_by TEXT,
    last_execution_id INTEGER,
    UNIQUE (migration_id, database_id, environment),
    FOREIGN KEY (migration_id, database_id)
        REFERENCES {MIGRATION_REGISTRY}(migration_id, database_id) ON DELETE CASCADE,
    FOREIGN KEY (last_execution_id)
        REFERENCES {EXECUTION_HISTORY}(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_applied_status_database_env ON {APPLIED_STATUS}(database_id, environment);

CREATE TABLE IF NOT EXISTS {SCHEMA_SNAPSHOTS} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    snapshot_id TEXT NOT NULL UNIQUE,
    database_id TEXT NOT NULL,
    environment TEXT NOT NULL,
    captured_at TEXT NOT NULL,
    triggering_migration_id TEXT,
    capture_type TEXT NOT NULL DEFAULT 'auto' CHECK (capture_type IN ('auto', 'manual', 'baseline')),
    schema_hash TEXT NOT NULL,
    document_id TEXT,
    table_count INTEGER,
    view_count INTEGER,
    index_count INTEGER,
    stored_procedure_count INTEGER,
    captured_by TEXT NOT NULL,
    metadata TEXT
);

CREATE INDEX IF NOT EXISTS idx_schema_snapshots_database ON {SCHEMA_SNAPSHOTS}(database_id, environment);
CREATE INDEX IF NOT EXISTS idx_schema_snapshots_migration ON {SCHEMA_SNAPSHOTS}(triggering_migration_id);

CREATE TABLE IF NOT EXISTS {MIGRATION_LOCKS} (
    database_id TEXT PRIMARY KEY,
    locked_by TEXT NOT NULL,
    lock_reason TEXT,
    locked_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
"""

# Database inventory

UPSERT_DATABASE = f"""
INSERT INTO {DB_INVENTORY}
    (database_id, database_name, database_type, environment, current_version, is_active, created_at, updated_at, metadata)
VALUES
    (:database_id, :database_name, :database_type, :environment, :current_version, 1, :now, :now, :metadata)
ON CONFLICT (database_id) DO UPDATE SET
    database_name = excluded.database_name,
    database_type = excluded.database_type,
    environment = excluded.environment,
    current_version = excluded.current_version,
    is_active = 1,
    updated_at = excluded.updated_at,
    metadata = excluded.metadata
"""

SELECT_ACTIVE_DATABASES = f"""
SELECT database_id, database_name, database_type, environment, current_version
FROM {DB_INVENTORY}
WHERE is_active = 1
ORDER BY database_id
"""

# Migration registry

INSERT_MIGRATION = f"""
INSERT INTO {MIGRATION_REGISTRY}
    (migration_id, database_id, description, up_script, down_script, checksum,
     author, created_at, is_reversible, depends_on, tags)
VALUES
    (:migration_id, :database_id, :description, :up_script, :down_script, :checksum,
     :author, :created_at, :is_reversible, :depends_on, :tags)
"""

SELECT_MIGRATION = f"""
SELECT * FROM {MIGRATION_REGISTRY}
WHERE migration_id = :migration_id AND database_id = :database_id
"""

SELECT_MIGRATIONS_FOR_DATABASE = f"""
SELECT * FROM {MIGRATION_REGISTRY}
WHERE database_id = :database_id
ORDER BY migration_id ASC
"""

SELECT_PENDING_MIGRATIONS = f"""
SELECT mr.* FROM {MIGRATION_REGISTRY} mr
LEFT JOIN {APPLIED_STATUS} mas
    ON mas.migration_id = mr.migration_id
    AND mas.database_id = mr.database_id
    AND mas.environment = :environment
WHERE mr.database_id = :database_id
    AND (mas.is_applied IS NULL OR mas.is_applied = 0)
ORDER BY mr.migration_id ASC
"""

SELECT_REGISTERED_DATABASE_IDS = f"""
SELECT DISTINCT database_id FROM {MIGRATION_REGISTRY}
ORDER BY database_id
"""

# Execution history

INSERT_EXECUTION = f"""
INSERT INTO {EXECUTION_HISTORY}
    (migration_id, database_id, environment, status, started_at, executor, execution_mode, execution_context)
VALUES
    (:migration_id, :database_id, :environment, 'running', :started_at, :executor, :execution_mode, :execution_context)
"""

COMPLETE_EXECUTION = f"""
UPDATE {EXECUTION_HISTORY}
SET status = :status, completed_at = :completed_at, duration_ms = :duration_ms, error_message = :error_message
WHERE id = :execution_id AND status = 'running'
"""

SELECT_EXECUTION = f"""
SELECT * FROM {EXECUTION_HISTORY} WHERE id = :execution_id
"""

SELECT_EXECUTIONS = f"""
SELECT * FROM {EXECUTION_HISTORY}
WHERE database_id = :database_id
ORDER BY id ASC
"""

SELECT_EXECUTIONS_BY_ENVIRONMENT = f"""
SELECT * FROM {EXECUTION_HISTORY}
WHERE database_id = :database_id AND environment = :environment
ORDER BY id ASC
"""

SELECT_EXECUTIONS_BY_MIGRATION = f"""
SELECT * FROM {EXECUTION_HISTORY}
WHERE database_id = :database_id AND migration_id = :migration_id
ORDER BY id ASC
"""

SELECT_EXECUTIONS_BY_MIGRATION_AND_ENVIRONMENT = f"""
SELECT * FROM {EXECUTION_HISTORY}
WHERE database_id = :database_id AND migration_id = :migration_id AND environment = :environment
ORDER BY id ASC
"""

SELECT_RUNNING_EXECUTIONS = f"""
SELECT * FROM {EXECUTION_HISTORY}
WHERE database_id = :database_id AND status = 'running'
ORDER BY id ASC
"""

SELECT_LAST_SUCCESS_AT = f"""
SELECT MAX(completed_at) AS last_completed_at FROM {EXECUTION_HISTORY}
WHERE database_id = :database_id AND status = 'success'
"""

SELECT_LAST_SUCCESS_AT_BY_ENVIRONMENT = f"""
SELECT MAX(completed_at) AS last_completed_at FROM {EXECUTION_HISTORY}
WHERE database_id = :database_id AND environment = :environment AND status = 'success'
"""

# Applied status

UPSERT_APPLIED_STATUS = f"""
INSERT INTO {APPLIED_STATUS}
    (migration_id, database_id, environment, is_applied, applied_at, applied_by, last_execution_id)
VALUES
    (:migration_id, :database_id, :environment, :is_applied, :applied_at, :applied_by, :last_execution_id)
ON CONFLICT (migration_id, database_id, environment) DO UPDATE SET
    is_applied = excluded.is_applied,
    applied_at = excluded.applied_at,
    applied_by = excluded.applied_by,
    last_execution_id = excluded.last_execution_id
"""

SELECT_APPLIED_STATUS = f"""
SELECT * FROM {APPLIED_STATUS}
WHERE migration_id = :migration_id AND database_id = :database_id AND environment = :environment
"""

SELECT_APPLIED_STATUSES = f"""
SELECT * FROM {APPLIED_STATUS}
WHERE database_id = :database_id
ORDER BY migration_id, environment
"""

SELECT_APPLIED_STATUSES_BY_ENVIRONMENT = f"""
SELECT * FROM {APPLIED_STATUS}
WHERE database_id = :database_id AND environment = :environment
ORDER BY migration_id
"""

SELECT_APPLIED_MIGRATION_IDS = f"""
SELECT migration_id FROM {APPLIED_STATUS}
WHERE database_id = :database_id AND environment = :environment AND is_applied = 1
"""

# Locks

SELECT_LOCK = f"""
SELECT * FROM {MIGRATION_LOCKS} WHERE database_id = :database_id
"""

SELECT_EXPIRED_LOCKS = f"""
SELECT * FROM {MIGRATION_LOCKS}
WHERE database_id = :database_id AND expires_at < :now
"""

SELECT_EXPIRED_LOCKS_ELSEWHERE = f"""
SELECT * FROM {MIGRATION_LOCKS}
WHERE database_id != :database_id AND expires_at < :now
ORDER BY database_id
"""

DELETE_EXPIRED_LOCK = f"""
DELETE FROM {MIGRATION_LOCKS}
WHERE database_id = :database_id AND locked_by = :locked_by AND expires_at < :now
"""

# Schema snapshots

INSERT_SNAPSHOT = f"""
INSERT INTO {SCHEMA_SNAPSHOTS}
    (snapshot_id, database_id, environment, captured_at, triggering_migration_id, capture_type,
     schema_hash, document_id, table_count, view_count, index_count, stored_procedure_count, captured_by)
VALUES
    (:snapshot_id, :database_id, :environment, :captured_at, :triggering_migration_id, :capture_type,
     :schema_hash, :document_id, :table_count, :view_count, :index_count, :stored_procedure_count, :captured_by)
"""

SELECT_LATEST_SNAPSHOT = f"""
SELECT * FROM {SCHEMA_SNAPSHOTS}
WHERE database_id = :database_id AND environment = :environment
ORDER BY captured_at DESC, id DESC
LIMIT 1
"""

SELECT_SNAPSHOTS = f"""
SELECT * FROM {SCHEMA_SNAPSHOTS}
WHERE database_id = :database_id
ORDER BY captured_at ASC, id ASC
"""

SELECT_SNAPSHOTS_BY_ENVIRONMENT = f"""
SELECT * FROM {SCHEMA_SNAPSHOTS}
WHERE database_id = :database_id AND environment = :environment
ORDER BY captured_at ASC, id ASC
"""


def executions_query(migration_id: Optional[str], environment: Optional[str]) -> str:
    """Pick the execution history template for the filters present."""
    if migration_id and environment:
        return SELECT_EXECUTIONS_BY_MIGRATION_AND_ENVIRONMENT
    if migration_id:
        return SELECT_EXECUTIONS_BY_MIGRATION
    if environment:
        return SELECT_EXECUTIONS_BY_ENVIRONMENT
    return SELECT_EXECUTIONS


def applied_statuses_query(environment: Optional[str]) -> str:
    return SELECT_APPLIED_STATUSES_BY_ENVIRONMENT if environment else SELECT_APPLIED_STATUSES


def last_success_query(environment: Optional[str]) -> str:
    return SELECT_LAST_SUCCESS_AT_BY_ENVIRONMENT if environment else SELECT_LAST_SUCCESS_AT


def snapshots_query(environment: Optional[str]) -> str:
    return SELECT_SNAPSHOTS_BY_ENVIRONMENT if environment else SELECT_SNAPSHOTS
