"""
netledger Database Schema Definitions

Raw SQL schema for SQLite and PostgreSQL, applied by ``init_schema``.
Timestamps are written by the application as ISO-8601 UTC strings.
"""

SCHEMA_SQLITE = """
CREATE TABLE IF NOT EXISTS network_tasks (
    task_id TEXT PRIMARY KEY,
    network_id TEXT NOT NULL,
    parent_job_id TEXT,
    network_type TEXT,
    status TEXT NOT NULL DEFAULT 'queued',
    task_type TEXT NOT NULL,
    description TEXT NOT NULL,
    parameters TEXT,
    result TEXT,
    progress INTEGER NOT NULL DEFAULT 0,
    step_number INTEGER,
    position INTEGER NOT NULL DEFAULT 0,
    depends_on TEXT,
    priority TEXT NOT NULL DEFAULT 'medium',
    created_by TEXT,
    assigned_to TEXT,
    metadata TEXT,
    stage TEXT,
    stage_updated_at TEXT,
    replan_from_step INTEGER,
    policy TEXT,
    result_partial INTEGER NOT NULL DEFAULT 0,
    result_last_author TEXT,
    result_updated_at TEXT,
    execution_time_ms INTEGER,
    started_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_network_tasks_network ON network_tasks(network_id, step_number);
CREATE INDEX IF NOT EXISTS idx_network_tasks_status ON network_tasks(status);
CREATE INDEX IF NOT EXISTS idx_network_tasks_assigned ON network_tasks(assigned_to);
CREATE UNIQUE INDEX IF NOT EXISTS idx_network_tasks_main
    ON network_tasks(network_id) WHERE step_number IS NULL;

CREATE TABLE IF NOT EXISTS task_dependencies (
    dependency_id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES network_tasks(task_id) ON DELETE CASCADE,
    depends_on_task_id TEXT NOT NULL,
    dependency_type TEXT NOT NULL DEFAULT 'requires_completion',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_task_dependencies_task ON task_dependencies(task_id);

CREATE TABLE IF NOT EXISTS network_directives (
    directive_id TEXT PRIMARY KEY,
    network_id TEXT NOT NULL,
    content TEXT NOT NULL,
    directive_type TEXT NOT NULL DEFAULT 'other',
    source TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    metadata TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    acknowledged_at TEXT,
    applied_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_network_directives_network ON network_directives(network_id, status);

CREATE TABLE IF NOT EXISTS content_store (
    content_hash TEXT PRIMARY KEY,
    content_type TEXT NOT NULL,
    content BLOB NOT NULL,
    size INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS content_chunks (
    chunk_id TEXT PRIMARY KEY,
    content_hash TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    chunk_data BLOB NOT NULL,
    chunk_offset INTEGER NOT NULL,
    size INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_content_chunks_hash ON content_chunks(content_hash, chunk_index);

CREATE TABLE IF NOT EXISTS artifacts (
    artifact_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    task_id TEXT,
    current_revision TEXT NOT NULL,
    mime_type TEXT NOT NULL,
    labels TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_artifacts_job ON artifacts(job_id);
CREATE INDEX IF NOT EXISTS idx_artifacts_task ON artifacts(task_id);

CREATE TABLE IF NOT EXISTS artifact_revisions (
    revision_id TEXT PRIMARY KEY,
    artifact_id TEXT NOT NULL REFERENCES artifacts(artifact_id),
    revision_number INTEGER NOT NULL,
    content_hash TEXT NOT NULL REFERENCES content_store(content_hash),
    parent_revisions TEXT,
    commit_message TEXT NOT NULL,
    author TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE(artifact_id, revision_number)
);

CREATE INDEX IF NOT EXISTS idx_artifact_revisions_artifact ON artifact_revisions(artifact_id);
"""


SCHEMA_POSTGRES = """
CREATE TABLE IF NOT EXISTS network_tasks (
    task_id TEXT PRIMARY KEY,
    network_id TEXT NOT NULL,
    parent_job_id TEXT,
    network_type TEXT,
    status TEXT NOT NULL DEFAULT 'queued',
    task_type TEXT NOT NULL,
    description TEXT NOT NULL,
    parameters JSONB,
    result JSONB,
    progress INTEGER NOT NULL DEFAULT 0,
    step_number INTEGER,
    position INTEGER NOT NULL DEFAULT 0,
    depends_on JSONB,
    priority TEXT NOT NULL DEFAULT 'medium',
    created_by TEXT,
    assigned_to TEXT,
    metadata JSONB,
    stage TEXT,
    stage_updated_at TIMESTAMPTZ,
    replan_from_step INTEGER,
    policy JSONB,
    result_partial BOOLEAN NOT NULL DEFAULT FALSE,
    result_last_author TEXT,
    result_updated_at TIMESTAMPTZ,
    execution_time_ms BIGINT,
    started_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    completed_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_network_tasks_network ON network_tasks(network_id, step_number);
CREATE INDEX IF NOT EXISTS idx_network_tasks_status ON network_tasks(status);
CREATE INDEX IF NOT EXISTS idx_network_tasks_assigned ON network_tasks(assigned_to);
CREATE UNIQUE INDEX IF NOT EXISTS idx_network_tasks_main
    ON network_tasks(network_id) WHERE step_number IS NULL;

CREATE TABLE IF NOT EXISTS task_dependencies (
    dependency_id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES network_tasks(task_id) ON DELETE CASCADE,
    depends_on_task_id TEXT NOT NULL,
    dependency_type TEXT NOT NULL DEFAULT 'requires_completion',
    created_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_task_dependencies_task ON task_dependencies(task_id);

CREATE TABLE IF NOT EXISTS network_directives (
    directive_id TEXT PRIMARY KEY,
    network_id TEXT NOT NULL,
    content TEXT NOT NULL,
    directive_type TEXT NOT NULL DEFAULT 'other',
    source TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    metadata JSONB,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    acknowledged_at TIMESTAMPTZ,
    applied_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_network_directives_network ON network_directives(network_id, status);

CREATE TABLE IF NOT EXISTS content_store (
    content_hash TEXT PRIMARY KEY,
    content_type TEXT NOT NULL,
    content BYTEA NOT NULL,
    size BIGINT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS content_chunks (
    chunk_id TEXT PRIMARY KEY,
    content_hash TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    chunk_data BYTEA NOT NULL,
    chunk_offset BIGINT NOT NULL,
    size BIGINT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_content_chunks_hash ON content_chunks(content_hash, chunk_index);

CREATE TABLE IF NOT EXISTS artifacts (
    artifact_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    task_id TEXT,
    current_revision TEXT NOT NULL,
    mime_type TEXT NOT NULL,
    labels JSONB,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_artifacts_job ON artifacts(job_id);
CREATE INDEX IF NOT EXISTS idx_artifacts_task ON artifacts(task_id);

CREATE TABLE IF NOT EXISTS artifact_revisions (
    revision_id TEXT PRIMARY KEY,
    artifact_id TEXT NOT NULL REFERENCES artifacts(artifact_id),
    revision_number INTEGER NOT NULL,
    content_hash TEXT NOT NULL REFERENCES content_store(content_hash),
    parent_revisions JSONB,
    commit_message TEXT NOT NULL,
    author TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    UNIQUE(artifact_id, revision_number)
);

CREATE INDEX IF NOT EXISTS idx_artifact_revisions_artifact ON artifact_revisions(artifact_id);
"""
