from typing import Any

import psycopg

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        id UUID PRIMARY KEY,
        owner_id TEXT NOT NULL,
        content_hash CHAR(64) NOT NULL,
        original_name TEXT NOT NULL,
        size_bytes BIGINT NOT NULL,
        mime_category TEXT NOT NULL,
        blob_ref TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'uploaded',
        extracted_text TEXT NULL,
        is_standard_template BOOLEAN NOT NULL DEFAULT FALSE,
        deleted_at TIMESTAMPTZ NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        CONSTRAINT documents_owner_hash_key UNIQUE (owner_id, content_hash)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents (owner_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS queue_tasks (
        id UUID PRIMARY KEY,
        document_id UUID NOT NULL REFERENCES documents (id) ON DELETE CASCADE,
        related_document_id UUID NULL REFERENCES documents (id) ON DELETE CASCADE,
        task_type TEXT NOT NULL,
        priority INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'queued',
        attempts INTEGER NOT NULL DEFAULT 0,
        max_attempts INTEGER NOT NULL,
        last_error TEXT NULL,
        payload JSONB NOT NULL DEFAULT '{}'::jsonb,
        scheduled_at TIMESTAMPTZ NOT NULL,
        claimed_at TIMESTAMPTZ NULL,
        completed_at TIMESTAMPTZ NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        CONSTRAINT queue_tasks_attempts_check CHECK (attempts <= max_attempts)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_queue_tasks_claim
        ON queue_tasks (status, task_type, priority DESC, scheduled_at)
    """,
    "CREATE INDEX IF NOT EXISTS idx_queue_tasks_document ON queue_tasks (document_id)",
    """
    CREATE TABLE IF NOT EXISTS comparisons (
        id UUID PRIMARY KEY,
        owner_id TEXT NOT NULL,
        document1_id UUID NOT NULL REFERENCES documents (id) ON DELETE CASCADE,
        document2_id UUID NOT NULL REFERENCES documents (id) ON DELETE CASCADE,
        status TEXT NOT NULL DEFAULT 'pending',
        similarity_score NUMERIC(5, 2) NULL,
        summary TEXT NULL,
        key_differences JSONB NULL,
        error_message TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_comparisons_owner ON comparisons (owner_id, created_at)",
    """
    CREATE TABLE IF NOT EXISTS exports (
        id UUID PRIMARY KEY,
        comparison_id UUID NOT NULL REFERENCES comparisons (id) ON DELETE CASCADE,
        owner_id TEXT NOT NULL,
        export_type TEXT NOT NULL,
        blob_ref TEXT NOT NULL,
        size_bytes BIGINT NOT NULL,
        download_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_exports_comparison ON exports (comparison_id)",
)


def create_schema(conn: psycopg.Connection[Any]) -> None:
    """Create all tables and indexes if they do not exist yet."""
    for statement in SCHEMA_STATEMENTS:
        conn.execute(statement)  # type: ignore[arg-type]
    conn.commit()
