import uuid
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from docstore.database.connection import get_connection
from docstore.records.base import BaseRecordStore
from docstore.records.exceptions import (
    ConstraintViolationError,
    RecordStoreConnectionError,
    RecordStoreError,
)
from docstore.records.models import (
    Comparison,
    ComparisonStatus,
    Document,
    DocumentStatus,
    Export,
    QueueTask,
    TaskStatus,
    utcnow,
)

DOCUMENT_COLUMNS = (
    "id, owner_id, content_hash, original_name, size_bytes, mime_category, "
    "blob_ref, status, extracted_text, is_standard_template, deleted_at, "
    "created_at, updated_at"
)
TASK_COLUMNS = (
    "id, document_id, related_document_id, task_type, priority, status, "
    "attempts, max_attempts, last_error, payload, scheduled_at, claimed_at, "
    "completed_at, created_at, updated_at"
)
COMPARISON_COLUMNS = (
    "id, owner_id, document1_id, document2_id, status, similarity_score, "
    "summary, key_differences, error_message, created_at, updated_at"
)
EXPORT_COLUMNS = (
    "id, comparison_id, owner_id, export_type, blob_ref, size_bytes, "
    "download_count, created_at, updated_at"
)

_TASK_MUTABLE = frozenset(
    {"status", "attempts", "last_error", "scheduled_at", "claimed_at", "completed_at", "updated_at"}
)
_COMPARISON_MUTABLE = frozenset(
    {"status", "similarity_score", "summary", "key_differences", "error_message"}
)
_JSON_COLUMNS = frozenset({"payload", "key_differences"})


def _opt_str(value: Any) -> str | None:
    return str(value) if value is not None else None


def _row_to_document(row: dict[str, Any]) -> Document:
    return Document(
        id=str(row["id"]),
        owner_id=row["owner_id"],
        content_hash=row["content_hash"],
        original_name=row["original_name"],
        size_bytes=row["size_bytes"],
        mime_category=row["mime_category"],
        blob_ref=row["blob_ref"],
        status=row["status"],
        extracted_text=row["extracted_text"],
        is_standard_template=row["is_standard_template"],
        deleted_at=row["deleted_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_task(row: dict[str, Any]) -> QueueTask:
    return QueueTask(
        id=str(row["id"]),
        document_id=str(row["document_id"]),
        related_document_id=_opt_str(row["related_document_id"]),
        task_type=row["task_type"],
        priority=row["priority"],
        status=row["status"],
        attempts=row["attempts"],
        max_attempts=row["max_attempts"],
        last_error=row["last_error"],
        payload=row["payload"] or {},
        scheduled_at=row["scheduled_at"],
        claimed_at=row["claimed_at"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_comparison(row: dict[str, Any]) -> Comparison:
    score = row["similarity_score"]
    return Comparison(
        id=str(row["id"]),
        owner_id=row["owner_id"],
        document1_id=str(row["document1_id"]),
        document2_id=str(row["document2_id"]),
        status=row["status"],
        similarity_score=float(score) if isinstance(score, Decimal) else score,
        summary=row["summary"],
        key_differences=row["key_differences"],
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_export(row: dict[str, Any]) -> Export:
    return Export(
        id=str(row["id"]),
        comparison_id=str(row["comparison_id"]),
        owner_id=row["owner_id"],
        export_type=row["export_type"],
        blob_ref=row["blob_ref"],
        size_bytes=row["size_bytes"],
        download_count=row["download_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _is_record_id(value: str) -> bool:
    """Ids are UUIDs here; anything else cannot match a row."""
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _adapt(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS and value is not None:
        return Jsonb(value)
    return value


@contextmanager
def _connect() -> Generator[psycopg.Connection[Any], None, None]:
    """Yield a pooled connection, translating driver errors to store errors."""
    try:
        with get_connection() as conn:
            yield conn
    except psycopg.IntegrityError as exc:
        raise ConstraintViolationError(str(exc)) from exc
    except psycopg.OperationalError as exc:
        raise RecordStoreConnectionError(f"Database unavailable: {exc}") from exc
    except psycopg.Error as exc:
        raise RecordStoreError(f"Database error: {exc}") from exc


class PostgresRecordStore(BaseRecordStore):
    """Record store backed by PostgreSQL through the shared connection pool."""

    # Documents

    def insert_document_with_task(
        self, document: Document, task: QueueTask
    ) -> tuple[Document, bool]:
        """Insert-or-fetch on the (owner_id, content_hash) unique constraint.

        Document and task are written in the same transaction so a failed
        task insert leaves no document behind.
        """
        with _connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO documents ({DOCUMENT_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (owner_id, content_hash) DO NOTHING
                    RETURNING {DOCUMENT_COLUMNS}
                    """,
                    (
                        document.id,
                        document.owner_id,
                        document.content_hash,
                        document.original_name,
                        document.size_bytes,
                        document.mime_category,
                        document.blob_ref,
                        document.status,
                        document.extracted_text,
                        document.is_standard_template,
                        document.deleted_at,
                        document.created_at,
                        document.updated_at,
                    ),
                )
                row = cur.fetchone()
                if row is None:
                    cur.execute(
                        f"""
                        SELECT {DOCUMENT_COLUMNS}
                        FROM documents
                        WHERE owner_id = %s AND content_hash = %s
                        """,
                        (document.owner_id, document.content_hash),
                    )
                    existing = cur.fetchone()
                    conn.commit()
                    if existing is None:
                        raise ConstraintViolationError(
                            f"Conflicting document for owner {document.owner_id} vanished"
                        )
                    return _row_to_document(existing), False

                self._insert_task_row(cur, task)
            conn.commit()
        return _row_to_document(row), True

    def find_document(self, document_id: str) -> Document | None:
        if not _is_record_id(document_id):
            return None
        row = self._fetch_one(
            f"SELECT {DOCUMENT_COLUMNS} FROM documents WHERE id = %s", (document_id,)
        )
        return _row_to_document(row) if row is not None else None

    def find_document_by_owner_and_hash(
        self, owner_id: str, content_hash: str
    ) -> Document | None:
        row = self._fetch_one(
            f"""
            SELECT {DOCUMENT_COLUMNS}
            FROM documents
            WHERE owner_id = %s AND content_hash = %s
            """,
            (owner_id, content_hash),
        )
        return _row_to_document(row) if row is not None else None

    def find_documents_by_owner(self, owner_id: str) -> list[Document]:
        rows = self._fetch_all(
            f"""
            SELECT {DOCUMENT_COLUMNS}
            FROM documents
            WHERE owner_id = %s AND deleted_at IS NULL
            ORDER BY created_at DESC
            """,
            (owner_id,),
        )
        return [_row_to_document(row) for row in rows]

    def set_standard(self, document_id: str) -> Document | None:
        if not _is_record_id(document_id):
            return None
        row = self._fetch_one(
            f"""
            UPDATE documents
            SET is_standard_template = TRUE,
                updated_at = CASE WHEN is_standard_template THEN updated_at ELSE %s END
            WHERE id = %s AND deleted_at IS NULL
            RETURNING {DOCUMENT_COLUMNS}
            """,
            (utcnow(), document_id),
            commit=True,
        )
        return _row_to_document(row) if row is not None else None

    def set_document_status(self, document_id: str, status: str) -> bool:
        if not _is_record_id(document_id):
            return False
        return self._execute(
            """
            UPDATE documents
            SET status = %s, updated_at = %s
            WHERE id = %s AND deleted_at IS NULL
            """,
            (status, utcnow(), document_id),
        ) > 0

    def set_extracted_text(self, document_id: str, text: str) -> bool:
        if not _is_record_id(document_id):
            return False
        return self._execute(
            """
            UPDATE documents
            SET extracted_text = %s, status = %s, updated_at = %s
            WHERE id = %s AND deleted_at IS NULL AND extracted_text IS NULL
            """,
            (text, DocumentStatus.PROCESSED, utcnow(), document_id),
        ) > 0

    def soft_delete_document(self, document_id: str) -> bool:
        if not _is_record_id(document_id):
            return False
        now = utcnow()
        return self._execute(
            """
            UPDATE documents
            SET deleted_at = COALESCE(deleted_at, %s), updated_at = %s
            WHERE id = %s
            """,
            (now, now, document_id),
        ) > 0

    def delete_document(self, document_id: str) -> bool:
        if not _is_record_id(document_id):
            return False
        # Tasks, comparisons and exports go through ON DELETE CASCADE.
        return self._execute("DELETE FROM documents WHERE id = %s", (document_id,)) > 0

    # Queue tasks

    def insert_task(self, task: QueueTask) -> QueueTask:
        with _connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                row = self._insert_task_row(cur, task)
            conn.commit()
        return _row_to_task(row)

    def _insert_task_row(self, cur: psycopg.Cursor[Any], task: QueueTask) -> dict[str, Any]:
        cur.execute(
            f"""
            INSERT INTO queue_tasks ({TASK_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {TASK_COLUMNS}
            """,
            (
                task.id,
                task.document_id,
                task.related_document_id,
                task.task_type,
                task.priority,
                task.status,
                task.attempts,
                task.max_attempts,
                task.last_error,
                Jsonb(task.payload),
                task.scheduled_at,
                task.claimed_at,
                task.completed_at,
                task.created_at,
                task.updated_at,
            ),
        )
        row = cur.fetchone()
        if row is None:
            raise ConstraintViolationError(f"Task {task.id} was not inserted")
        return row

    def find_task(self, task_id: str) -> QueueTask | None:
        if not _is_record_id(task_id):
            return None
        row = self._fetch_one(
            f"SELECT {TASK_COLUMNS} FROM queue_tasks WHERE id = %s", (task_id,)
        )
        return _row_to_task(row) if row is not None else None

    def claim_next_task(
        self, task_types: Iterable[str], now: datetime
    ) -> QueueTask | None:
        """Claim the next due task using SELECT FOR UPDATE SKIP LOCKED."""
        row = self._fetch_one(
            f"""
            UPDATE queue_tasks
            SET status = %s, claimed_at = %s, updated_at = %s
            WHERE id = (
                SELECT id
                FROM queue_tasks
                WHERE status = %s
                  AND task_type = ANY(%s)
                  AND scheduled_at <= %s
                ORDER BY priority DESC, scheduled_at, created_at
                LIMIT 1
                FOR UPDATE SKIP LOCKED
            )
            RETURNING {TASK_COLUMNS}
            """,
            (
                TaskStatus.CLAIMED,
                now,
                now,
                TaskStatus.QUEUED,
                list(task_types),
                now,
            ),
            commit=True,
        )
        return _row_to_task(row) if row is not None else None

    def transition_task(
        self,
        task_id: str,
        from_status: str,
        expected_attempts: int,
        **changes: Any,
    ) -> QueueTask | None:
        unknown = set(changes) - _TASK_MUTABLE
        if unknown:
            raise ValueError(f"Cannot update task columns: {sorted(unknown)}")
        if not _is_record_id(task_id):
            return None
        changes.setdefault("updated_at", utcnow())
        columns = sorted(changes)
        assignments = ", ".join(f"{column} = %s" for column in columns)
        row = self._fetch_one(
            f"""
            UPDATE queue_tasks
            SET {assignments}
            WHERE id = %s AND status = %s AND attempts = %s
            RETURNING {TASK_COLUMNS}
            """,
            (*(changes[c] for c in columns), task_id, from_status, expected_attempts),
            commit=True,
        )
        return _row_to_task(row) if row is not None else None

    def list_tasks_by_status(
        self, status: str, task_types: Iterable[str] | None = None
    ) -> list[QueueTask]:
        if task_types is None:
            rows = self._fetch_all(
                f"""
                SELECT {TASK_COLUMNS} FROM queue_tasks
                WHERE status = %s ORDER BY created_at
                """,
                (status,),
            )
        else:
            rows = self._fetch_all(
                f"""
                SELECT {TASK_COLUMNS} FROM queue_tasks
                WHERE status = %s AND task_type = ANY(%s) ORDER BY created_at
                """,
                (status, list(task_types)),
            )
        return [_row_to_task(row) for row in rows]

    def count_tasks_by_status(self) -> dict[str, int]:
        rows = self._fetch_all(
            "SELECT status, COUNT(*) AS total FROM queue_tasks GROUP BY status", ()
        )
        return {row["status"]: int(row["total"]) for row in rows}

    def list_tasks_by_document(self, document_id: str) -> list[QueueTask]:
        if not _is_record_id(document_id):
            return []
        rows = self._fetch_all(
            f"""
            SELECT {TASK_COLUMNS} FROM queue_tasks
            WHERE document_id = %s OR related_document_id = %s
            ORDER BY created_at
            """,
            (document_id, document_id),
        )
        return [_row_to_task(row) for row in rows]

    def list_stale_claims(self, claimed_before: datetime) -> list[QueueTask]:
        rows = self._fetch_all(
            f"""
            SELECT {TASK_COLUMNS} FROM queue_tasks
            WHERE status = %s AND claimed_at < %s
            ORDER BY claimed_at
            """,
            (TaskStatus.CLAIMED, claimed_before),
        )
        return [_row_to_task(row) for row in rows]

    # Comparisons

    def insert_comparison(self, comparison: Comparison) -> Comparison:
        row = self._fetch_one(
            f"""
            INSERT INTO comparisons ({COMPARISON_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {COMPARISON_COLUMNS}
            """,
            (
                comparison.id,
                comparison.owner_id,
                comparison.document1_id,
                comparison.document2_id,
                comparison.status,
                comparison.similarity_score,
                comparison.summary,
                _adapt("key_differences", comparison.key_differences),
                comparison.error_message,
                comparison.created_at,
                comparison.updated_at,
            ),
            commit=True,
        )
        if row is None:
            raise ConstraintViolationError(f"Comparison {comparison.id} was not inserted")
        return _row_to_comparison(row)

    def find_comparison(self, comparison_id: str) -> Comparison | None:
        if not _is_record_id(comparison_id):
            return None
        row = self._fetch_one(
            f"SELECT {COMPARISON_COLUMNS} FROM comparisons WHERE id = %s", (comparison_id,)
        )
        return _row_to_comparison(row) if row is not None else None

    def find_comparisons_by_owner(self, owner_id: str) -> list[Comparison]:
        rows = self._fetch_all(
            f"""
            SELECT {COMPARISON_COLUMNS} FROM comparisons
            WHERE owner_id = %s ORDER BY created_at DESC
            """,
            (owner_id,),
        )
        return [_row_to_comparison(row) for row in rows]

    def find_pending_comparisons_for_document(self, document_id: str) -> list[Comparison]:
        if not _is_record_id(document_id):
            return []
        rows = self._fetch_all(
            f"""
            SELECT {COMPARISON_COLUMNS} FROM comparisons
            WHERE status = %s AND (document1_id = %s OR document2_id = %s)
            ORDER BY created_at
            """,
            (ComparisonStatus.PENDING, document_id, document_id),
        )
        return [_row_to_comparison(row) for row in rows]

    def update_comparison(self, comparison_id: str, **changes: Any) -> Comparison | None:
        unknown = set(changes) - _COMPARISON_MUTABLE
        if unknown:
            raise ValueError(f"Cannot update comparison columns: {sorted(unknown)}")
        if not _is_record_id(comparison_id):
            return None
        columns = sorted(changes)
        assignments = ", ".join(f"{column} = %s" for column in [*columns, "updated_at"])
        row = self._fetch_one(
            f"""
            UPDATE comparisons
            SET {assignments}
            WHERE id = %s
            RETURNING {COMPARISON_COLUMNS}
            """,
            (*(_adapt(c, changes[c]) for c in columns), utcnow(), comparison_id),
            commit=True,
        )
        return _row_to_comparison(row) if row is not None else None

    # Exports

    def insert_export(self, export: Export) -> Export:
        row = self._fetch_one(
            f"""
            INSERT INTO exports ({EXPORT_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {EXPORT_COLUMNS}
            """,
            (
                export.id,
                export.comparison_id,
                export.owner_id,
                export.export_type,
                export.blob_ref,
                export.size_bytes,
                export.download_count,
                export.created_at,
                export.updated_at,
            ),
            commit=True,
        )
        if row is None:
            raise ConstraintViolationError(f"Export {export.id} was not inserted")
        return _row_to_export(row)

    def find_export(self, export_id: str) -> Export | None:
        if not _is_record_id(export_id):
            return None
        row = self._fetch_one(
            f"SELECT {EXPORT_COLUMNS} FROM exports WHERE id = %s", (export_id,)
        )
        return _row_to_export(row) if row is not None else None

    def find_exports_by_comparison(self, comparison_id: str) -> list[Export]:
        if not _is_record_id(comparison_id):
            return []
        rows = self._fetch_all(
            f"""
            SELECT {EXPORT_COLUMNS} FROM exports
            WHERE comparison_id = %s ORDER BY created_at
            """,
            (comparison_id,),
        )
        return [_row_to_export(row) for row in rows]

    def increment_download_count(self, export_id: str) -> Export | None:
        if not _is_record_id(export_id):
            return None
        row = self._fetch_one(
            f"""
            UPDATE exports
            SET download_count = download_count + 1, updated_at = %s
            WHERE id = %s
            RETURNING {EXPORT_COLUMNS}
            """,
            (utcnow(), export_id),
            commit=True,
        )
        return _row_to_export(row) if row is not None else None

    # Helpers

    def _fetch_one(
        self, sql: str, params: tuple[Any, ...], commit: bool = False
    ) -> dict[str, Any] | None:
        with _connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params)  # type: ignore[arg-type]
                row = cur.fetchone()
            if commit:
                conn.commit()
        return row

    def _fetch_all(self, sql: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        with _connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params)  # type: ignore[arg-type]
                return cur.fetchall()

    def _execute(self, sql: str, params: tuple[Any, ...]) -> int:
        with _connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)  # type: ignore[arg-type]
                rowcount = cur.rowcount
            conn.commit()
        return rowcount
