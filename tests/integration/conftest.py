import os
import uuid
from collections.abc import Callable, Generator
from typing import Any

import psycopg
import pytest

from docstore.config.settings import Settings
from docstore.database.connection import close_pool, get_connection, init_pool
from docstore.database.schema import create_schema
from docstore.records.models import Document, QueueTask, TaskType, new_id
from docstore.records.postgres import PostgresRecordStore


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "docstore_test")
    return Settings(record_store="relational", worker_count=4)


def _delete_all_rows() -> None:
    # Comparisons, tasks and exports go with their documents via ON DELETE CASCADE.
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM documents")
        conn.commit()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        init_pool(test_settings)
        with get_connection() as conn:
            create_schema(conn)
    except Exception as e:
        close_pool()
        pytest.skip(
            f"PostgreSQL test DB not available: {e}. "
            "Set DB_* env to point at a disposable database"
        )
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def db_conn(integration_pool: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection() as conn:
        yield conn


@pytest.fixture
def clean_tables(integration_pool: None) -> Generator[None, None, None]:
    _delete_all_rows()
    yield
    _delete_all_rows()


@pytest.fixture
def pg_store(clean_tables: None) -> PostgresRecordStore:
    return PostgresRecordStore()


@pytest.fixture
def owner_id() -> str:
    return f"owner-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def make_document(owner_id: str) -> Callable[..., Document]:
    def factory(content_hash: str | None = None, **overrides: Any) -> Document:
        values: dict[str, Any] = {
            "id": new_id(),
            "owner_id": owner_id,
            "content_hash": content_hash or uuid.uuid4().hex * 2,
            "original_name": "nda.txt",
            "size_bytes": 10,
            "mime_category": "text",
            "blob_ref": f"local://users/{owner_id}/documents/nda.txt",
        }
        values.update(overrides)
        return Document(**values)

    return factory


@pytest.fixture
def make_task() -> Callable[..., QueueTask]:
    def factory(document: Document, **overrides: Any) -> QueueTask:
        values: dict[str, Any] = {
            "id": new_id(),
            "document_id": document.id,
            "task_type": TaskType.EXTRACT_TEXT,
            "priority": 5,
            "max_attempts": 3,
        }
        values.update(overrides)
        return QueueTask(**values)

    return factory
