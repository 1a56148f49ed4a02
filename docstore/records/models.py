import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class DocumentStatus:
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class TaskStatus:
    QUEUED = "queued"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (QUEUED, CLAIMED, COMPLETED, FAILED)


class TaskType:
    EXTRACT_TEXT = "extract_text"
    COMPARE = "compare"
    EXPORT = "export"

    ALL = frozenset({EXTRACT_TEXT, COMPARE, EXPORT})


class ComparisonStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class ExportType:
    PDF = "pdf"
    JSON = "json"

    ALL = frozenset({PDF, JSON})


@dataclass
class Document:
    """Represents a row from the documents table."""

    id: str
    owner_id: str
    content_hash: str
    original_name: str
    size_bytes: int
    mime_category: str
    blob_ref: str
    status: str = DocumentStatus.UPLOADED
    extracted_text: str | None = None
    is_standard_template: bool = False
    deleted_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class QueueTask:
    """Represents a row from the queue_tasks table."""

    id: str
    document_id: str
    task_type: str
    priority: int
    max_attempts: int
    status: str = TaskStatus.QUEUED
    attempts: int = 0
    related_document_id: str | None = None
    last_error: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    scheduled_at: datetime = field(default_factory=utcnow)
    claimed_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Comparison:
    """Represents a row from the comparisons table."""

    id: str
    owner_id: str
    document1_id: str
    document2_id: str
    status: str = ComparisonStatus.PENDING
    similarity_score: float | None = None
    summary: str | None = None
    key_differences: dict[str, Any] | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def document_ids(self) -> tuple[str, str]:
        return (self.document1_id, self.document2_id)


@dataclass
class Export:
    """Represents a row from the exports table."""

    id: str
    comparison_id: str
    owner_id: str
    export_type: str
    blob_ref: str
    size_bytes: int
    download_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
