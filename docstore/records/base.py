from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from docstore.records.models import Comparison, Document, Export, QueueTask


class BaseRecordStore(ABC):
    """Contract for all structured-record backends.

    Every variant exposes the same logical fields and return types. Callers
    never branch on which variant is active.
    """

    # Documents

    @abstractmethod
    def insert_document_with_task(
        self, document: Document, task: QueueTask
    ) -> tuple[Document, bool]:
        """Insert a document and its first task as one unit.

        The (owner_id, content_hash) check and the insert are atomic. When a
        document with the same pair already exists, nothing is written and
        the existing document is returned.

        Returns:
            (document, created) where created is False for a dedup hit.

        Raises:
            RecordStoreConnectionError: if the backend is unreachable.
        """

    @abstractmethod
    def find_document(self, document_id: str) -> Document | None:
        """Find a document by ID, including soft-deleted ones."""

    @abstractmethod
    def find_document_by_owner_and_hash(
        self, owner_id: str, content_hash: str
    ) -> Document | None:
        """Find the document an owner uploaded with this content hash."""

    @abstractmethod
    def find_documents_by_owner(self, owner_id: str) -> list[Document]:
        """List an owner's live documents, newest first."""

    @abstractmethod
    def set_standard(self, document_id: str) -> Document | None:
        """Flag a live document as a standard template. Idempotent."""

    @abstractmethod
    def set_document_status(self, document_id: str, status: str) -> bool:
        """Update status of a live document. False if missing or soft-deleted."""

    @abstractmethod
    def set_extracted_text(self, document_id: str, text: str) -> bool:
        """Store extracted text once and mark the document processed.

        Returns False without writing when the document is missing,
        soft-deleted, or already has extracted text.
        """

    @abstractmethod
    def soft_delete_document(self, document_id: str) -> bool:
        """Set the deleted_at sentinel. False if the document is missing."""

    @abstractmethod
    def delete_document(self, document_id: str) -> bool:
        """Remove a document with its tasks, comparisons and exports."""

    # Queue tasks

    @abstractmethod
    def insert_task(self, task: QueueTask) -> QueueTask:
        """Insert a task.

        Raises:
            ConstraintViolationError: if a referenced document does not exist.
        """

    @abstractmethod
    def find_task(self, task_id: str) -> QueueTask | None:
        """Find a task by ID."""

    @abstractmethod
    def claim_next_task(
        self, task_types: Iterable[str], now: datetime
    ) -> QueueTask | None:
        """Atomically claim the next due queued task of the given types.

        Order: priority descending, then scheduled_at, then created_at.
        No two callers can claim the same task.
        """

    @abstractmethod
    def transition_task(
        self,
        task_id: str,
        from_status: str,
        expected_attempts: int,
        **changes: Any,
    ) -> QueueTask | None:
        """Compare-and-set update on a task.

        Applies changes only if the task is still in from_status with
        expected_attempts. Returns the updated task, or None if the guard
        did not match.
        """

    @abstractmethod
    def list_tasks_by_status(
        self, status: str, task_types: Iterable[str] | None = None
    ) -> list[QueueTask]:
        """List tasks in a status, oldest first."""

    @abstractmethod
    def count_tasks_by_status(self) -> dict[str, int]:
        """Number of tasks per status. Statuses with no tasks may be absent."""

    @abstractmethod
    def list_tasks_by_document(self, document_id: str) -> list[QueueTask]:
        """List tasks referencing a document as primary or related document."""

    @abstractmethod
    def list_stale_claims(self, claimed_before: datetime) -> list[QueueTask]:
        """List claimed tasks whose claimed_at is older than claimed_before."""

    # Comparisons

    @abstractmethod
    def insert_comparison(self, comparison: Comparison) -> Comparison:
        """Insert a comparison.

        Raises:
            ConstraintViolationError: if a referenced document does not exist.
        """

    @abstractmethod
    def find_comparison(self, comparison_id: str) -> Comparison | None:
        """Find a comparison by ID."""

    @abstractmethod
    def find_comparisons_by_owner(self, owner_id: str) -> list[Comparison]:
        """List an owner's comparisons, newest first."""

    @abstractmethod
    def find_pending_comparisons_for_document(self, document_id: str) -> list[Comparison]:
        """List pending comparisons that reference the document."""

    @abstractmethod
    def update_comparison(self, comparison_id: str, **changes: Any) -> Comparison | None:
        """Apply field changes. Returns None if the comparison is gone."""

    # Exports

    @abstractmethod
    def insert_export(self, export: Export) -> Export:
        """Insert an export.

        Raises:
            ConstraintViolationError: if the comparison does not exist.
        """

    @abstractmethod
    def find_export(self, export_id: str) -> Export | None:
        """Find an export by ID."""

    @abstractmethod
    def find_exports_by_comparison(self, comparison_id: str) -> list[Export]:
        """List exports generated for a comparison."""

    @abstractmethod
    def increment_download_count(self, export_id: str) -> Export | None:
        """Bump the download counter. Returns None if the export is gone."""
