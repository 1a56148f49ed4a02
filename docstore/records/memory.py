"""In-process record store used when no relational database is configured.

All state lives in dicts guarded by a single lock and is lost on process
restart. That is the intended behavior for development and tests.
"""

import copy
import dataclasses
import threading
from collections import Counter
from collections.abc import Iterable
from datetime import datetime
from typing import Any, TypeVar

from docstore.records.base import BaseRecordStore
from docstore.records.exceptions import ConstraintViolationError
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

_T = TypeVar("_T")


def _copy(record: _T) -> _T:
    return copy.deepcopy(record)


class InMemoryRecordStore(BaseRecordStore):
    """Dict-backed record store with mutex-guarded check-and-set operations."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, Document] = {}
        self._hash_index: dict[tuple[str, str], str] = {}
        self._tasks: dict[str, QueueTask] = {}
        self._comparisons: dict[str, Comparison] = {}
        self._exports: dict[str, Export] = {}

    # Documents

    def insert_document_with_task(
        self, document: Document, task: QueueTask
    ) -> tuple[Document, bool]:
        key = (document.owner_id, document.content_hash)
        with self._lock:
            existing_id = self._hash_index.get(key)
            if existing_id is not None:
                return _copy(self._documents[existing_id]), False
            if task.document_id != document.id:
                raise ConstraintViolationError(
                    f"Task {task.id} does not reference document {document.id}"
                )
            self._documents[document.id] = _copy(document)
            self._hash_index[key] = document.id
            self._tasks[task.id] = _copy(task)
            return _copy(document), True

    def find_document(self, document_id: str) -> Document | None:
        with self._lock:
            document = self._documents.get(document_id)
            return _copy(document) if document is not None else None

    def find_document_by_owner_and_hash(
        self, owner_id: str, content_hash: str
    ) -> Document | None:
        with self._lock:
            document_id = self._hash_index.get((owner_id, content_hash))
            if document_id is None:
                return None
            return _copy(self._documents[document_id])

    def find_documents_by_owner(self, owner_id: str) -> list[Document]:
        with self._lock:
            documents = [
                _copy(d)
                for d in self._documents.values()
                if d.owner_id == owner_id and d.deleted_at is None
            ]
        return sorted(documents, key=lambda d: d.created_at, reverse=True)

    def set_standard(self, document_id: str) -> Document | None:
        with self._lock:
            document = self._live_document(document_id)
            if document is None:
                return None
            if not document.is_standard_template:
                document.is_standard_template = True
                document.updated_at = utcnow()
            return _copy(document)

    def set_document_status(self, document_id: str, status: str) -> bool:
        with self._lock:
            document = self._live_document(document_id)
            if document is None:
                return False
            document.status = status
            document.updated_at = utcnow()
            return True

    def set_extracted_text(self, document_id: str, text: str) -> bool:
        with self._lock:
            document = self._live_document(document_id)
            if document is None or document.extracted_text is not None:
                return False
            document.extracted_text = text
            document.status = DocumentStatus.PROCESSED
            document.updated_at = utcnow()
            return True

    def soft_delete_document(self, document_id: str) -> bool:
        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                return False
            if document.deleted_at is None:
                document.deleted_at = utcnow()
                document.updated_at = document.deleted_at
            return True

    def delete_document(self, document_id: str) -> bool:
        with self._lock:
            document = self._documents.pop(document_id, None)
            if document is None:
                return False
            self._hash_index.pop((document.owner_id, document.content_hash), None)
            self._tasks = {
                task_id: task
                for task_id, task in self._tasks.items()
                if document_id not in (task.document_id, task.related_document_id)
            }
            removed_comparisons = {
                c.id for c in self._comparisons.values() if document_id in c.document_ids
            }
            for comparison_id in removed_comparisons:
                del self._comparisons[comparison_id]
            self._exports = {
                export_id: export
                for export_id, export in self._exports.items()
                if export.comparison_id not in removed_comparisons
            }
            return True

    def _live_document(self, document_id: str) -> Document | None:
        document = self._documents.get(document_id)
        if document is None or document.deleted_at is not None:
            return None
        return document

    # Queue tasks

    def insert_task(self, task: QueueTask) -> QueueTask:
        with self._lock:
            for referenced in (task.document_id, task.related_document_id):
                if referenced is not None and referenced not in self._documents:
                    raise ConstraintViolationError(
                        f"Task {task.id} references missing document {referenced}"
                    )
            self._tasks[task.id] = _copy(task)
            return _copy(task)

    def find_task(self, task_id: str) -> QueueTask | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return _copy(task) if task is not None else None

    def claim_next_task(
        self, task_types: Iterable[str], now: datetime
    ) -> QueueTask | None:
        wanted = set(task_types)
        with self._lock:
            candidates = [
                t
                for t in self._tasks.values()
                if t.status == TaskStatus.QUEUED
                and t.task_type in wanted
                and t.scheduled_at <= now
            ]
            if not candidates:
                return None
            task = min(
                candidates, key=lambda t: (-t.priority, t.scheduled_at, t.created_at)
            )
            task.status = TaskStatus.CLAIMED
            task.claimed_at = now
            task.updated_at = now
            return _copy(task)

    def transition_task(
        self,
        task_id: str,
        from_status: str,
        expected_attempts: int,
        **changes: Any,
    ) -> QueueTask | None:
        with self._lock:
            task = self._tasks.get(task_id)
            if (
                task is None
                or task.status != from_status
                or task.attempts != expected_attempts
            ):
                return None
            updated = dataclasses.replace(task, **changes)
            if "updated_at" not in changes:
                updated.updated_at = utcnow()
            self._tasks[task_id] = updated
            return _copy(updated)

    def list_tasks_by_status(
        self, status: str, task_types: Iterable[str] | None = None
    ) -> list[QueueTask]:
        wanted = set(task_types) if task_types is not None else None
        with self._lock:
            tasks = [
                _copy(t)
                for t in self._tasks.values()
                if t.status == status and (wanted is None or t.task_type in wanted)
            ]
        return sorted(tasks, key=lambda t: t.created_at)

    def count_tasks_by_status(self) -> dict[str, int]:
        with self._lock:
            return dict(Counter(t.status for t in self._tasks.values()))

    def list_tasks_by_document(self, document_id: str) -> list[QueueTask]:
        with self._lock:
            tasks = [
                _copy(t)
                for t in self._tasks.values()
                if document_id in (t.document_id, t.related_document_id)
            ]
        return sorted(tasks, key=lambda t: t.created_at)

    def list_stale_claims(self, claimed_before: datetime) -> list[QueueTask]:
        with self._lock:
            tasks = [
                _copy(t)
                for t in self._tasks.values()
                if t.status == TaskStatus.CLAIMED
                and t.claimed_at is not None
                and t.claimed_at < claimed_before
            ]
        return sorted(tasks, key=lambda t: t.claimed_at or t.created_at)

    # Comparisons

    def insert_comparison(self, comparison: Comparison) -> Comparison:
        with self._lock:
            for referenced in comparison.document_ids:
                if referenced not in self._documents:
                    raise ConstraintViolationError(
                        f"Comparison {comparison.id} references missing document {referenced}"
                    )
            self._comparisons[comparison.id] = _copy(comparison)
            return _copy(comparison)

    def find_comparison(self, comparison_id: str) -> Comparison | None:
        with self._lock:
            comparison = self._comparisons.get(comparison_id)
            return _copy(comparison) if comparison is not None else None

    def find_comparisons_by_owner(self, owner_id: str) -> list[Comparison]:
        with self._lock:
            comparisons = [
                _copy(c) for c in self._comparisons.values() if c.owner_id == owner_id
            ]
        return sorted(comparisons, key=lambda c: c.created_at, reverse=True)

    def find_pending_comparisons_for_document(self, document_id: str) -> list[Comparison]:
        with self._lock:
            comparisons = [
                _copy(c)
                for c in self._comparisons.values()
                if c.status == ComparisonStatus.PENDING and document_id in c.document_ids
            ]
        return sorted(comparisons, key=lambda c: c.created_at)

    def update_comparison(self, comparison_id: str, **changes: Any) -> Comparison | None:
        with self._lock:
            comparison = self._comparisons.get(comparison_id)
            if comparison is None:
                return None
            updated = dataclasses.replace(comparison, **changes)
            updated.updated_at = utcnow()
            self._comparisons[comparison_id] = updated
            return _copy(updated)

    # Exports

    def insert_export(self, export: Export) -> Export:
        with self._lock:
            if export.comparison_id not in self._comparisons:
                raise ConstraintViolationError(
                    f"Export {export.id} references missing comparison {export.comparison_id}"
                )
            self._exports[export.id] = _copy(export)
            return _copy(export)

    def find_export(self, export_id: str) -> Export | None:
        with self._lock:
            export = self._exports.get(export_id)
            return _copy(export) if export is not None else None

    def find_exports_by_comparison(self, comparison_id: str) -> list[Export]:
        with self._lock:
            exports = [
                _copy(e) for e in self._exports.values() if e.comparison_id == comparison_id
            ]
        return sorted(exports, key=lambda e: e.created_at)

    def increment_download_count(self, export_id: str) -> Export | None:
        with self._lock:
            export = self._exports.get(export_id)
            if export is None:
                return None
            export.download_count += 1
            export.updated_at = utcnow()
            return _copy(export)
