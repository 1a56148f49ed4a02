import time
import unicodedata
from collections.abc import Callable
from typing import TypeVar

from docstore.blobs.base import BaseBlobStore
from docstore.blobs.exceptions import BlobNotFoundError
from docstore.blobs.keys import document_key
from docstore.config.settings import Settings
from docstore.exceptions import (
    ComparisonNotFoundError,
    DocumentNotFoundError,
    DocumentValidationError,
    ExportNotFoundError,
    ForbiddenError,
    StorageFailureError,
    TransientBackendError,
)
from docstore.hashing.content_addresser import ContentAddresser
from docstore.logging.logger import Log
from docstore.queue.task_queue import TaskQueue
from docstore.records.base import BaseRecordStore
from docstore.records.exceptions import ConstraintViolationError
from docstore.records.models import (
    Comparison,
    ComparisonStatus,
    Document,
    Export,
    ExportType,
    QueueTask,
    TaskType,
    new_id,
)

_T = TypeVar("_T")


def _has_control_characters(value: str) -> bool:
    return any(unicodedata.category(ch) == "Cc" for ch in value)


class StorageFacade:
    """Entry point for uploads, downloads and deletes of owner-scoped documents.

    Every operation that touches an existing entity checks that the
    requesting owner owns it. Uploads are deduplicated per owner by content
    hash; a new document is always persisted together with its first
    extract_text task.
    """

    RETRY_PAUSE_SECONDS = 0.2

    def __init__(
        self,
        blob_store: BaseBlobStore,
        record_store: BaseRecordStore,
        queue: TaskQueue,
        settings: Settings,
    ) -> None:
        self._blobs = blob_store
        self._records = record_store
        self._queue = queue
        self._settings = settings

    # Documents

    def upload(self, owner_id: str, data: bytes, original_name: str) -> Document:
        """Store a document for owner_id, or return the existing copy of the same bytes.

        Raises:
            DocumentValidationError: on an empty owner or name, control
                characters in either, an unsupported extension, or a file
                over max_file_size_bytes.
            StorageFailureError: if the blob or record write failed after
                retries. Any blob written by this call has been removed.
        """
        mime_category = self._validate_upload(owner_id, data, original_name)
        content_hash = ContentAddresser.hash(data)

        existing = self._retry(
            lambda: self._records.find_document_by_owner_and_hash(owner_id, content_hash),
            "dedup lookup",
        )
        if existing is not None:
            if not existing.is_deleted:
                Log.info(f"Duplicate upload for owner {owner_id}, returning document {existing.id}")
                return existing
            Log.info(f"Finishing deletion of document {existing.id} before re-upload")
            self._purge(existing)

        key = document_key(self._settings.storage_folder_prefix, owner_id, content_hash, original_name)
        locator = self._retry(
            lambda: self._blobs.put(key, data, ContentAddresser.content_type(mime_category)),
            f"blob write for {original_name}",
        )

        document = Document(
            id=new_id(),
            owner_id=owner_id,
            content_hash=content_hash,
            original_name=original_name,
            size_bytes=len(data),
            mime_category=mime_category,
            blob_ref=locator,
        )
        task = self._queue.build_task(document.id, TaskType.EXTRACT_TEXT)
        try:
            stored, created = self._retry(
                lambda: self._records.insert_document_with_task(document, task),
                f"record insert for document {document.id}",
            )
        except ConstraintViolationError:
            stored = self._conflict_winner(owner_id, content_hash, original_name, locator)
            created = False
        except Exception as exc:
            # No record points at the blob.
            self._discard_blob(locator)
            raise StorageFailureError(f"Could not store document {original_name}: {exc}") from exc

        # A retried insert that had already committed reports our own row as a duplicate.
        if not created and stored.id != document.id:
            if stored.blob_ref != locator:
                self._discard_blob(locator)
            Log.info(f"Lost dedup race for owner {owner_id}, returning document {stored.id}")
            return stored

        Log.info(
            f"Stored document {stored.id} for owner {owner_id} "
            f"({stored.size_bytes} bytes, {stored.mime_category})"
        )
        return stored

    def fetch(self, document_id: str, requesting_owner_id: str) -> bytes:
        """Return the stored bytes of a live document owned by requesting_owner_id."""
        document = self._owned_document(document_id, requesting_owner_id)
        try:
            return self._retry(lambda: self._blobs.get(document.blob_ref), f"blob read for {document_id}")
        except BlobNotFoundError:
            raise DocumentNotFoundError(f"Document {document_id} not found") from None

    def delete(self, document_id: str, requesting_owner_id: str) -> None:
        """Remove a document, its blob and everything that references it.

        Calling delete again on a document whose earlier deletion stopped
        half-way finishes the job.

        Raises:
            StorageFailureError: if the blob could not be removed. The record
                stays soft-deleted so the call can be repeated.
        """
        document = self._retry(lambda: self._records.find_document(document_id), "document lookup")
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        self._check_owner(document.owner_id, requesting_owner_id, f"document {document_id}")
        self._purge(document)
        Log.info(f"Deleted document {document_id} for owner {requesting_owner_id}")

    def mark_standard(self, document_id: str, requesting_owner_id: str) -> Document:
        """Flag a document as a standard template. Idempotent."""
        self._owned_document(document_id, requesting_owner_id)
        updated = self._retry(lambda: self._records.set_standard(document_id), "mark standard")
        if updated is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return updated

    def get_document(self, document_id: str, requesting_owner_id: str) -> Document:
        return self._owned_document(document_id, requesting_owner_id)

    def list_documents(self, owner_id: str, standard_only: bool | None = None) -> list[Document]:
        """List live documents of owner_id, newest first.

        standard_only=True keeps only standard templates, False excludes them.
        """
        documents = self._retry(lambda: self._records.find_documents_by_owner(owner_id), "list documents")
        if standard_only is None:
            return documents
        return [d for d in documents if d.is_standard_template == standard_only]

    # Comparisons

    def request_comparison(
        self, requesting_owner_id: str, document1_id: str, document2_id: str
    ) -> Comparison:
        """Create a pending comparison of two owned documents.

        The compare task is enqueued right away when both documents already
        have text; otherwise extraction enqueues it once they do.
        """
        if document1_id == document2_id:
            raise DocumentValidationError("A document cannot be compared with itself")
        self._owned_document(document1_id, requesting_owner_id)
        self._owned_document(document2_id, requesting_owner_id)

        try:
            comparison = self._records.insert_comparison(
                Comparison(
                    id=new_id(),
                    owner_id=requesting_owner_id,
                    document1_id=document1_id,
                    document2_id=document2_id,
                )
            )
        except ConstraintViolationError:
            raise DocumentNotFoundError("A compared document was deleted concurrently") from None

        # Re-read after the insert so a concurrent extraction cannot strand the comparison.
        documents = [self._records.find_document(d) for d in comparison.document_ids]
        if all(d is not None and d.extracted_text is not None for d in documents):
            self._queue.enqueue(
                document1_id,
                TaskType.COMPARE,
                related_document_id=document2_id,
                payload={"comparison_id": comparison.id},
            )
        else:
            Log.info(f"Comparison {comparison.id} waits for text extraction")
        return comparison

    def get_comparison(self, comparison_id: str, requesting_owner_id: str) -> Comparison:
        comparison = self._retry(lambda: self._records.find_comparison(comparison_id), "comparison lookup")
        if comparison is None:
            raise ComparisonNotFoundError(f"Comparison {comparison_id} not found")
        self._check_owner(comparison.owner_id, requesting_owner_id, f"comparison {comparison_id}")
        return comparison

    def list_comparisons(self, owner_id: str) -> list[Comparison]:
        return self._retry(lambda: self._records.find_comparisons_by_owner(owner_id), "list comparisons")

    # Exports

    def request_export(
        self,
        requesting_owner_id: str,
        comparison_id: str,
        export_type: str = ExportType.PDF,
    ) -> QueueTask:
        if export_type not in ExportType.ALL:
            raise DocumentValidationError(
                f"Unsupported export type '{export_type}'. Choose from: {sorted(ExportType.ALL)}"
            )
        comparison = self.get_comparison(comparison_id, requesting_owner_id)
        if comparison.status != ComparisonStatus.COMPLETED:
            raise DocumentValidationError(
                f"Comparison {comparison_id} is {comparison.status}, only completed comparisons can be exported"
            )
        return self._queue.enqueue(
            comparison.document1_id,
            TaskType.EXPORT,
            related_document_id=comparison.document2_id,
            payload={"comparison_id": comparison.id, "export_type": export_type},
        )

    def list_exports(self, comparison_id: str, requesting_owner_id: str) -> list[Export]:
        self.get_comparison(comparison_id, requesting_owner_id)
        return self._records.find_exports_by_comparison(comparison_id)

    def fetch_export(self, export_id: str, requesting_owner_id: str) -> bytes:
        """Return the rendered export bytes and count the download."""
        export = self._retry(lambda: self._records.find_export(export_id), "export lookup")
        if export is None:
            raise ExportNotFoundError(f"Export {export_id} not found")
        self._check_owner(export.owner_id, requesting_owner_id, f"export {export_id}")
        try:
            data = self._retry(lambda: self._blobs.get(export.blob_ref), f"blob read for export {export_id}")
        except BlobNotFoundError:
            raise ExportNotFoundError(f"Export {export_id} not found") from None
        self._records.increment_download_count(export_id)
        return data

    # Internals

    def _conflict_winner(
        self, owner_id: str, content_hash: str, original_name: str, locator: str
    ) -> Document:
        """Re-read the document that won the (owner, hash) insert race."""
        try:
            stored = self._retry(
                lambda: self._records.find_document_by_owner_and_hash(owner_id, content_hash),
                "dedup re-fetch",
            )
        except Exception as exc:
            self._discard_blob(locator)
            raise StorageFailureError(f"Could not store document {original_name}: {exc}") from exc
        if stored is None:
            self._discard_blob(locator)
            raise StorageFailureError(f"Could not store document {original_name}")
        return stored

    def _validate_upload(self, owner_id: str, data: bytes, original_name: str) -> str:
        if not owner_id or not owner_id.strip():
            raise DocumentValidationError("Owner id must not be empty")
        if not original_name or not original_name.strip():
            raise DocumentValidationError("File name must not be empty")
        if _has_control_characters(owner_id) or _has_control_characters(original_name):
            raise DocumentValidationError("Owner id and file name must not contain control characters")
        if len(data) > self._settings.max_file_size_bytes:
            raise DocumentValidationError(
                f"File {original_name} is {len(data)} bytes, "
                f"limit is {self._settings.max_file_size_bytes}"
            )
        return ContentAddresser.mime_category(original_name)

    def _owned_document(self, document_id: str, requesting_owner_id: str) -> Document:
        document = self._retry(lambda: self._records.find_document(document_id), "document lookup")
        if document is None or document.is_deleted:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        self._check_owner(document.owner_id, requesting_owner_id, f"document {document_id}")
        return document

    @staticmethod
    def _check_owner(owner_id: str, requesting_owner_id: str, what: str) -> None:
        if owner_id != requesting_owner_id:
            raise ForbiddenError(f"Owner {requesting_owner_id} may not access {what}")

    def _purge(self, document: Document) -> None:
        """Soft-delete, drop blobs, then hard-delete with cascade.

        Stops after the soft-delete when a blob cannot be removed so a later
        call can finish the deletion.
        """
        self._retry(lambda: self._records.soft_delete_document(document.id), "soft delete")

        locators = [document.blob_ref]
        for comparison in self._records.find_comparisons_by_owner(document.owner_id):
            if document.id in comparison.document_ids:
                locators.extend(e.blob_ref for e in self._records.find_exports_by_comparison(comparison.id))

        for locator in locators:
            try:
                self._retry(lambda: self._blobs.delete(locator), f"blob delete for {document.id}")
            except BlobNotFoundError:
                Log.debug(f"Blob {locator} already gone")
            except StorageFailureError as exc:
                Log.error(f"Document {document.id} kept soft-deleted, blob removal failed: {exc}")
                raise

        self._retry(lambda: self._records.delete_document(document.id), "record delete")

    def _discard_blob(self, locator: str) -> None:
        """Compensating cleanup for a blob whose record was never written."""
        try:
            self._retry(lambda: self._blobs.delete(locator), f"cleanup of {locator}")
        except BlobNotFoundError:
            return
        except StorageFailureError as exc:
            Log.error(f"Orphaned blob {locator} could not be removed: {exc}")

    def _retry(self, operation: Callable[[], _T], description: str) -> _T:
        """Run a single backend call, retrying transient failures.

        Raises:
            StorageFailureError: once facade_max_retries retries are used up.
        """
        attempts = self._settings.facade_max_retries + 1
        attempt = 1
        while True:
            try:
                return operation()
            except TransientBackendError as exc:
                if attempt >= attempts:
                    raise StorageFailureError(f"{description} failed after {attempts} attempts: {exc}") from exc
                Log.warning(f"{description} failed (attempt {attempt}/{attempts}), retrying: {exc}")
                time.sleep(self.RETRY_PAUSE_SECONDS * 2 ** (attempt - 1))
                attempt += 1
