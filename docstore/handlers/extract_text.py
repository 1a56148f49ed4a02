from docstore.blobs.base import BaseBlobStore
from docstore.config.settings import Settings
from docstore.dispatcher.models import HandlerResult, TaskSpec
from docstore.extraction.factory import TextExtractorFactory
from docstore.logging.logger import Log
from docstore.records.base import BaseRecordStore
from docstore.records.models import Document, DocumentStatus, QueueTask, TaskType


class ExtractTextHandler:
    """Reads a document's blob, stores its text and releases waiting comparisons.

    Comparison tasks are only returned once every document they reference has
    extracted text, so a compare task never runs ahead of extraction.
    """

    def __init__(
        self,
        record_store: BaseRecordStore,
        blob_store: BaseBlobStore,
        settings: Settings,
    ) -> None:
        self._records = record_store
        self._blobs = blob_store
        self._settings = settings

    def __call__(self, task: QueueTask) -> HandlerResult:
        document = self._records.find_document(task.document_id)
        if document is None or document.is_deleted:
            Log.info(f"Document {task.document_id} was deleted, skipping extraction")
            return HandlerResult.ok()

        if document.extracted_text is None:
            self._records.set_document_status(document.id, DocumentStatus.PROCESSING)
            data = self._blobs.get(document.blob_ref)
            extractor = TextExtractorFactory.create(self._settings, document.mime_category)
            text = extractor.extract(data)
            Log.info(f"Extracted {len(text)} chars from document {document.id}")
            if not self._records.set_extracted_text(document.id, text):
                refreshed = self._records.find_document(document.id)
                if refreshed is None or refreshed.is_deleted:
                    Log.info(f"Document {document.id} deleted during extraction, result dropped")
                    return HandlerResult.ok()

        return HandlerResult.ok(*self._ready_comparisons(document))

    def on_terminal_failure(self, task: QueueTask) -> None:
        if self._records.set_document_status(task.document_id, DocumentStatus.ERROR):
            Log.error(f"Document {task.document_id} marked as error: {task.last_error}")

    def _ready_comparisons(self, document: Document) -> list[TaskSpec]:
        specs = []
        for comparison in self._records.find_pending_comparisons_for_document(document.id):
            others = [d for d in comparison.document_ids if d != document.id]
            if not all(self._has_text(other) for other in others):
                continue
            specs.append(
                TaskSpec(
                    document_id=comparison.document1_id,
                    related_document_id=comparison.document2_id,
                    task_type=TaskType.COMPARE,
                    payload={"comparison_id": comparison.id},
                )
            )
        return specs

    def _has_text(self, document_id: str) -> bool:
        other = self._records.find_document(document_id)
        return other is not None and not other.is_deleted and other.extracted_text is not None
