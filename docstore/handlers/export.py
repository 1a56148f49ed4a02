import io
import json
from typing import Any

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from docstore.blobs.base import BaseBlobStore
from docstore.blobs.keys import export_key
from docstore.config.settings import Settings
from docstore.dispatcher.models import HandlerResult
from docstore.logging.logger import Log
from docstore.records.base import BaseRecordStore
from docstore.records.exceptions import ConstraintViolationError
from docstore.records.models import (
    Comparison,
    ComparisonStatus,
    Document,
    Export,
    ExportType,
    QueueTask,
    new_id,
)

CONTENT_TYPES = {
    ExportType.PDF: "application/pdf",
    ExportType.JSON: "application/json",
}


def comparison_report(comparison: Comparison, first: Document, second: Document) -> dict[str, Any]:
    return {
        "comparison_id": comparison.id,
        "document1": {"id": first.id, "name": first.original_name},
        "document2": {"id": second.id, "name": second.original_name},
        "similarity_score": comparison.similarity_score,
        "summary": comparison.summary,
        "key_differences": comparison.key_differences or {},
        "created_at": comparison.created_at.isoformat(),
    }


def render_json(report: dict[str, Any]) -> bytes:
    return json.dumps(report, indent=2, ensure_ascii=False).encode("utf-8")


def render_pdf(report: dict[str, Any]) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    y = 720
    lines = [
        "Document Comparison Report",
        f"Document 1: {report['document1']['name']}",
        f"Document 2: {report['document2']['name']}",
        f"Similarity score: {report['similarity_score']}",
        f"Summary: {report['summary'] or ''}",
    ]
    for label, words in report["key_differences"].items():
        lines.append(f"{label.replace('_', ' ').capitalize()}: {', '.join(words[:15])}")
    for line in lines:
        if y < 72:
            c.showPage()
            y = 720
        c.drawString(72, y, line[:110])
        y -= 18
    c.save()
    return buf.getvalue()


class ExportHandler:
    """Renders a completed comparison and stores it as an export blob."""

    RENDERERS = {
        ExportType.PDF: render_pdf,
        ExportType.JSON: render_json,
    }

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
        comparison = self._records.find_comparison(task.payload.get("comparison_id", ""))
        if comparison is None:
            return HandlerResult.ok()
        if comparison.status != ComparisonStatus.COMPLETED:
            return HandlerResult.failed(f"Comparison {comparison.id} is not completed")

        export_type = task.payload.get("export_type", ExportType.PDF)
        renderer = self.RENDERERS.get(export_type)
        if renderer is None:
            return HandlerResult.failed(f"Unsupported export type '{export_type}'")

        if any(e.export_type == export_type for e in self._records.find_exports_by_comparison(comparison.id)):
            Log.info(f"Comparison {comparison.id} already has a {export_type} export")
            return HandlerResult.ok()

        first, second = (self._records.find_document(d) for d in comparison.document_ids)
        if first is None or second is None or first.is_deleted or second.is_deleted:
            return HandlerResult.ok()

        content = renderer(comparison_report(comparison, first, second))
        key = export_key(
            self._settings.storage_folder_prefix, comparison.owner_id, comparison.id, export_type
        )
        locator = self._blobs.put(key, content, CONTENT_TYPES[export_type])
        try:
            export = self._records.insert_export(
                Export(
                    id=new_id(),
                    comparison_id=comparison.id,
                    owner_id=comparison.owner_id,
                    export_type=export_type,
                    blob_ref=locator,
                    size_bytes=len(content),
                )
            )
        except ConstraintViolationError:
            Log.info(f"Comparison {comparison.id} deleted during export, removing blob")
            self._blobs.delete(locator)
            return HandlerResult.ok()
        Log.info(f"Export {export.id} stored ({len(content)} bytes)")
        return HandlerResult.ok()
