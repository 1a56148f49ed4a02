from typing import ClassVar

from docstore.config.settings import Settings
from docstore.extraction.base import BaseTextExtractor
from docstore.extraction.docx_adapter import DocxAdapter
from docstore.extraction.pdfplumber_adapter import PdfPlumberAdapter
from docstore.extraction.plain_text_adapter import PlainTextAdapter
from docstore.extraction.pymupdf_adapter import PyMuPdfAdapter


class TextExtractorFactory:
    """Creates the text extractor for a document's mime category."""

    PDF_ENGINES: ClassVar[dict[str, type[BaseTextExtractor]]] = {
        "pdfplumber": PdfPlumberAdapter,
        "pymupdf": PyMuPdfAdapter,
    }

    @classmethod
    def create(cls, settings: Settings, mime_category: str) -> BaseTextExtractor:
        if mime_category == "pdf":
            engine = settings.pdf_engine.lower()
            adapter_cls = cls.PDF_ENGINES.get(engine)
            if adapter_cls is None:
                raise ValueError(
                    f"Unknown PDF engine '{engine}'. Choose from: {list(cls.PDF_ENGINES)}"
                )
            return adapter_cls()
        if mime_category == "docx":
            return DocxAdapter()
        if mime_category == "text":
            return PlainTextAdapter()
        raise ValueError(f"No text extractor for mime category '{mime_category}'")
