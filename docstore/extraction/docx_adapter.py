import io

from docx import Document  # type: ignore[import-untyped]

from docstore.extraction.base import BaseTextExtractor
from docstore.extraction.exceptions import TextExtractionError


class DocxAdapter(BaseTextExtractor):
    """Extracts paragraph and table text from DOCX using python-docx."""

    def extract(self, data: bytes) -> str:
        try:
            document = Document(io.BytesIO(data))
            lines = [paragraph.text for paragraph in document.paragraphs]
            for table in document.tables:
                for row in table.rows:
                    lines.append("\t".join(cell.text for cell in row.cells))
        except Exception as exc:
            raise TextExtractionError(f"python-docx extraction failed: {exc}") from exc
        return "\n".join(line for line in lines if line.strip()).strip()
