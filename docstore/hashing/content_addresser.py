import hashlib
from pathlib import PurePosixPath
from typing import ClassVar

from docstore.exceptions import DocumentValidationError


class ContentAddresser:
    """Computes the deduplication key for uploaded bytes."""

    MIME_CATEGORIES: ClassVar[dict[str, str]] = {
        ".pdf": "pdf",
        ".docx": "docx",
        ".txt": "text",
    }

    CONTENT_TYPES: ClassVar[dict[str, str]] = {
        "pdf": "application/pdf",
        "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text": "text/plain",
    }

    @staticmethod
    def hash(data: bytes) -> str:
        """Return the SHA-256 hex digest of data. Empty input is valid."""
        return hashlib.sha256(data).hexdigest()

    @classmethod
    def mime_category(cls, filename: str) -> str:
        """Classify a filename by extension.

        Raises:
            DocumentValidationError: if the extension is not supported.
        """
        suffix = PurePosixPath(filename).suffix.lower()
        category = cls.MIME_CATEGORIES.get(suffix)
        if category is None:
            raise DocumentValidationError(
                f"Unsupported file type '{suffix or filename}'. "
                f"Choose from: {sorted(cls.MIME_CATEGORIES)}"
            )
        return category

    @classmethod
    def content_type(cls, mime_category: str) -> str:
        return cls.CONTENT_TYPES.get(mime_category, "application/octet-stream")
