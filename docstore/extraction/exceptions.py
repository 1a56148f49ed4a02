from docstore.exceptions import DocStoreError


class TextExtractionError(DocStoreError):
    """Raised when text cannot be extracted from a document's bytes."""
