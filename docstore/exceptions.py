class DocStoreError(Exception):
    """Base exception for all docstore errors."""


class DocumentValidationError(DocStoreError):
    """Raised when an upload or request is rejected on input grounds. Never retried."""


class ForbiddenError(DocStoreError):
    """Raised when the requesting owner does not own the target entity."""


class NotFoundError(DocStoreError):
    """Raised when a requested entity does not exist."""


class DocumentNotFoundError(NotFoundError):
    """Raised when a document is missing or soft-deleted."""


class ComparisonNotFoundError(NotFoundError):
    """Raised when a comparison cannot be found."""


class ExportNotFoundError(NotFoundError):
    """Raised when an export cannot be found."""


class TaskNotFoundError(NotFoundError):
    """Raised when a queue task cannot be found."""


class TransientBackendError(DocStoreError):
    """Raised on network, disk or timeout failures. Safe to retry."""


class StorageFailureError(DocStoreError):
    """Raised by the facade once retries and compensating cleanup are exhausted."""
