from docstore.exceptions import DocStoreError, TransientBackendError


class RecordStoreError(DocStoreError):
    """Base exception for record store failures."""


class RecordStoreConnectionError(RecordStoreError, TransientBackendError):
    """Raised when the relational backend is unreachable or times out."""


class ConstraintViolationError(RecordStoreError):
    """Raised when an insert loses a uniqueness race. Resolved by re-fetching."""
