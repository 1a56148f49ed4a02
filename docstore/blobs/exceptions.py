from docstore.exceptions import DocStoreError, NotFoundError, TransientBackendError


class BlobStoreError(DocStoreError):
    """Base exception for blob store failures."""


class BlobNotFoundError(BlobStoreError, NotFoundError):
    """Raised when a locator has no stored object."""


class BlobWriteError(BlobStoreError, TransientBackendError):
    """Raised when a blob cannot be written or deleted (disk full, network error)."""


class BlobReadError(BlobStoreError, TransientBackendError):
    """Raised when a blob exists but cannot be read."""
