from abc import ABC, abstractmethod


class BaseBlobStore(ABC):
    """Contract for all raw-bytes storage adapters."""

    provider: str = ""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Store bytes under key.

        Args:
            key: Relative object key, e.g. users/<owner>/documents/<hash>/<name>.
            data: Raw payload.
            content_type: MIME type recorded with the object where supported.

        Returns:
            Opaque locator to pass back to get/delete/exists.

        Raises:
            BlobWriteError: on disk or network failure.
        """

    @abstractmethod
    def get(self, locator: str) -> bytes:
        """Read the bytes behind a locator.

        Raises:
            BlobNotFoundError: if no object exists at the locator.
            BlobReadError: on disk or network failure.
        """

    @abstractmethod
    def delete(self, locator: str) -> None:
        """Remove the object behind a locator.

        Raises:
            BlobNotFoundError: if no object exists at the locator.
            BlobWriteError: on disk or network failure.
        """

    @abstractmethod
    def exists(self, locator: str) -> bool:
        """Return True if an object exists at the locator."""
