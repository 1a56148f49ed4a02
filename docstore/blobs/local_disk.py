from pathlib import Path

from docstore.blobs.base import BaseBlobStore
from docstore.blobs.exceptions import (
    BlobNotFoundError,
    BlobReadError,
    BlobStoreError,
    BlobWriteError,
)


class LocalDiskBlobStore(BaseBlobStore):
    """Stores blobs as files under a root directory.

    Used when object-store credentials are absent. Locators look like
    ``local://<key>``.
    """

    provider = "local"
    SCHEME = "local://"

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        path = self._resolve(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".part")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)
        except OSError as exc:
            raise BlobWriteError(f"Failed to write {key}: {exc}") from exc
        return f"{self.SCHEME}{key}"

    def get(self, locator: str) -> bytes:
        path = self._resolve(self._key(locator))
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise BlobNotFoundError(f"Blob not found: {locator}") from exc
        except OSError as exc:
            raise BlobReadError(f"Failed to read {locator}: {exc}") from exc

    def delete(self, locator: str) -> None:
        path = self._resolve(self._key(locator))
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise BlobNotFoundError(f"Blob not found: {locator}") from exc
        except OSError as exc:
            raise BlobWriteError(f"Failed to delete {locator}: {exc}") from exc
        self._prune_empty_parents(path.parent)

    def exists(self, locator: str) -> bool:
        return self._resolve(self._key(locator)).is_file()

    def _key(self, locator: str) -> str:
        if not locator.startswith(self.SCHEME):
            raise BlobStoreError(f"Locator '{locator}' does not belong to local storage")
        return locator[len(self.SCHEME):]

    def _resolve(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if path == self._root or not path.is_relative_to(self._root):
            raise BlobStoreError(f"Key '{key}' resolves outside the storage root")
        return path

    def _prune_empty_parents(self, directory: Path) -> None:
        while directory != self._root and directory.is_relative_to(self._root):
            try:
                directory.rmdir()
            except OSError:
                return
            directory = directory.parent
