import io
import threading

import urllib3
from minio import Minio
from minio.error import MinioException, S3Error

from docstore.blobs.base import BaseBlobStore
from docstore.blobs.exceptions import (
    BlobNotFoundError,
    BlobReadError,
    BlobStoreError,
    BlobWriteError,
)
from docstore.logging.logger import Log

_MISSING_CODES = frozenset({"NoSuchKey", "NoSuchObject", "NoSuchBucket"})

_TRANSPORT_ERRORS = (urllib3.exceptions.HTTPError, MinioException, OSError)


def build_http_client(timeout_seconds: float) -> urllib3.PoolManager:
    """Pool with bounded connect/read timeouts and no hidden retries."""
    return urllib3.PoolManager(
        timeout=urllib3.Timeout(connect=timeout_seconds, read=timeout_seconds),
        retries=urllib3.Retry(total=0, raise_on_status=False),
        maxsize=10,
    )


class MinioBlobStore(BaseBlobStore):
    """Stores blobs in an S3-compatible bucket through the MinIO client.

    Locators look like ``s3://<bucket>/<key>``.
    """

    provider = "object-store"
    SCHEME = "s3://"

    def __init__(self, client: Minio, bucket: str) -> None:
        self._client = client
        self._bucket = bucket
        self._bucket_ready = False
        self._bucket_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        secure: bool,
        timeout_seconds: float,
    ) -> "MinioBlobStore":
        client = Minio(
            endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
            http_client=build_http_client(timeout_seconds),
        )
        return cls(client, bucket)

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            self._ensure_bucket()
            self._client.put_object(
                bucket_name=self._bucket,
                object_name=key,
                data=io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except _TRANSPORT_ERRORS as exc:
            raise BlobWriteError(f"Object store upload failed for {key}: {exc}") from exc
        return f"{self.SCHEME}{self._bucket}/{key}"

    def get(self, locator: str) -> bytes:
        key = self._key(locator)
        response = None
        try:
            response = self._client.get_object(bucket_name=self._bucket, object_name=key)
            return response.read()
        except S3Error as exc:
            if exc.code in _MISSING_CODES:
                raise BlobNotFoundError(f"Blob not found: {locator}") from exc
            raise BlobReadError(f"Object store read failed for {locator}: {exc}") from exc
        except _TRANSPORT_ERRORS as exc:
            raise BlobReadError(f"Object store read failed for {locator}: {exc}") from exc
        finally:
            if response is not None:
                response.close()
                response.release_conn()

    def delete(self, locator: str) -> None:
        if not self.exists(locator):
            raise BlobNotFoundError(f"Blob not found: {locator}")
        try:
            self._client.remove_object(
                bucket_name=self._bucket, object_name=self._key(locator)
            )
        except _TRANSPORT_ERRORS as exc:
            raise BlobWriteError(f"Object store delete failed for {locator}: {exc}") from exc

    def exists(self, locator: str) -> bool:
        key = self._key(locator)
        try:
            self._client.stat_object(bucket_name=self._bucket, object_name=key)
        except S3Error as exc:
            if exc.code in _MISSING_CODES:
                return False
            raise BlobReadError(f"Object store stat failed for {locator}: {exc}") from exc
        except _TRANSPORT_ERRORS as exc:
            raise BlobReadError(f"Object store stat failed for {locator}: {exc}") from exc
        return True

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        with self._bucket_lock:
            if self._bucket_ready:
                return
            if not self._client.bucket_exists(bucket_name=self._bucket):
                Log.info(f"Creating object store bucket {self._bucket}")
                self._client.make_bucket(bucket_name=self._bucket)
            self._bucket_ready = True

    def _key(self, locator: str) -> str:
        prefix = f"{self.SCHEME}{self._bucket}/"
        if not locator.startswith(prefix):
            raise BlobStoreError(f"Locator '{locator}' does not belong to bucket {self._bucket}")
        return locator[len(prefix):]
