from docstore.blobs.base import BaseBlobStore
from docstore.blobs.local_disk import LocalDiskBlobStore
from docstore.blobs.minio_store import MinioBlobStore
from docstore.config.settings import Settings
from docstore.logging.logger import Log


class BlobStoreFactory:
    """Creates the configured blob store once at startup."""

    PROVIDERS = ("local", "object-store")

    @classmethod
    def create(cls, settings: Settings) -> BaseBlobStore:
        provider = settings.storage_provider.lower()
        if provider not in cls.PROVIDERS:
            raise ValueError(
                f"Unknown storage provider '{provider}'. Choose from: {list(cls.PROVIDERS)}"
            )
        if provider == "object-store":
            if settings.has_object_store_credentials:
                Log.info(
                    f"Using object store {settings.minio_endpoint} "
                    f"bucket {settings.minio_bucket}"
                )
                return MinioBlobStore.from_settings(
                    endpoint=settings.minio_endpoint,
                    access_key=settings.minio_access_key,
                    secret_key=settings.minio_secret_key,
                    bucket=settings.minio_bucket,
                    secure=settings.minio_secure,
                    timeout_seconds=settings.blob_timeout_seconds,
                )
            Log.warning("Object store credentials missing, falling back to local storage")
        Log.info(f"Using local storage at {settings.local_storage_path}")
        return LocalDiskBlobStore(settings.local_storage_path)
