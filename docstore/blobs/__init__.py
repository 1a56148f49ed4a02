from docstore.blobs.base import BaseBlobStore
from docstore.blobs.factory import BlobStoreFactory
from docstore.blobs.local_disk import LocalDiskBlobStore
from docstore.blobs.minio_store import MinioBlobStore

__all__ = ["BaseBlobStore", "BlobStoreFactory", "LocalDiskBlobStore", "MinioBlobStore"]
