from typing import ClassVar

from docstore.config.settings import Settings
from docstore.records.base import BaseRecordStore
from docstore.records.memory import InMemoryRecordStore
from docstore.records.postgres import PostgresRecordStore


class RecordStoreFactory:
    """Creates the configured record store backend."""

    BACKENDS: ClassVar[dict[str, type[BaseRecordStore]]] = {
        "memory": InMemoryRecordStore,
        "relational": PostgresRecordStore,
    }

    @classmethod
    def create(cls, settings: Settings) -> BaseRecordStore:
        backend = settings.record_store.lower()
        backend_cls = cls.BACKENDS.get(backend)
        if backend_cls is None:
            raise ValueError(
                f"Unknown record store '{backend}'. Choose from: {list(cls.BACKENDS)}"
            )
        return backend_cls()
