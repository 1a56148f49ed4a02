from docstore.records.base import BaseRecordStore
from docstore.records.factory import RecordStoreFactory
from docstore.records.memory import InMemoryRecordStore
from docstore.records.postgres import PostgresRecordStore

__all__ = [
    "BaseRecordStore",
    "InMemoryRecordStore",
    "PostgresRecordStore",
    "RecordStoreFactory",
]
