from docstore.blobs.base import BaseBlobStore
from docstore.config.settings import Settings
from docstore.dispatcher.dispatcher import TaskDispatcher
from docstore.handlers.compare import CompareHandler
from docstore.handlers.export import ExportHandler
from docstore.handlers.extract_text import ExtractTextHandler
from docstore.records.base import BaseRecordStore
from docstore.records.models import TaskType


def register_builtin_handlers(
    dispatcher: TaskDispatcher,
    record_store: BaseRecordStore,
    blob_store: BaseBlobStore,
    settings: Settings,
) -> None:
    """Wire the extraction, comparison and export handlers into a dispatcher."""
    extract = ExtractTextHandler(record_store, blob_store, settings)
    compare = CompareHandler(record_store)
    export = ExportHandler(record_store, blob_store, settings)
    dispatcher.register_handler(
        TaskType.EXTRACT_TEXT, extract, on_terminal_failure=extract.on_terminal_failure
    )
    dispatcher.register_handler(
        TaskType.COMPARE, compare, on_terminal_failure=compare.on_terminal_failure
    )
    dispatcher.register_handler(TaskType.EXPORT, export)
