from collections.abc import Callable

from docstore.blobs.factory import BlobStoreFactory
from docstore.config.settings import Settings
from docstore.database.connection import close_pool, get_connection, init_pool
from docstore.database.schema import create_schema
from docstore.dispatcher.dispatcher import TaskDispatcher
from docstore.dispatcher.pool import DispatcherPool
from docstore.facade.storage_facade import StorageFacade
from docstore.handlers.registry import register_builtin_handlers
from docstore.logging.logger import Log
from docstore.queue.task_queue import TaskQueue
from docstore.records.factory import RecordStoreFactory


def build_services(settings: Settings) -> tuple[StorageFacade, Callable[[], TaskDispatcher]]:
    """Select backends once and wire the facade and dispatcher factory over them."""
    blob_store = BlobStoreFactory.create(settings)
    record_store = RecordStoreFactory.create(settings)
    queue = TaskQueue(record_store, settings)
    facade = StorageFacade(blob_store, record_store, queue, settings)

    def dispatcher_factory() -> TaskDispatcher:
        dispatcher = TaskDispatcher(queue, settings)
        register_builtin_handlers(dispatcher, record_store, blob_store, settings)
        return dispatcher

    return facade, dispatcher_factory


def main() -> None:
    """Entry point: initialize pool -> build dependencies -> start dispatcher workers."""
    settings = Settings()
    Log.configure(settings.log_level)
    Log.info(
        f"Starting docstore worker ({settings.app_env}): "
        f"blobs={settings.storage_provider}, records={settings.record_store}"
    )
    relational = settings.record_store == "relational"
    if relational:
        init_pool(settings)
        with get_connection() as conn:
            create_schema(conn)

    try:
        _, dispatcher_factory = build_services(settings)
        pool = DispatcherPool(dispatcher_factory, settings.worker_count)
        pool.start()
        pool.wait()
    finally:
        if relational:
            close_pool()


if __name__ == "__main__":
    main()
