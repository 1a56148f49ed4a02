import threading
from collections.abc import Callable

from docstore.dispatcher.dispatcher import TaskDispatcher
from docstore.logging.logger import Log


class DispatcherPool:
    """Runs several dispatchers on threads that compete for the same queue.

    Workers share nothing but the record store's atomic claim.
    """

    def __init__(
        self,
        dispatcher_factory: Callable[[], TaskDispatcher],
        worker_count: int,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self._dispatcher_factory = dispatcher_factory
        self._worker_count = worker_count
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        if self.is_running:
            raise RuntimeError("DispatcherPool is already running")
        self._stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self._dispatcher_factory().run,
                kwargs={"stop_event": self._stop_event},
                name=f"dispatcher-{index}",
                daemon=True,
            )
            for index in range(self._worker_count)
        ]
        for thread in self._threads:
            thread.start()
        Log.info(f"Started {self._worker_count} dispatcher worker(s)")

    def stop(self, timeout: float | None = None) -> None:
        """Signal all workers to stop and wait for in-flight tasks to finish."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        Log.info("Dispatcher workers stopped")

    def wait(self) -> None:
        """Block until interrupted, then stop the workers."""
        try:
            while self.is_running:
                self._stop_event.wait(1.0)
        except KeyboardInterrupt:
            Log.info("Dispatcher pool shutting down gracefully")
        finally:
            self.stop()
