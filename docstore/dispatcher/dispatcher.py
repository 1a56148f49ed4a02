import threading
import time

from docstore.config.settings import Settings
from docstore.dispatcher.models import HandlerResult, TaskHandler, TerminalFailureHook
from docstore.logging.logger import Log
from docstore.queue.task_queue import TaskQueue
from docstore.records.models import QueueTask, TaskStatus


class TaskDispatcher:
    """Poll loop: claim -> run handler -> complete or fail.

    Handler exceptions never escape: they are turned into TaskQueue.fail
    calls so one bad task cannot stop the loop.
    """

    def __init__(self, queue: TaskQueue, settings: Settings) -> None:
        self._queue = queue
        self._settings = settings
        self._handlers: dict[str, TaskHandler] = {}
        self._terminal_hooks: dict[str, TerminalFailureHook] = {}
        self._last_reap = 0.0

    @property
    def task_types(self) -> frozenset[str]:
        return frozenset(self._handlers)

    def register_handler(
        self,
        task_type: str,
        handler: TaskHandler,
        on_terminal_failure: TerminalFailureHook | None = None,
    ) -> None:
        """Route tasks of task_type to handler.

        on_terminal_failure runs once a task of this type exhausts its retries.
        """
        self._handlers[task_type] = handler
        if on_terminal_failure is not None:
            self._terminal_hooks[task_type] = on_terminal_failure
        Log.info(f"Registered handler for {task_type} tasks")

    def run(
        self,
        max_tasks: int | None = None,
        stop_event: threading.Event | None = None,
    ) -> int:
        """Main poll loop. Runs until interrupted or stop_event is set.

        If max_tasks is set, stop after processing that many tasks (for testing).
        Returns the number of tasks processed.
        """
        Log.info(f"Dispatcher started, polling for {sorted(self.task_types)}")
        tasks_done = 0
        try:
            while stop_event is None or not stop_event.is_set():
                if max_tasks is not None and tasks_done >= max_tasks:
                    break
                self._maybe_reap()
                task = self._try_claim_task()
                if task:
                    self.process(task)
                    tasks_done += 1
                else:
                    Log.debug("No tasks available, sleeping")
                    self._sleep(stop_event)
        except KeyboardInterrupt:
            Log.info("Dispatcher shutting down gracefully")
        return tasks_done

    def run_pending(self) -> int:
        """Process every task that is due right now, then return the count."""
        tasks_done = 0
        while True:
            task = self._try_claim_task()
            if task is None:
                return tasks_done
            self.process(task)
            tasks_done += 1

    def process(self, task: QueueTask) -> QueueTask:
        """Execute a single claimed task with error handling."""
        with Log.task_context(task.id):
            return self._process(task)

    def _process(self, task: QueueTask) -> QueueTask:
        Log.info(
            f"Running {task.task_type} task {task.id} "
            f"(attempt {task.attempts + 1}/{task.max_attempts})"
        )
        handler = self._handlers.get(task.task_type)
        if handler is None:
            return self._handle_failure(task, f"No handler registered for {task.task_type}")

        try:
            result = handler(task)
        except Exception as exc:
            Log.exception(f"Task {task.id} raised: {exc}")
            return self._handle_failure(task, f"{type(exc).__name__}: {exc}")

        if not result.success:
            return self._handle_failure(task, result.error or "handler reported failure")

        try:
            self._enqueue_followups(task, result)
            completed = self._queue.complete(task.id)
        except Exception as exc:
            Log.exception(f"Task {task.id} could not be finalized: {exc}")
            return self._handle_failure(task, f"{type(exc).__name__}: {exc}")
        Log.info(f"Task {task.id} completed successfully")
        return completed

    def _enqueue_followups(self, task: QueueTask, result: HandlerResult) -> None:
        for spec in result.next_tasks:
            self._queue.enqueue(
                spec.document_id,
                spec.task_type,
                priority=spec.priority,
                related_document_id=spec.related_document_id,
                payload=spec.payload,
            )
        if result.next_tasks:
            Log.info(f"Task {task.id} enqueued {len(result.next_tasks)} follow-up task(s)")

    def _handle_failure(self, task: QueueTask, error: str) -> QueueTask:
        """Record the failed attempt; run the terminal hook once retries are exhausted."""
        Log.error(f"Task {task.id} failed: {error}")
        try:
            updated = self._queue.fail(task.id, error)
        except Exception as exc:
            # The stale-claim reaper picks the task up again later.
            Log.exception(f"Could not record failure of task {task.id}: {exc}")
            return task
        if updated.status == TaskStatus.FAILED:
            self._run_terminal_hook(updated)
        return updated

    def _run_terminal_hook(self, task: QueueTask) -> None:
        hook = self._terminal_hooks.get(task.task_type)
        if hook is None:
            return
        try:
            hook(task)
        except Exception as exc:
            Log.exception(f"Terminal failure hook for task {task.id} raised: {exc}")

    def _try_claim_task(self) -> QueueTask | None:
        """Attempt to claim the next queued task. Gracefully handle backend errors."""
        if not self._handlers:
            return None
        try:
            return self._queue.claim_next(self.task_types)
        except Exception as exc:
            Log.warning(f"Queue backend error, will retry: {exc}")
            return None

    def _maybe_reap(self) -> None:
        now = time.monotonic()
        if self._last_reap and now - self._last_reap < self._settings.reap_interval_seconds:
            return
        self._last_reap = now
        try:
            reaped = self._queue.reap_stale_claims()
        except Exception as exc:
            Log.warning(f"Stale claim reaping failed, will retry: {exc}")
            return
        for task in reaped:
            if task.status == TaskStatus.FAILED:
                self._run_terminal_hook(task)
        self._report_failed_tasks()

    def _report_failed_tasks(self) -> None:
        try:
            stats = self._queue.stats()
        except Exception as exc:
            Log.warning(f"Could not read queue stats: {exc}")
            return
        Log.info(f"Queue status: {stats.counts}")
        for task in stats.failed:
            Log.warning(
                f"Task {task.id} ({task.task_type}) failed after {task.attempts} attempt(s): {task.last_error}"
            )

    def _sleep(self, stop_event: threading.Event | None) -> None:
        if stop_event is None:
            time.sleep(self._settings.task_poll_interval_seconds)
        else:
            stop_event.wait(self._settings.task_poll_interval_seconds)
