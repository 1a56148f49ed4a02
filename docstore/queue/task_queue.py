"""Queue state machine over the record store.

Task states::

    queued -> claimed -> completed
                      -> queued   (retry, attempts < max_attempts)
                      -> failed   (terminal)

Every transition out of ``claimed`` is a compare-and-set on
(status, attempts) so a slow worker cannot overwrite the outcome of a
stale-claim reap or of another worker that re-claimed the task.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from docstore.config.settings import Settings
from docstore.exceptions import TaskNotFoundError
from docstore.logging.logger import Log
from docstore.records.base import BaseRecordStore
from docstore.records.models import QueueTask, TaskStatus, TaskType, new_id, utcnow

STALE_CLAIM_ERROR = "stale claim: worker did not report back before timeout"


@dataclass
class QueueStats:
    """Snapshot of the queue: counts per status plus the tasks that need attention."""

    counts: dict[str, int] = field(default_factory=dict)
    queued: list[QueueTask] = field(default_factory=list)
    failed: list[QueueTask] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class TaskQueue:
    """Enqueue, claim, complete and fail queue tasks with retry and backoff."""

    def __init__(
        self,
        record_store: BaseRecordStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._records = record_store
        self._settings = settings
        self._clock = clock

    def build_task(
        self,
        document_id: str,
        task_type: str,
        priority: int | None = None,
        related_document_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> QueueTask:
        """Build a fresh queued task without persisting it."""
        if task_type not in TaskType.ALL:
            raise ValueError(f"Unknown task type '{task_type}'. Choose from: {sorted(TaskType.ALL)}")
        now = self._clock()
        return QueueTask(
            id=new_id(),
            document_id=document_id,
            related_document_id=related_document_id,
            task_type=task_type,
            priority=self._settings.default_task_priority if priority is None else priority,
            max_attempts=self._settings.max_task_attempts,
            payload=dict(payload or {}),
            scheduled_at=now,
            created_at=now,
            updated_at=now,
        )

    def enqueue(
        self,
        document_id: str,
        task_type: str,
        priority: int | None = None,
        related_document_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> QueueTask:
        """Persist a new task in the queued state with zero attempts."""
        task = self._records.insert_task(
            self.build_task(document_id, task_type, priority, related_document_id, payload)
        )
        Log.info(f"Enqueued {task.task_type} task {task.id} for document {task.document_id}")
        return task

    def claim_next(self, task_types: Iterable[str]) -> QueueTask | None:
        """Claim the highest-priority due task among task_types, or None."""
        return self._records.claim_next_task(task_types, self._clock())

    def complete(self, task_id: str) -> QueueTask:
        """Move a claimed task to completed. Idempotent for completed tasks."""
        task = self._get(task_id)
        if task.status == TaskStatus.COMPLETED:
            return task
        if task.status == TaskStatus.CLAIMED:
            now = self._clock()
            updated = self._records.transition_task(
                task.id,
                TaskStatus.CLAIMED,
                task.attempts,
                status=TaskStatus.COMPLETED,
                completed_at=now,
                updated_at=now,
            )
            if updated is not None:
                return updated
            task = self._get(task_id)
        Log.warning(f"Ignoring completion of task {task_id} in state {task.status}")
        return task

    def fail(self, task_id: str, error: str) -> QueueTask:
        """Record a failed attempt on a claimed task.

        Below max_attempts the task returns to queued with an exponential
        backoff on scheduled_at; otherwise it becomes failed for good.
        """
        task = self._get(task_id)
        if task.status != TaskStatus.CLAIMED:
            Log.warning(f"Ignoring failure of task {task_id} in state {task.status}")
            return task

        now = self._clock()
        attempts = task.attempts + 1
        if attempts < task.max_attempts:
            changes: dict[str, Any] = {
                "status": TaskStatus.QUEUED,
                "scheduled_at": now + self.backoff_delay(attempts),
                "claimed_at": None,
            }
        else:
            changes = {"status": TaskStatus.FAILED, "completed_at": now}

        updated = self._records.transition_task(
            task.id,
            TaskStatus.CLAIMED,
            task.attempts,
            attempts=attempts,
            last_error=error,
            updated_at=now,
            **changes,
        )
        if updated is None:
            Log.warning(f"Task {task_id} changed state concurrently, failure not recorded")
            return self._get(task_id)

        if updated.status == TaskStatus.FAILED:
            Log.error(f"Task {task_id} permanently failed after {attempts} attempts: {error}")
        else:
            Log.warning(
                f"Task {task_id} will be retried at {updated.scheduled_at.isoformat()} "
                f"(attempt {attempts}/{task.max_attempts})"
            )
        return updated

    def reap_stale_claims(self) -> list[QueueTask]:
        """Fail claimed tasks whose worker stopped reporting. Each reap consumes a retry."""
        cutoff = self._clock() - timedelta(seconds=self._settings.stale_claim_timeout_seconds)
        reaped = []
        for task in self._records.list_stale_claims(cutoff):
            Log.warning(f"Reaping stale claim on task {task.id} (claimed at {task.claimed_at})")
            reaped.append(self.fail(task.id, STALE_CLAIM_ERROR))
        return reaped

    def stats(self) -> QueueStats:
        """Counts per status, the waiting tasks, and the failed tasks with their last error.

        Failed tasks are terminal; this is where they surface for operators.
        """
        found = self._records.count_tasks_by_status()
        return QueueStats(
            counts={status: found.get(status, 0) for status in TaskStatus.ALL},
            queued=self._records.list_tasks_by_status(TaskStatus.QUEUED),
            failed=self._records.list_tasks_by_status(TaskStatus.FAILED),
        )

    def backoff_delay(self, attempts: int) -> timedelta:
        """Delay before retry number `attempts`: base * 2**attempts, capped."""
        seconds = self._settings.task_base_delay_seconds * (2**attempts)
        return timedelta(seconds=min(seconds, self._settings.task_max_delay_seconds))

    def _get(self, task_id: str) -> QueueTask:
        task = self._records.find_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return task
