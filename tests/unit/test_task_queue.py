from collections.abc import Callable
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from docstore.config.settings import Settings
from docstore.exceptions import TaskNotFoundError
from docstore.queue.task_queue import STALE_CLAIM_ERROR, TaskQueue
from docstore.records.memory import InMemoryRecordStore
from docstore.records.models import Document, QueueTask, TaskStatus, TaskType, new_id


def _make_queue(
    settings: Settings, clock: Callable
) -> tuple[TaskQueue, InMemoryRecordStore, Document]:
    store = InMemoryRecordStore()
    queue = TaskQueue(store, settings, clock=clock)
    document = Document(
        id=new_id(),
        owner_id="alice",
        content_hash="h",
        original_name="nda.txt",
        size_bytes=9,
        mime_category="text",
        blob_ref="local://k",
    )
    store.insert_document_with_task(document, queue.build_task(document.id, TaskType.EXTRACT_TEXT))
    return queue, store, document


def _claim(queue: TaskQueue) -> QueueTask:
    task = queue.claim_next(TaskType.ALL)
    assert task is not None
    return task


class TestEnqueue:
    def test_creates_queued_task_with_defaults(self, settings: Settings, clock) -> None:
        queue, _store, document = _make_queue(settings, clock)

        task = queue.enqueue(document.id, TaskType.COMPARE, payload={"comparison_id": "c1"})

        assert task.status == TaskStatus.QUEUED
        assert task.attempts == 0
        assert task.max_attempts == settings.max_task_attempts
        assert task.priority == settings.default_task_priority
        assert task.scheduled_at == clock.now
        assert task.payload == {"comparison_id": "c1"}

    def test_rejects_unknown_task_type(self, settings: Settings, clock) -> None:
        queue, _store, document = _make_queue(settings, clock)
        with pytest.raises(ValueError, match="Unknown task type 'ocr'"):
            queue.enqueue(document.id, "ocr")

    def test_explicit_priority_wins(self, settings: Settings, clock) -> None:
        queue, _store, document = _make_queue(settings, clock)
        assert queue.enqueue(document.id, TaskType.EXPORT, priority=9).priority == 9


class TestClaimNext:
    def test_returns_none_when_nothing_due(self, settings: Settings, clock) -> None:
        queue, _store, _document = _make_queue(settings, clock)
        _claim(queue)
        assert queue.claim_next(TaskType.ALL) is None

    def test_higher_priority_first(self, settings: Settings, clock) -> None:
        queue, _store, document = _make_queue(settings, clock)
        urgent = queue.enqueue(document.id, TaskType.COMPARE, priority=10)
        assert _claim(queue).id == urgent.id


class TestComplete:
    def test_claimed_task_completes(self, settings: Settings, clock) -> None:
        queue, _store, _document = _make_queue(settings, clock)
        task = _claim(queue)

        completed = queue.complete(task.id)

        assert completed.status == TaskStatus.COMPLETED
        assert completed.completed_at == clock.now

    def test_is_idempotent(self, settings: Settings, clock) -> None:
        queue, _store, _document = _make_queue(settings, clock)
        task = _claim(queue)
        first = queue.complete(task.id)
        assert queue.complete(task.id) == first

    def test_ignores_task_that_is_not_claimed(self, settings: Settings, clock) -> None:
        queue, store, document = _make_queue(settings, clock)
        task = store.list_tasks_by_document(document.id)[0]

        assert queue.complete(task.id).status == TaskStatus.QUEUED

    def test_unknown_task_raises(self, settings: Settings, clock) -> None:
        queue, _store, _document = _make_queue(settings, clock)
        with pytest.raises(TaskNotFoundError):
            queue.complete(new_id())


class TestFail:
    def test_retry_below_max_requeues_with_backoff(self, settings: Settings, clock) -> None:
        queue, _store, _document = _make_queue(settings, clock)
        task = _claim(queue)

        failed = queue.fail(task.id, "extractor crashed")

        assert failed.status == TaskStatus.QUEUED
        assert failed.attempts == 1
        assert failed.last_error == "extractor crashed"
        assert failed.claimed_at is None
        assert failed.scheduled_at == clock.now + timedelta(seconds=10)

    def test_retry_monotonicity_until_terminal(self, settings: Settings, clock) -> None:
        queue, _store, _document = _make_queue(settings, clock)
        expected_delays = {1: 10, 2: 20}

        for attempt in (1, 2):
            task = _claim(queue)
            failed = queue.fail(task.id, f"boom {attempt}")
            assert failed.status == TaskStatus.QUEUED
            assert failed.attempts == attempt
            assert failed.scheduled_at == clock.now + timedelta(seconds=expected_delays[attempt])
            assert queue.claim_next(TaskType.ALL) is None
            clock.advance(expected_delays[attempt])

        task = _claim(queue)
        final = queue.fail(task.id, "boom 3")

        assert final.status == TaskStatus.FAILED
        assert final.attempts == 3
        assert final.last_error == "boom 3"
        clock.advance(10_000)
        assert queue.claim_next(TaskType.ALL) is None

    def test_ignores_task_that_is_not_claimed(self, settings: Settings, clock) -> None:
        queue, store, document = _make_queue(settings, clock)
        task = store.list_tasks_by_document(document.id)[0]

        result = queue.fail(task.id, "late failure")

        assert result.status == TaskStatus.QUEUED
        assert result.attempts == 0

    def test_lost_race_returns_current_state(self, settings: Settings, clock) -> None:
        store = MagicMock()
        claimed = QueueTask(
            id="t1", document_id="d1", task_type=TaskType.EXTRACT_TEXT, priority=5,
            max_attempts=3, status=TaskStatus.CLAIMED,
        )
        reaped = QueueTask(
            id="t1", document_id="d1", task_type=TaskType.EXTRACT_TEXT, priority=5,
            max_attempts=3, status=TaskStatus.QUEUED, attempts=1,
        )
        store.find_task.side_effect = [claimed, reaped]
        store.transition_task.return_value = None
        queue = TaskQueue(store, settings, clock=clock)

        assert queue.fail("t1", "slow worker") is reaped


class TestBackoffDelay:
    @pytest.mark.parametrize(("attempts", "seconds"), [(0, 5), (1, 10), (2, 20), (3, 40)])
    def test_doubles_per_attempt(self, settings: Settings, clock, attempts: int, seconds: int) -> None:
        queue, _store, _document = _make_queue(settings, clock)
        assert queue.backoff_delay(attempts) == timedelta(seconds=seconds)

    def test_is_capped(self, settings_factory: Callable[..., Settings], clock) -> None:
        queue, _store, _document = _make_queue(settings_factory(task_max_delay_seconds=60), clock)
        assert queue.backoff_delay(10) == timedelta(seconds=60)


class TestReapStaleClaims:
    def test_reaps_only_claims_older_than_timeout(self, settings_factory, clock) -> None:
        settings = settings_factory(stale_claim_timeout_seconds=600)
        queue, _store, document = _make_queue(settings, clock)
        stale = _claim(queue)
        clock.advance(300)
        queue.enqueue(document.id, TaskType.COMPARE)
        fresh = _claim(queue)
        clock.advance(301)

        reaped = queue.reap_stale_claims()

        assert [t.id for t in reaped] == [stale.id]
        assert reaped[0].status == TaskStatus.QUEUED
        assert reaped[0].attempts == 1
        assert reaped[0].last_error == STALE_CLAIM_ERROR
        assert queue.complete(fresh.id).status == TaskStatus.COMPLETED

    def test_late_completion_after_reap_is_ignored(self, settings_factory, clock) -> None:
        queue, _store, _document = _make_queue(settings_factory(stale_claim_timeout_seconds=60), clock)
        task = _claim(queue)
        clock.advance(61)
        queue.reap_stale_claims()

        assert queue.complete(task.id).status == TaskStatus.QUEUED

    def test_reaping_consumes_final_attempt(self, settings_factory, clock) -> None:
        settings = settings_factory(stale_claim_timeout_seconds=60, max_task_attempts=1)
        queue, _store, _document = _make_queue(settings, clock)
        _claim(queue)
        clock.advance(61)

        reaped = queue.reap_stale_claims()

        assert reaped[0].status == TaskStatus.FAILED


class TestStats:
    def test_counts_every_status(self, settings: Settings, clock) -> None:
        queue, _store, _document = _make_queue(settings, clock)

        stats = queue.stats()

        assert stats.counts == {
            TaskStatus.QUEUED: 1,
            TaskStatus.CLAIMED: 0,
            TaskStatus.COMPLETED: 0,
            TaskStatus.FAILED: 0,
        }
        assert stats.total == 1
        assert [t.task_type for t in stats.queued] == [TaskType.EXTRACT_TEXT]
        assert stats.failed == []

    def test_failed_tasks_carry_last_error_and_attempts(self, settings_factory, clock) -> None:
        settings = settings_factory(max_task_attempts=1)
        queue, _store, _document = _make_queue(settings, clock)
        task = _claim(queue)
        queue.fail(task.id, "unreadable pdf")

        stats = queue.stats()

        assert stats.counts[TaskStatus.FAILED] == 1
        assert stats.counts[TaskStatus.QUEUED] == 0
        [failed] = stats.failed
        assert failed.id == task.id
        assert failed.attempts == 1
        assert failed.last_error == "unreadable pdf"
        assert stats.queued == []

    def test_counts_from_the_record_store(self, settings: Settings) -> None:
        records = MagicMock()
        records.count_tasks_by_status.return_value = {TaskStatus.COMPLETED: 7}
        records.list_tasks_by_status.return_value = []

        stats = TaskQueue(records, settings).stats()

        assert stats.counts[TaskStatus.COMPLETED] == 7
        assert stats.counts[TaskStatus.FAILED] == 0
        assert stats.total == 7
