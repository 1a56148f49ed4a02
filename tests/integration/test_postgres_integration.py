from collections.abc import Callable
from datetime import timedelta

import pytest

from docstore.records.exceptions import ConstraintViolationError
from docstore.records.models import (
    Comparison,
    ComparisonStatus,
    Document,
    DocumentStatus,
    Export,
    ExportType,
    QueueTask,
    TaskStatus,
    TaskType,
    new_id,
    utcnow,
)
from docstore.records.postgres import PostgresRecordStore


@pytest.mark.integration
class TestDocuments:
    def test_insert_with_task_then_dedup_returns_existing(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
    ) -> None:
        first = make_document(content_hash="a" * 64)
        stored, created = pg_store.insert_document_with_task(first, make_task(first))
        assert created
        assert stored.id == first.id

        duplicate = make_document(content_hash="a" * 64, original_name="copy.txt")
        again, created = pg_store.insert_document_with_task(duplicate, make_task(duplicate))

        assert not created
        assert again.id == first.id
        assert again.original_name == "nda.txt"
        assert len(pg_store.list_tasks_by_document(first.id)) == 1
        assert pg_store.find_document(duplicate.id) is None

    def test_same_hash_for_other_owner_is_distinct(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
    ) -> None:
        alice = make_document(content_hash="b" * 64, owner_id="alice-it")
        bob = make_document(content_hash="b" * 64, owner_id="bob-it")

        pg_store.insert_document_with_task(alice, make_task(alice))
        _, created = pg_store.insert_document_with_task(bob, make_task(bob))

        assert created
        assert pg_store.find_document_by_owner_and_hash("bob-it", "b" * 64).id == bob.id  # type: ignore[union-attr]

    def test_extracted_text_is_written_once(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
    ) -> None:
        document = make_document()
        pg_store.insert_document_with_task(document, make_task(document))

        assert pg_store.set_extracted_text(document.id, "hello-nda")
        assert not pg_store.set_extracted_text(document.id, "something else")
        stored = pg_store.find_document(document.id)
        assert stored is not None
        assert stored.extracted_text == "hello-nda"
        assert stored.status == DocumentStatus.PROCESSED

    def test_soft_delete_hides_from_listing_and_hard_delete_cascades(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
        owner_id: str,
    ) -> None:
        document = make_document()
        task = make_task(document)
        pg_store.insert_document_with_task(document, task)

        assert pg_store.soft_delete_document(document.id)
        assert pg_store.find_documents_by_owner(owner_id) == []
        assert not pg_store.set_document_status(document.id, DocumentStatus.PROCESSING)

        assert pg_store.delete_document(document.id)
        assert pg_store.find_document(document.id) is None
        assert pg_store.find_task(task.id) is None

    def test_set_standard_on_live_document(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
    ) -> None:
        document = make_document()
        pg_store.insert_document_with_task(document, make_task(document))

        updated = pg_store.set_standard(document.id)

        assert updated is not None
        assert updated.is_standard_template


@pytest.mark.integration
class TestTaskTransitions:
    def test_claim_respects_priority_and_schedule(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
    ) -> None:
        now = utcnow()
        document = make_document()
        low = make_task(document, priority=1)
        pg_store.insert_document_with_task(document, low)
        high = pg_store.insert_task(make_task(document, priority=9))
        pg_store.insert_task(make_task(document, priority=20, scheduled_at=now + timedelta(hours=1)))

        claimed = pg_store.claim_next_task([TaskType.EXTRACT_TEXT], now)

        assert claimed is not None
        assert claimed.id == high.id
        assert claimed.status == TaskStatus.CLAIMED
        assert claimed.claimed_at is not None

    def test_claim_filters_task_types(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
    ) -> None:
        document = make_document()
        pg_store.insert_document_with_task(document, make_task(document))

        assert pg_store.claim_next_task([TaskType.EXPORT], utcnow()) is None

    def test_transition_is_compare_and_set(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
    ) -> None:
        document = make_document()
        task = make_task(document)
        pg_store.insert_document_with_task(document, task)
        claimed = pg_store.claim_next_task([TaskType.EXTRACT_TEXT], utcnow())
        assert claimed is not None

        done = pg_store.transition_task(
            task.id, TaskStatus.CLAIMED, 0, status=TaskStatus.COMPLETED, completed_at=utcnow()
        )
        stale = pg_store.transition_task(task.id, TaskStatus.CLAIMED, 0, status=TaskStatus.QUEUED)

        assert done is not None
        assert done.status == TaskStatus.COMPLETED
        assert stale is None

    def test_payload_round_trips_as_json(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
    ) -> None:
        document = make_document()
        pg_store.insert_document_with_task(document, make_task(document))
        task = pg_store.insert_task(
            make_task(document, task_type=TaskType.EXPORT, payload={"comparison_id": "c1", "export_type": "pdf"})
        )

        assert pg_store.find_task(task.id).payload == {"comparison_id": "c1", "export_type": "pdf"}  # type: ignore[union-attr]

    def test_stale_claims_are_listed(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
    ) -> None:
        document = make_document()
        task = make_task(document)
        pg_store.insert_document_with_task(document, task)
        pg_store.claim_next_task([TaskType.EXTRACT_TEXT], utcnow() - timedelta(hours=2))

        stale = pg_store.list_stale_claims(utcnow() - timedelta(hours=1))

        assert [t.id for t in stale] == [task.id]


@pytest.mark.integration
class TestComparisonsAndExports:
    def test_comparison_lifecycle_and_export(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
        owner_id: str,
    ) -> None:
        first = make_document()
        second = make_document()
        for document in (first, second):
            pg_store.insert_document_with_task(document, make_task(document))
        comparison = pg_store.insert_comparison(
            Comparison(id=new_id(), owner_id=owner_id, document1_id=first.id, document2_id=second.id)
        )
        assert [c.id for c in pg_store.find_pending_comparisons_for_document(second.id)] == [comparison.id]

        completed = pg_store.update_comparison(
            comparison.id,
            status=ComparisonStatus.COMPLETED,
            similarity_score=66.67,
            key_differences={"common_words": ["mutual"]},
        )
        assert completed is not None
        assert completed.similarity_score == 66.67
        assert completed.key_differences == {"common_words": ["mutual"]}

        export = pg_store.insert_export(
            Export(
                id=new_id(),
                comparison_id=comparison.id,
                owner_id=owner_id,
                export_type=ExportType.PDF,
                blob_ref="local://report.pdf",
                size_bytes=1024,
            )
        )
        assert pg_store.increment_download_count(export.id).download_count == 1  # type: ignore[union-attr]

        pg_store.delete_document(first.id)
        assert pg_store.find_comparison(comparison.id) is None
        assert pg_store.find_export(export.id) is None

    def test_comparison_with_missing_document_violates_constraint(
        self,
        pg_store: PostgresRecordStore,
        make_document: Callable[..., Document],
        make_task: Callable[..., QueueTask],
        owner_id: str,
    ) -> None:
        document = make_document()
        pg_store.insert_document_with_task(document, make_task(document))

        with pytest.raises(ConstraintViolationError):
            pg_store.insert_comparison(
                Comparison(id=new_id(), owner_id=owner_id, document1_id=document.id, document2_id=new_id())
            )
