import io
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

import docx
import pytest
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from docstore.blobs.local_disk import LocalDiskBlobStore
from docstore.config.settings import Settings
from docstore.dispatcher.dispatcher import TaskDispatcher
from docstore.facade.storage_facade import StorageFacade
from docstore.handlers.registry import register_builtin_handlers
from docstore.queue.task_queue import TaskQueue
from docstore.records.memory import InMemoryRecordStore


class FakeClock:
    """Manually advanced UTC clock for queue timing tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_settings(**overrides: object) -> Settings:
    """Settings isolated from the developer's .env and environment defaults."""
    values: dict[str, object] = {
        "storage_provider": "local",
        "record_store": "memory",
        "task_base_delay_seconds": 5.0,
        "task_max_delay_seconds": 300.0,
        "max_task_attempts": 3,
        "task_poll_interval_seconds": 0,
        "facade_max_retries": 2,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)  # type: ignore[arg-type]


@pytest.fixture()
def sample_pdf_bytes() -> bytes:
    """Generate a minimal single-page PDF with known text content."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.drawString(72, 720, "Hello PDF World")
    c.save()
    return buf.getvalue()


@pytest.fixture()
def multi_page_pdf_bytes() -> bytes:
    """Generate a two-page PDF with known text on each page."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.drawString(72, 720, "Page one content")
    c.showPage()
    c.drawString(72, 720, "Page two content")
    c.save()
    return buf.getvalue()


@pytest.fixture()
def empty_pdf_bytes() -> bytes:
    """Generate a valid PDF with no text content (blank page)."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.showPage()
    c.save()
    return buf.getvalue()


@pytest.fixture()
def sample_docx_bytes() -> bytes:
    """Generate a DOCX with one paragraph and a one-row table."""
    document = docx.Document()
    document.add_paragraph("Mutual confidentiality agreement")
    table = document.add_table(rows=1, cols=2)
    table.cell(0, 0).text = "Term"
    table.cell(0, 1).text = "Two years"
    buf = io.BytesIO()
    document.save(buf)
    return buf.getvalue()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings_factory(tmp_path: Path) -> Callable[..., Settings]:
    """Build Settings with overrides, rooted in the test's tmp_path."""

    def factory(**overrides: object) -> Settings:
        values: dict[str, object] = {"local_storage_path": str(tmp_path / "blobs")}
        values.update(overrides)
        return make_settings(**values)

    return factory


@pytest.fixture()
def settings(settings_factory: Callable[..., Settings]) -> Settings:
    return settings_factory()


@pytest.fixture()
def record_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture()
def blob_store(tmp_path: Path) -> LocalDiskBlobStore:
    return LocalDiskBlobStore(tmp_path / "blobs")


@pytest.fixture()
def task_queue(record_store: InMemoryRecordStore, settings: Settings) -> TaskQueue:
    return TaskQueue(record_store, settings)


@pytest.fixture()
def facade(
    blob_store: LocalDiskBlobStore,
    record_store: InMemoryRecordStore,
    task_queue: TaskQueue,
    settings: Settings,
) -> StorageFacade:
    return StorageFacade(blob_store, record_store, task_queue, settings)


@pytest.fixture()
def dispatcher(
    blob_store: LocalDiskBlobStore,
    record_store: InMemoryRecordStore,
    task_queue: TaskQueue,
    settings: Settings,
) -> TaskDispatcher:
    dispatcher = TaskDispatcher(task_queue, settings)
    register_builtin_handlers(dispatcher, record_store, blob_store, settings)
    return dispatcher
