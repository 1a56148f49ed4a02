from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from docstore.records.models import QueueTask


@dataclass(frozen=True)
class TaskSpec:
    """A follow-up task a handler asks the dispatcher to enqueue."""

    document_id: str
    task_type: str
    priority: int | None = None
    related_document_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class HandlerResult:
    """Outcome of one handler invocation."""

    success: bool
    next_tasks: list[TaskSpec] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def ok(cls, *next_tasks: TaskSpec) -> "HandlerResult":
        return cls(success=True, next_tasks=list(next_tasks))

    @classmethod
    def failed(cls, error: str) -> "HandlerResult":
        return cls(success=False, error=error)


TaskHandler = Callable[[QueueTask], HandlerResult]
TerminalFailureHook = Callable[[QueueTask], None]
