"""Bag-of-words document comparison.

Words are lower-cased, split on whitespace, and kept only when longer than
three characters. The score is the Jaccard index of the two word sets scaled
to 0-100.
"""

from dataclasses import dataclass

from docstore.dispatcher.models import HandlerResult
from docstore.logging.logger import Log
from docstore.records.base import BaseRecordStore
from docstore.records.models import ComparisonStatus, QueueTask

MIN_WORD_LENGTH = 4
MAX_LISTED_WORDS = 50

_INTERPRETATIONS = (
    (80.0, "Very Similar"),
    (60.0, "Similar"),
    (40.0, "Somewhat Similar"),
    (20.0, "Different"),
)


@dataclass(frozen=True)
class SimilarityResult:
    score: float
    common_words: frozenset[str]
    unique_to_first: frozenset[str]
    unique_to_second: frozenset[str]

    @property
    def interpretation(self) -> str:
        for threshold, label in _INTERPRETATIONS:
            if self.score > threshold:
                return label
        return "Very Different"


def _words(text: str) -> frozenset[str]:
    return frozenset(w for w in text.lower().split() if len(w) >= MIN_WORD_LENGTH)


def calculate_similarity(first: str, second: str) -> SimilarityResult:
    words1 = _words(first)
    words2 = _words(second)
    union = words1 | words2
    common = words1 & words2
    score = len(common) / len(union) * 100 if union else 0.0
    return SimilarityResult(
        score=round(score, 2),
        common_words=common,
        unique_to_first=words1 - words2,
        unique_to_second=words2 - words1,
    )


class CompareHandler:
    """Scores two processed documents and stores the result on the comparison."""

    def __init__(self, record_store: BaseRecordStore) -> None:
        self._records = record_store

    def __call__(self, task: QueueTask) -> HandlerResult:
        comparison_id = task.payload.get("comparison_id")
        if not comparison_id:
            return HandlerResult.failed(f"Task {task.id} has no comparison_id")

        comparison = self._records.find_comparison(comparison_id)
        if comparison is None or comparison.status == ComparisonStatus.COMPLETED:
            return HandlerResult.ok()

        documents = [self._records.find_document(d) for d in comparison.document_ids]
        texts = []
        for document in documents:
            if document is None or document.is_deleted:
                Log.info(f"Comparison {comparison.id} references a deleted document, skipping")
                return HandlerResult.ok()
            if document.extracted_text is None:
                return HandlerResult.failed(f"Document {document.id} has no extracted text yet")
            texts.append(document.extracted_text)

        self._records.update_comparison(comparison.id, status=ComparisonStatus.PROCESSING)
        result = calculate_similarity(texts[0], texts[1])
        self._records.update_comparison(
            comparison.id,
            status=ComparisonStatus.COMPLETED,
            similarity_score=result.score,
            summary=(
                f"{result.interpretation}: {len(result.common_words)} shared words, "
                f"{len(result.unique_to_first)} only in first, "
                f"{len(result.unique_to_second)} only in second"
            ),
            key_differences={
                "common_words": sorted(result.common_words)[:MAX_LISTED_WORDS],
                "unique_to_document1": sorted(result.unique_to_first)[:MAX_LISTED_WORDS],
                "unique_to_document2": sorted(result.unique_to_second)[:MAX_LISTED_WORDS],
            },
            error_message=None,
        )
        Log.info(f"Comparison {comparison.id} scored {result.score}")
        return HandlerResult.ok()

    def on_terminal_failure(self, task: QueueTask) -> None:
        comparison_id = task.payload.get("comparison_id")
        if comparison_id:
            self._records.update_comparison(
                comparison_id, status=ComparisonStatus.ERROR, error_message=task.last_error
            )
