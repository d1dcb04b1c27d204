from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .sentiment import SentimentResult

"""FeedbackRecord model.

One row of a Dataset with its raw column values and, once processed, its
sentiment. A record belongs to exactly one dataset and its sentiment is
written exactly once by the analysis worker.
"""

__all__ = [
    "FeedbackRecord",
    "FailureKind",
    "RecordOutcome",
]


class FailureKind(Enum):
    """Why a record ended with a fallback instead of a real classification."""
    REJECTED = "rejected"  # classifier refused the input (not retried)
    UNAVAILABLE = "unavailable"  # classifier unreachable after all retries


@dataclass(frozen=True)
class RecordOutcome:
    """Result of analyzing one record, applied to storage in a single write."""
    sentiment: SentimentResult
    question_results: dict[str, SentimentResult]
    failure: FailureKind | None = None

    @property
    def failed(self) -> bool:
        return self.failure is not None


@dataclass(frozen=True)
class FeedbackRecord:
    """One normalized feedback row.

    Attributes:
        id: Record identifier
        dataset_id: Owning dataset
        row_index: 0-based ordinal within the dataset
        values: Column name -> raw string value, copied verbatim
        respondent_name: Name column value, or "Respondent <n>"
        questions: Text-bearing columns in declaration order
        rating: Numeric rating when a rating column is present
        sentiment: Overall record sentiment (None until analyzed)
        question_results: Per-question sentiment (the `question` discriminator)
        failure: Terminal failure kind, if classification fell back
        analyzed_at: When the sentiment was written
    """
    id: str
    dataset_id: str
    row_index: int
    values: dict[str, str]
    respondent_name: str
    questions: tuple[str, ...] = ()
    rating: float | None = None
    sentiment: SentimentResult | None = None
    question_results: dict[str, SentimentResult] = field(default_factory=dict)
    failure: FailureKind | None = None
    analyzed_at: datetime | None = None

    @property
    def is_analyzed(self) -> bool:
        return self.sentiment is not None

    def text_fields(self) -> list[tuple[str, str]]:
        """(question, text) pairs in field-declaration order."""
        return [(q, self.values[q]) for q in self.questions if self.values.get(q, "").strip()]

    def with_outcome(self, outcome: RecordOutcome) -> FeedbackRecord:
        """Return the analyzed copy of this record.

        Raises:
            ValueError: If the record already carries a sentiment (write-once)
        """
        if self.sentiment is not None:
            raise ValueError(f"record {self.id} already analyzed")
        return replace(
            self,
            sentiment=outcome.sentiment,
            question_results=dict(outcome.question_results),
            failure=outcome.failure,
            analyzed_at=datetime.now(UTC),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "datasetId": self.dataset_id,
            "rowIndex": self.row_index,
            "respondentName": self.respondent_name,
            "rawData": dict(self.values),
            "rating": self.rating,
            "sentiment": self.sentiment.to_dict() if self.sentiment else None,
            "questionSentiments": {q: r.to_dict() for q, r in self.question_results.items()},
            "failure": self.failure.value if self.failure else None,
            "analyzedAt": self.analyzed_at.isoformat() if self.analyzed_at else None,
        }
