from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .sentiment import SentimentLabel

"""Aggregate summary models.

AggregateSummary is derived on every read from persisted FeedbackRecords and
is never stored, so it cannot go stale.
"""

__all__ = [
    "AggregateSummary",
    "LabelBreakdown",
]


@dataclass(frozen=True)
class LabelBreakdown:
    """Counts and percentages for one group of sentiment results."""
    total: int
    counts: dict[SentimentLabel, int]
    percentages: dict[SentimentLabel, float]  # rounded to one decimal
    insufficient_data: bool = False  # total == 0, percentages are all 0

    @property
    def dominant_label(self) -> SentimentLabel | None:
        """Label with a strictly greatest count, None on ties or no data."""
        if self.total == 0:
            return None
        ranked = sorted(self.counts.items(), key=lambda kv: kv[1], reverse=True)
        if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
            return None
        return ranked[0][0]

    def to_dict(self) -> dict[str, Any]:
        dominant = self.dominant_label
        return {
            "total": self.total,
            "counts": {label.value: self.counts[label] for label in SentimentLabel},
            "percentages": {label.value: self.percentages[label] for label in SentimentLabel},
            "insufficientData": self.insufficient_data,
            "dominantLabel": dominant.value if dominant else None,
        }


@dataclass(frozen=True)
class AggregateSummary:
    """Dataset-level (or review-request-level) sentiment statistics."""
    source_id: str  # dataset id or review request id
    overall: LabelBreakdown
    fallback_count: int = 0  # analyzed records carrying a fallback sentiment
    average_score: float | None = None
    average_rating: float | None = None
    per_question: dict[str, LabelBreakdown] | None = None  # only with 2+ questions
    trend: str = ""
    question_order: list[str] = field(default_factory=list)

    @property
    def total_analyzed(self) -> int:
        return self.overall.total

    @property
    def insufficient_data(self) -> bool:
        return self.overall.insufficient_data

    def to_dict(self) -> dict[str, Any]:
        per_question = None
        if self.per_question is not None:
            per_question = {q: self.per_question[q].to_dict() for q in self.question_order}
        return {
            "sourceId": self.source_id,
            "totalAnalyzed": self.total_analyzed,
            "counts": {label.value: self.overall.counts[label] for label in SentimentLabel},
            "percentages": {
                label.value: self.overall.percentages[label] for label in SentimentLabel
            },
            "insufficientData": self.insufficient_data,
            "dominantLabel": (
                self.overall.dominant_label.value if self.overall.dominant_label else None
            ),
            "fallbackCount": self.fallback_count,
            "averageScore": self.average_score,
            "averageRating": self.average_rating,
            "perQuestion": per_question,
            "trend": self.trend,
        }
