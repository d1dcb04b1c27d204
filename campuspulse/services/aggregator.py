from __future__ import annotations

import logging
from collections.abc import Iterable

from ..db.repository import DatasetRepository
from ..models.feedback_record import FeedbackRecord
from ..models.sentiment import SentimentLabel, SentimentResult
from ..models.summary import AggregateSummary, LabelBreakdown
from .summary import describe_trend

"""Aggregator.

Derives AggregateSummary values from persisted FeedbackRecords on every
read. Records without a sentiment yet are ignored, so a summary taken while
a dataset is still processing reflects the analyzed subset only.
"""

__all__ = [
    "breakdown",
    "compute_summary",
    "summarize_dataset",
    "summarize_review_request",
]

logger = logging.getLogger(__name__)


def breakdown(results: Iterable[SentimentResult]) -> LabelBreakdown:
    """Count labels and compute percentages rounded to one decimal.

    Each percentage is rounded independently, so the three values sum to
    100 within rounding tolerance (never exactly guaranteed).
    """
    counts = {label: 0 for label in SentimentLabel}
    for result in results:
        counts[result.label] += 1
    total = sum(counts.values())
    if total == 0:
        return LabelBreakdown(
            total=0,
            counts=counts,
            percentages={label: 0.0 for label in SentimentLabel},
            insufficient_data=True,
        )
    percentages = {label: round(100.0 * counts[label] / total, 1) for label in SentimentLabel}
    return LabelBreakdown(total=total, counts=counts, percentages=percentages)


def _question_order(records: list[FeedbackRecord], columns: list[str] | None) -> list[str]:
    seen: dict[str, None] = {}
    for rec in records:
        for q in rec.question_results:
            seen.setdefault(q, None)
    if columns:
        ordered = [c for c in columns if c in seen]
        ordered += [q for q in seen if q not in ordered]
        return ordered
    return list(seen)


def compute_summary(
    source_id: str,
    records: Iterable[FeedbackRecord],
    columns: list[str] | None = None,
) -> AggregateSummary:
    """Build the AggregateSummary of a record set.

    Args:
        source_id: Dataset id or review request id
        records: Records of the source, analyzed or not
        columns: Column order of the source, used to order per-question output

    Returns:
        AggregateSummary; per_question is populated only when the analyzed
        records span two or more questions
    """
    analyzed = [r for r in records if r.is_analyzed]
    overall = breakdown(r.sentiment for r in analyzed if r.sentiment is not None)

    per_question: dict[str, LabelBreakdown] | None = None
    order = _question_order(analyzed, columns)
    if len(order) >= 2:
        per_question = {
            q: breakdown(r.question_results[q] for r in analyzed if q in r.question_results)
            for q in order
        }

    scores = [r.sentiment.score for r in analyzed if r.sentiment is not None]
    ratings = [r.rating for r in analyzed if r.rating is not None]
    return AggregateSummary(
        source_id=source_id,
        overall=overall,
        fallback_count=sum(1 for r in analyzed if r.sentiment is not None and r.sentiment.fallback),
        average_score=round(sum(scores) / len(scores), 3) if scores else None,
        average_rating=round(sum(ratings) / len(ratings), 2) if ratings else None,
        per_question=per_question,
        trend=describe_trend(overall.counts, overall.percentages),
        question_order=order if per_question is not None else [],
    )


def summarize_dataset(repository: DatasetRepository, dataset_id: str) -> AggregateSummary:
    """Summary of an imported dataset.

    Raises:
        DatasetNotFoundError: Unknown (or deleted) dataset id
    """
    dataset = repository.get_dataset(dataset_id)
    records = repository.list_records(dataset_id)
    summary = compute_summary(dataset_id, records, dataset.columns)
    logger.debug(
        f"summary dataset={dataset_id} analyzed={summary.total_analyzed}/{dataset.total_row_count}"
    )
    return summary


def summarize_review_request(repository: DatasetRepository, request_id: str) -> AggregateSummary:
    """Summary of the responses to a dispatched review form (read-only source)."""
    return compute_summary(request_id, repository.review_responses(request_id))
