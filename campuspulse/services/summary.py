from __future__ import annotations

from ..models.dataset import Dataset
from ..models.processing_result import AnalysisRunResult
from ..models.sentiment import SentimentLabel

"""Summary text rendering.

Two outputs:
- the dashboard trend narrative attached to an AggregateSummary
- the one-line SUMMARY log record emitted by the CLI after an analysis run

SUMMARY line format:
    SUMMARY dataset=<id> status=<status> rows=<analyzed>/<total> failed=<n>
    fallbacks=<n> calls=<n> elapsed_sec=<s> throughput_rps=<r>
"""

__all__ = [
    "describe_trend",
    "render_summary_fields",
    "render_summary_line",
]


def describe_trend(
    counts: dict[SentimentLabel, int], percentages: dict[SentimentLabel, float]
) -> str:
    """Narrative sentence describing the label distribution.

    A label "dominates strongly" when its count is more than twice the
    opposite label's count; otherwise the larger one "leans".

    Returns:
        "" when nothing has been analyzed yet
    """
    total = sum(counts.values())
    if total == 0:
        return ""

    pos = counts.get(SentimentLabel.POSITIVE, 0)
    neg = counts.get(SentimentLabel.NEGATIVE, 0)
    text = (
        f"Out of {total} analyzed responses: "
        f"{percentages[SentimentLabel.POSITIVE]:.1f}% rated Positive, "
        f"{percentages[SentimentLabel.NEUTRAL]:.1f}% Neutral, and "
        f"{percentages[SentimentLabel.NEGATIVE]:.1f}% Negative. "
    )
    if pos > neg * 2:
        text += "Overall sentiment trend is strongly positive, indicating high satisfaction among respondents."
    elif pos > neg:
        text += "Overall sentiment leans positive with room for improvement."
    elif neg > pos * 2:
        text += "Overall sentiment trend is strongly negative, indicating significant dissatisfaction that needs attention."
    elif neg > pos:
        text += "Overall sentiment leans negative; a review of recurring feedback themes is recommended."
    else:
        text += "Sentiment is mixed or neutral; deeper qualitative analysis is recommended."
    return text


def _format_number(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # avoid scientific notation
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return f"{value:.3f}".rstrip("0").rstrip(".")


def render_summary_fields(dataset: Dataset, result: AnalysisRunResult) -> str:
    """Render the key=value fields of the SUMMARY line for one analysis run.

    Args:
        dataset: Dataset state after the run (counters, total rows)
        result: Metrics collected by the worker
    """
    return (
        f"dataset={dataset.id} "
        f"status={result.status} "
        f"rows={dataset.analyzed_row_count}/{dataset.total_row_count} "
        f"failed={dataset.failed_row_count} "
        f"fallbacks={result.fallback_fields} "
        f"calls={result.classifier_calls} "
        f"elapsed_sec={_format_number(result.elapsed_seconds)} "
        f"throughput_rps={_format_number(result.throughput_records_per_sec)}"
    )


def render_summary_line(dataset: Dataset, result: AnalysisRunResult) -> str:
    """Full SUMMARY line, label included."""
    return f"SUMMARY {render_summary_fields(dataset, result)}"
