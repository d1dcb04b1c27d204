from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum

"""Sentiment result model.

A SentimentResult is the output of one text classification. Results are
immutable: once written to a FeedbackRecord they are never modified.
"""

__all__ = [
    "SentimentLabel",
    "SentimentResult",
    "text_hash",
    "combine_results",
]

# Mean-score thresholds used when several question results fold into one label
POSITIVE_THRESHOLD = 0.15
NEGATIVE_THRESHOLD = -0.15


class SentimentLabel(Enum):
    """The three labels a classifier may produce."""
    POSITIVE = "Positive"
    NEUTRAL = "Neutral"
    NEGATIVE = "Negative"

    @classmethod
    def from_score(cls, score: float) -> SentimentLabel:
        if score > POSITIVE_THRESHOLD:
            return cls.POSITIVE
        if score < NEGATIVE_THRESHOLD:
            return cls.NEGATIVE
        return cls.NEUTRAL


def text_hash(text: str) -> str:
    """Stable hash of the trimmed source text (idempotence checks)."""
    return hashlib.sha256(text.strip().encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SentimentResult:
    """Classification output for a single piece of text.

    Attributes:
        label: One of Positive / Neutral / Negative
        confidence: Classifier certainty in [0, 1]
        source_hash: sha256 of the classified text
        score: Polarity in [-1, 1] (-1 very negative, 1 very positive)
        fallback: True when the value is a placeholder, not a real classification
    """
    label: SentimentLabel
    confidence: float
    source_hash: str
    score: float = 0.0
    fallback: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.label, SentimentLabel):
            raise ValueError(f"invalid sentiment label: {self.label!r}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range [0, 1]: {self.confidence}")
        if not -1.0 <= self.score <= 1.0:
            raise ValueError(f"score out of range [-1, 1]: {self.score}")

    @staticmethod
    def neutral(text: str, *, fallback: bool = False) -> SentimentResult:
        """Neutral / zero-confidence result (short texts and fallbacks)."""
        return SentimentResult(
            label=SentimentLabel.NEUTRAL,
            confidence=0.0,
            source_hash=text_hash(text),
            score=0.0,
            fallback=fallback,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "sentiment_label": self.label.value,
            "sentiment_score": self.score,
            "confidence": self.confidence,
            "source_hash": self.source_hash,
            "fallback": self.fallback,
        }

    @staticmethod
    def from_dict(data: dict[str, object]) -> SentimentResult:
        return SentimentResult(
            label=SentimentLabel(data["sentiment_label"]),
            confidence=float(data.get("confidence") or 0.0),  # type: ignore[arg-type]
            source_hash=str(data.get("source_hash") or ""),
            score=float(data.get("sentiment_score") or 0.0),  # type: ignore[arg-type]
            fallback=bool(data.get("fallback", False)),
        )


def combine_results(results: list[SentimentResult], texts: list[str]) -> SentimentResult:
    """Fold per-question results into the overall sentiment of one record.

    A single result is used as-is. Several results are averaged: the mean
    score decides the label, confidence is the mean confidence and the
    combined result is a fallback if any input was.
    """
    if not results:
        return SentimentResult.neutral("")
    if len(results) == 1:
        return results[0]

    mean_score = sum(r.score for r in results) / len(results)
    mean_confidence = sum(r.confidence for r in results) / len(results)
    return SentimentResult(
        label=SentimentLabel.from_score(mean_score),
        confidence=round(mean_confidence, 4),
        source_hash=text_hash(". ".join(texts)),
        score=round(mean_score, 4),
        fallback=any(r.fallback for r in results),
    )
