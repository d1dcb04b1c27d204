from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any

import openai
from openai import OpenAI

from ..models.config_models import ClassifierConfig
from ..models.sentiment import SentimentLabel, SentimentResult, text_hash

"""Sentiment Classifier Adapter.

One operation, classify(text) -> SentimentResult, wrapping a single call to
an external text classifier. The adapter never retries; the analysis worker
owns the retry policy. Failures surface as one of two errors:

- ClassificationUnavailable: network / timeout / rate limit / 5xx (transient)
- ClassificationRejected: the service answered but the answer is unusable,
  or the request itself was refused (permanent)
"""

__all__ = [
    "ClassificationError",
    "ClassificationRejected",
    "ClassificationUnavailable",
    "KeywordClassifier",
    "OpenAICompatibleClassifier",
    "SentimentClassifier",
    "build_classifier",
    "parse_sentiment_payload",
]

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a sentiment analysis engine. Respond ONLY with valid JSON."

SENTIMENT_PROMPT = """Classify the sentiment of the following student feedback text.

You MUST respond with ONLY valid JSON in this exact format, no other text:
{
  "sentiment_label": "Positive" or "Neutral" or "Negative",
  "sentiment_score": <number between -1.0 and 1.0>,
  "confidence": <number between 0.0 and 1.0>
}

Rules:
- sentiment_score: -1.0 = very negative, 0.0 = neutral, 1.0 = very positive
- confidence: how certain you are about the classification
- Consider context, tone, and language nuance

Student feedback text:
"""

# HTTP statuses worth retrying
_TRANSIENT_STATUSES = frozenset({408, 409, 429})


class ClassificationError(Exception):
    pass


class ClassificationUnavailable(ClassificationError):
    """Transient failure: the classifier could not be reached in time."""


class ClassificationRejected(ClassificationError):
    """Permanent failure: malformed response or refused request."""


class SentimentClassifier(ABC):
    """Capability interface for text classification.

    Subclasses implement `_classify` for non-empty, trimmed text at least
    `min_text_length` characters long.
    """

    def __init__(self, min_text_length: int = 3) -> None:
        self.min_text_length = min_text_length

    def is_short(self, text: str) -> bool:
        """True when `text` short-circuits to Neutral without an external call."""
        return len(text.strip()) < self.min_text_length

    def classify(self, text: str) -> SentimentResult:
        """Classify one piece of text.

        Raises:
            ValueError: If the text is empty after trimming
            ClassificationUnavailable: Transient failure of the external call
            ClassificationRejected: Unusable answer from the external call
        """
        stripped = (text or "").strip()
        if not stripped:
            raise ValueError("text to classify must not be empty")
        if self.is_short(stripped):
            return SentimentResult.neutral(stripped)
        return self._classify(stripped)

    @abstractmethod
    def _classify(self, text: str) -> SentimentResult:
        ...


def parse_sentiment_payload(raw: str | None, text: str) -> SentimentResult:
    """Validate a JSON answer from the model.

    Raises:
        ClassificationRejected: Empty, non-JSON, missing keys or unknown label
    """
    if not raw:
        raise ClassificationRejected("empty classifier response")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ClassificationRejected(f"classifier response is not JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ClassificationRejected("classifier response is not a JSON object")

    missing = [k for k in ("sentiment_label", "sentiment_score", "confidence") if k not in parsed]
    if missing:
        raise ClassificationRejected(f"classifier response missing keys: {missing}")

    label_raw = str(parsed["sentiment_label"]).strip().capitalize()
    try:
        label = SentimentLabel(label_raw)
    except ValueError as e:
        raise ClassificationRejected(f"unknown sentiment label: {parsed['sentiment_label']!r}") from e

    try:
        score = float(parsed["sentiment_score"])
        confidence = float(parsed["confidence"])
    except (TypeError, ValueError) as e:
        raise ClassificationRejected(f"non-numeric score or confidence: {e}") from e

    return SentimentResult(
        label=label,
        confidence=max(0.0, min(1.0, confidence)),
        source_hash=text_hash(text),
        score=max(-1.0, min(1.0, score)),
    )


class OpenAICompatibleClassifier(SentimentClassifier):
    """Chat-completions classifier (Groq's OpenAI-compatible endpoint by default).

    The SDK's own retries are disabled (max_retries=0) and every call carries
    the configured timeout.
    """

    def __init__(
        self, config: ClassifierConfig, api_key: str, client: Any | None = None
    ) -> None:
        super().__init__(min_text_length=config.min_text_length)
        self.config = config
        self.client = client or OpenAI(
            api_key=api_key,
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            max_retries=0,
        )

    def _classify(self, text: str) -> SentimentResult:
        try:
            response = self.client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": SENTIMENT_PROMPT + f'"{text}"'},
                ],
                temperature=self.config.temperature,
                max_tokens=200,
                response_format={"type": "json_object"},
            )
        except openai.APIConnectionError as e:  # includes APITimeoutError
            raise ClassificationUnavailable(f"classifier unreachable: {e}") from e
        except openai.APIStatusError as e:
            if e.status_code in _TRANSIENT_STATUSES or e.status_code >= 500:
                raise ClassificationUnavailable(
                    f"classifier returned HTTP {e.status_code}"
                ) from e
            raise ClassificationRejected(f"classifier refused request: HTTP {e.status_code}") from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise ClassificationRejected("classifier response has no choices")
        return parse_sentiment_payload(choices[0].message.content, text)


class KeywordClassifier(SentimentClassifier):
    """Offline rule-based classifier counting positive / negative keywords."""

    POSITIVE_WORDS = (
        "good", "great", "excellent", "amazing", "awesome", "wonderful", "fantastic",
        "love", "best", "happy", "helpful", "thank", "perfect", "outstanding",
        "brilliant", "superb", "incredible",
    )
    NEGATIVE_WORDS = (
        "bad", "poor", "terrible", "worst", "hate", "awful", "horrible", "disappointed",
        "useless", "waste", "boring", "frustrating", "annoying", "fail", "pathetic",
        "disgusting",
    )

    def _classify(self, text: str) -> SentimentResult:
        lower = text.lower()
        positive = sum(1 for w in self.POSITIVE_WORDS if w in lower)
        negative = sum(1 for w in self.NEGATIVE_WORDS if w in lower)
        digest = text_hash(text)

        if positive > negative:
            return SentimentResult(
                label=SentimentLabel.POSITIVE,
                confidence=0.4,
                source_hash=digest,
                score=min(0.3 + positive * 0.15, 0.85),
            )
        if negative > positive:
            return SentimentResult(
                label=SentimentLabel.NEGATIVE,
                confidence=0.4,
                source_hash=digest,
                score=max(-0.3 - negative * 0.15, -0.85),
            )
        return SentimentResult(
            label=SentimentLabel.NEUTRAL, confidence=0.35, source_hash=digest, score=0.0
        )


def build_classifier(config: ClassifierConfig) -> SentimentClassifier:
    """Hosted classifier when an API key is configured, keyword rules otherwise."""
    api_key = os.getenv(config.api_key_env)
    if not api_key:
        logger.info(
            f"{config.api_key_env} not set -> using offline keyword classifier"
        )
        return KeywordClassifier(min_text_length=config.min_text_length)
    logger.debug(f"using hosted classifier model={config.model} base_url={config.base_url}")
    return OpenAICompatibleClassifier(config, api_key=api_key)
