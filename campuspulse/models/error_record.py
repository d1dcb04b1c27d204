from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for structured classification-failure logging.

Each record is one JSON line with a fixed set of keys. row=-1 marks a
dataset-level error where no single row is responsible.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        dataset_id: Dataset being analyzed
        row: 0-based row index, -1 for dataset-level errors
        question: Question column that failed ("" when not applicable)
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Error description
    """
    timestamp: str  # ISO8601 UTC
    dataset_id: str
    row: int
    question: str
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(dataset_id: str, row: int, question: str, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            dataset_id=dataset_id,
            row=row,
            question=question,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # asdict keeps the key set fixed
        return json.dumps(asdict(self), ensure_ascii=False)
