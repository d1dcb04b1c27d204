from __future__ import annotations

import statistics
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

"""Import and analysis result models.

ImportReceipt is what the import trigger hands back to its caller;
AnalysisRunResult aggregates the metrics of one analysis worker run.
"""

__all__ = [
    "ImportReceipt",
    "AnalysisRunResult",
    "CallStatsAccumulator",
]


@dataclass(frozen=True)
class ImportReceipt:
    """Response to an accepted import request."""
    dataset_id: str
    row_count: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"datasetId": self.dataset_id, "message": self.message, "rowCount": self.row_count}


@dataclass(frozen=True)
class AnalysisRunResult:
    """Aggregated metrics for one worker run over a dataset.

    A run that found nothing to do (terminal dataset) has skipped=True and
    zero counters.
    """
    dataset_id: str
    status: str  # dataset status after the run
    processed_records: int  # records written during this run
    failed_records: int  # records with a terminal failure (rejected / unavailable)
    fallback_fields: int  # question fields that fell back to Neutral
    classifier_calls: int  # external classify() invocations, retries included
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    throughput_records_per_sec: float
    avg_call_seconds: float = 0.0
    p95_call_seconds: float = 0.0
    skipped: bool = False


class CallStatsAccumulator:
    """Collect classifier call latencies from concurrent workers."""

    def __init__(self) -> None:
        self.call_times: list[float] = []
        self._lock = threading.Lock()

    def add_call_time(self, elapsed_seconds: float) -> None:
        with self._lock:
            self.call_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate call statistics.

        Returns:
            tuple: (total_calls, avg_call_seconds, p95_call_seconds)
        """
        with self._lock:
            times = list(self.call_times)
        if not times:
            return (0, 0.0, 0.0)

        total_calls = len(times)
        avg_call_seconds = statistics.mean(times)
        if total_calls == 1:
            p95_call_seconds = times[0]
        else:
            # 19th of 20 inclusive quantiles = 95th percentile
            p95_call_seconds = statistics.quantiles(times, n=20, method="inclusive")[18]
        return (total_calls, avg_call_seconds, p95_call_seconds)
