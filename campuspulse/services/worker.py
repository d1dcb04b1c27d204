from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path

from ..db.repository import DatasetNotFoundError, DatasetRepository
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import WorkerConfig
from ..models.dataset import Dataset, DatasetStatus
from ..models.error_record import ErrorRecord
from ..models.feedback_record import FailureKind, FeedbackRecord, RecordOutcome
from ..models.processing_result import AnalysisRunResult, CallStatsAccumulator
from ..models.sentiment import SentimentResult, combine_results
from .classifier import ClassificationRejected, ClassificationUnavailable, SentimentClassifier
from .progress import ProgressTracker

"""Analysis Worker.

Classifies every record of a dataset that still lacks a sentiment, with a
bounded pool of threads pulling record ids from one queue (each record is
owned by exactly one thread). Within a record, question fields are
classified in declaration order.

Failure policy per field:
- ClassificationUnavailable: retried with exponential backoff
  (base * 2^n, capped); after the last retry the field falls back to
  Neutral/0 and the record is marked failed (unavailable).
- ClassificationRejected: not retried; the field falls back to Neutral/0
  and the record is marked failed (rejected).
Other fields of the same record are still classified.

Progress is written through DatasetRepository.record_outcome, which stores
the record and increments the dataset counters atomically and settles the
final status (complete / error) when the last row is counted.
"""

__all__ = [
    "AnalysisWorker",
]

logger = logging.getLogger(__name__)


class _RunState:
    """Counters shared by the threads of one run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.processed = 0
        self.failed = 0
        self.fallback_fields = 0
        self.classifier_calls = 0

    def add_call(self) -> None:
        with self._lock:
            self.classifier_calls += 1

    def add_fallback(self) -> None:
        with self._lock:
            self.fallback_fields += 1

    def add_record(self, failed: bool) -> None:
        with self._lock:
            self.processed += 1
            if failed:
                self.failed += 1


class AnalysisWorker:
    """Bounded-concurrency sentiment analysis over one dataset at a time."""

    def __init__(
        self,
        repository: DatasetRepository,
        classifier: SentimentClassifier,
        config: WorkerConfig | None = None,
        *,
        error_log_dir: Path | str = "./logs",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repository = repository
        self.classifier = classifier
        self.config = config or WorkerConfig()
        self.error_log_dir = Path(error_log_dir)
        self._sleep = sleep

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def run(self, dataset_id: str) -> AnalysisRunResult:
        """Analyze all pending records of a dataset.

        Re-running on a complete / error / cancelled dataset is a no-op;
        re-running on a processing dataset resumes with the records that
        still lack a sentiment.

        Raises:
            DatasetNotFoundError: Unknown dataset id
            StorageError: Backend failure; the dataset is moved to error
        """
        start_time = datetime.now(UTC)
        dataset = self.repository.get_dataset(dataset_id)
        if dataset.status.is_terminal:
            logger.info(f"dataset {dataset_id} already {dataset.status.value} -> nothing to do")
            return self._result(dataset, _RunState(), CallStatsAccumulator(), start_time, skipped=True)

        if dataset.status == DatasetStatus.PENDING:
            dataset = self.repository.transition(dataset_id, DatasetStatus.PROCESSING)
            if dataset.status.is_terminal:
                return self._result(dataset, _RunState(), CallStatsAccumulator(), start_time)

        pending = self.repository.pending_records(dataset_id)
        logger.info(
            f"analyzing dataset {dataset_id}: {len(pending)} pending of "
            f"{dataset.total_row_count} rows (concurrency={self.config.concurrency})"
        )

        state = _RunState()
        call_stats = CallStatsAccumulator()
        error_log = ErrorLogBuffer(self.error_log_dir)
        work: queue.Queue[FeedbackRecord] = queue.Queue()
        for record in pending:
            work.put(record)
        stop = threading.Event()

        try:
            with ProgressTracker(
                dataset.total_row_count,
                description=f"Analyzing {dataset.title[:30]}",
                initial=dataset.analyzed_row_count,
            ) as progress:
                n_threads = max(1, min(self.config.concurrency, len(pending)))
                with ThreadPoolExecutor(
                    max_workers=n_threads, thread_name_prefix="analysis"
                ) as pool:
                    futures = [
                        pool.submit(
                            self._drain, dataset_id, work, state, call_stats,
                            error_log, progress, stop,
                        )
                        for _ in range(n_threads)
                    ]
                    for future in futures:
                        future.result()
        except Exception:
            logger.exception(f"analysis of dataset {dataset_id} abandoned")
            self._abandon(dataset_id)
            raise
        finally:
            self._flush_error_log(error_log)

        try:
            final = self.repository.get_dataset(dataset_id)
        except DatasetNotFoundError:
            logger.info(f"dataset {dataset_id} was deleted during analysis")
            final = None
        return self._result(final or dataset, state, call_stats, start_time, deleted=final is None)

    def cancel(self, dataset_id: str) -> Dataset:
        """Stop dispatching new records for a dataset.

        In-flight classifications finish and are written; the dataset ends
        in the cancelled state.

        Raises:
            DatasetNotFoundError: Unknown dataset id
            InvalidStatusTransition: Dataset already complete / error / cancelled
        """
        dataset = self.repository.transition(dataset_id, DatasetStatus.CANCELLED)
        logger.info(
            f"dataset {dataset_id} cancelled at {dataset.analyzed_row_count}/"
            f"{dataset.total_row_count} rows"
        )
        return dataset

    # ------------------------------------------------------------------
    # pool internals
    # ------------------------------------------------------------------
    def _may_dispatch(self, dataset_id: str) -> bool:
        try:
            dataset = self.repository.get_dataset(dataset_id)
        except DatasetNotFoundError:
            return False
        return dataset.status == DatasetStatus.PROCESSING

    def _drain(
        self,
        dataset_id: str,
        work: queue.Queue[FeedbackRecord],
        state: _RunState,
        call_stats: CallStatsAccumulator,
        error_log: ErrorLogBuffer,
        progress: ProgressTracker,
        stop: threading.Event,
    ) -> None:
        """Worker loop: claim records from the queue until empty or stopped."""
        try:
            while not stop.is_set():
                if not self._may_dispatch(dataset_id):
                    stop.set()
                    break
                try:
                    record = work.get_nowait()
                except queue.Empty:
                    break

                outcome = self._analyze_record(record, state, call_stats, error_log)
                updated = self.repository.record_outcome(dataset_id, record.id, outcome)
                if updated is None:
                    logger.info(f"dataset {dataset_id} no longer exists -> stopping")
                    stop.set()
                    break
                state.add_record(outcome.failed)
                progress.record_done(failed=outcome.failed)
        except Exception:
            stop.set()
            raise

    def _analyze_record(
        self,
        record: FeedbackRecord,
        state: _RunState,
        call_stats: CallStatsAccumulator,
        error_log: ErrorLogBuffer,
    ) -> RecordOutcome:
        results: dict[str, SentimentResult] = {}
        texts: list[str] = []
        failure: FailureKind | None = None

        for question, text in record.text_fields():
            try:
                result = self._classify_with_retry(text, state, call_stats)
            except ClassificationRejected as e:
                failure = failure or FailureKind.REJECTED
                result = self._fallback(record, question, text, "CLASSIFICATION_REJECTED", e, state, error_log)
            except ClassificationUnavailable as e:
                failure = failure or FailureKind.UNAVAILABLE
                result = self._fallback(record, question, text, "CLASSIFICATION_UNAVAILABLE", e, state, error_log)
            results[question] = result
            texts.append(text)

        return RecordOutcome(
            sentiment=combine_results(list(results.values()), texts),
            question_results=results,
            failure=failure,
        )

    def _fallback(
        self,
        record: FeedbackRecord,
        question: str,
        text: str,
        error_type: str,
        error: Exception,
        state: _RunState,
        error_log: ErrorLogBuffer,
    ) -> SentimentResult:
        logger.warning(
            f"row {record.row_index} question '{question}': {error} -> Neutral fallback"
        )
        error_log.append(
            ErrorRecord.create(
                dataset_id=record.dataset_id,
                row=record.row_index,
                question=question,
                error_type=error_type,
                message=str(error),
            )
        )
        state.add_fallback()
        return SentimentResult.neutral(text, fallback=True)

    def _classify_with_retry(
        self, text: str, state: _RunState, call_stats: CallStatsAccumulator
    ) -> SentimentResult:
        """classify() with the Unavailable retry policy.

        Raises:
            ClassificationUnavailable: After max_retries retries
            ClassificationRejected: Immediately
        """
        external = not self.classifier.is_short(text)
        retry = 0
        while True:
            if external:
                state.add_call()
            started = time.perf_counter()
            try:
                return self.classifier.classify(text)
            except ClassificationUnavailable as e:
                if retry >= self.config.max_retries:
                    raise
                delay = self.config.backoff_delay(retry)
                logger.debug(
                    f"classifier unavailable ({e}); retry {retry + 1}/"
                    f"{self.config.max_retries} in {delay:.2f}s"
                )
                retry += 1
                self._sleep(delay)
            finally:
                if external:
                    call_stats.add_call_time(time.perf_counter() - started)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _abandon(self, dataset_id: str) -> None:
        try:
            dataset = self.repository.get_dataset(dataset_id)
            if dataset.status.can_transition_to(DatasetStatus.ERROR):
                self.repository.transition(dataset_id, DatasetStatus.ERROR)
        except Exception:
            logger.exception(f"could not mark dataset {dataset_id} as error")

    def _flush_error_log(self, error_log: ErrorLogBuffer) -> None:
        try:
            path = error_log.flush()
        except OSError as e:
            logger.warning(f"failed writing error log: {e}")
            return
        if path is not None:
            logger.info(f"classification errors written to {path}")

    def _result(
        self,
        dataset: Dataset,
        state: _RunState,
        call_stats: CallStatsAccumulator,
        start_time: datetime,
        *,
        skipped: bool = False,
        deleted: bool = False,
    ) -> AnalysisRunResult:
        end_time = datetime.now(UTC)
        elapsed = (end_time - start_time).total_seconds()
        _, avg_call, p95_call = call_stats.get_stats()
        return AnalysisRunResult(
            dataset_id=dataset.id,
            status="deleted" if deleted else dataset.status.value,
            processed_records=state.processed,
            failed_records=state.failed,
            fallback_fields=state.fallback_fields,
            classifier_calls=state.classifier_calls,
            start_time=start_time,
            end_time=end_time,
            elapsed_seconds=elapsed,
            throughput_records_per_sec=state.processed / elapsed if elapsed > 0 else 0.0,
            avg_call_seconds=avg_call,
            p95_call_seconds=p95_call,
            skipped=skipped,
        )
