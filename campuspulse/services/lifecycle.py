from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from ..db.repository import DatasetRepository
from ..ingest.reader import TabularSource, fetch_google_sheet, read_csv_file
from ..models.config_models import AppConfig
from ..models.dataset import Dataset, DatasetStatus, SourceKind
from ..models.processing_result import AnalysisRunResult, ImportReceipt
from ..models.summary import AggregateSummary
from .aggregator import summarize_dataset, summarize_review_request
from .classifier import SentimentClassifier, build_classifier
from .normalizer import import_rows as normalize_and_store
from .worker import AnalysisWorker

"""Dataset Lifecycle Manager.

Entry point used by the CLI (and any other front end): import, analyze,
query, cancel and delete datasets. Imports return as soon as the dataset is
persisted; analysis runs on a background thread unless asked to run
synchronously.
"""

__all__ = [
    "DatasetManager",
]

logger = logging.getLogger(__name__)


class DatasetManager:
    """Facade over repository, analysis worker and aggregator."""

    def __init__(
        self,
        repository: DatasetRepository,
        config: AppConfig | None = None,
        classifier: SentimentClassifier | None = None,
        *,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.repository = repository
        self.classifier = classifier or build_classifier(self.config.classifier)
        worker_kwargs = {"sleep": sleep} if sleep is not None else {}
        self.worker = AnalysisWorker(
            repository,
            self.classifier,
            self.config.worker,
            error_log_dir=self.config.error_log_dir,
            **worker_kwargs,
        )
        # datasets are analyzed one at a time; later requests queue up
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dataset")
        self._running: dict[str, Future[AnalysisRunResult]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # import
    # ------------------------------------------------------------------
    def import_rows(
        self,
        title: str,
        source_kind: SourceKind | str,
        rows: Iterable[Mapping[str, object]],
        *,
        source_url: str | None = None,
        analyze: bool = True,
    ) -> ImportReceipt:
        """Persist an import and (optionally) schedule its analysis.

        Raises:
            InvalidTitleError: Title empty after trimming
            EmptyDatasetError: Zero rows
        """
        normalized = normalize_and_store(
            self.repository, title, source_kind, rows, source_url=source_url
        )
        dataset = normalized.dataset
        if analyze:
            self.start_analysis(dataset.id)
            message = f"Successfully imported {dataset.total_row_count} responses. AI analysis in progress..."
        else:
            message = f"Successfully imported {dataset.total_row_count} responses."
        return ImportReceipt(dataset_id=dataset.id, row_count=dataset.total_row_count, message=message)

    def _import_source(self, title: str, source: TabularSource, analyze: bool) -> ImportReceipt:
        if source.skipped_rows:
            logger.info(f"skipped {source.skipped_rows} empty rows")
        return self.import_rows(
            title,
            source.source_kind,
            source.rows,
            source_url=source.source_url,
            analyze=analyze,
        )

    def import_csv(self, path: Path | str, title: str, *, analyze: bool = True) -> ImportReceipt:
        """Raises SourceReadError for unreadable files, plus import_rows errors."""
        return self._import_source(title, read_csv_file(Path(path)), analyze)

    def import_google_sheet(self, url: str, title: str, *, analyze: bool = True) -> ImportReceipt:
        """Raises SourceReadError for bad links or fetch failures, plus import_rows errors."""
        return self._import_source(title, fetch_google_sheet(url), analyze)

    # ------------------------------------------------------------------
    # analysis
    # ------------------------------------------------------------------
    def analyze(self, dataset_id: str) -> AnalysisRunResult:
        """Run the analysis worker synchronously."""
        return self.worker.run(dataset_id)

    def start_analysis(self, dataset_id: str) -> Future[AnalysisRunResult]:
        """Run the analysis worker on a background thread.

        A dataset already running returns its existing future.
        """
        with self._lock:
            running = self._running.get(dataset_id)
            if running is not None and not running.done():
                return running
            future = self._executor.submit(self.worker.run, dataset_id)
            self._running[dataset_id] = future
        future.add_done_callback(lambda f: self._on_done(dataset_id, f))
        return future

    def _on_done(self, dataset_id: str, future: Future[AnalysisRunResult]) -> None:
        with self._lock:
            if self._running.get(dataset_id) is future:
                del self._running[dataset_id]
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"background analysis of dataset {dataset_id} failed: {error}")
        else:
            result = future.result()
            logger.info(
                f"background analysis of dataset {dataset_id} finished: status={result.status} "
                f"processed={result.processed_records} failed={result.failed_records}"
            )

    def cancel(self, dataset_id: str) -> Dataset:
        """Raises DatasetNotFoundError / InvalidStatusTransition."""
        return self.worker.cancel(dataset_id)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def list_datasets(self) -> list[Dataset]:
        return self.repository.list_datasets()

    def get_dataset(self, dataset_id: str) -> Dataset:
        return self.repository.get_dataset(dataset_id)

    def get_status(self, dataset_id: str) -> dict[str, object]:
        """{status, totalRows, analyzedRows} for dashboard pollers."""
        return self.repository.get_dataset(dataset_id).to_status_dict()

    def delete(self, dataset_id: str) -> None:
        """Delete permanently; a running analysis stops before its next write."""
        dataset = self.repository.get_dataset(dataset_id)
        self.repository.delete_dataset(dataset_id)
        if dataset.status == DatasetStatus.PROCESSING:
            logger.info(f"deleted dataset {dataset_id} while processing -> analysis stops")
        else:
            logger.info(f"deleted dataset {dataset_id}")

    def get_summary(self, dataset_id: str) -> AggregateSummary:
        return summarize_dataset(self.repository, dataset_id)

    def get_review_summary(self, request_id: str) -> AggregateSummary:
        return summarize_review_request(self.repository, request_id)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting background work; optionally wait for running analyses."""
        self._executor.shutdown(wait=wait)
