from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import replace

from ..models.dataset import Dataset, DatasetStatus
from ..models.feedback_record import FeedbackRecord, RecordOutcome

"""Dataset storage interface and the in-memory backend.

The Dataset row (status, analyzed_row_count, failed_row_count) is the only
state shared by concurrent analysis workers. Every backend must apply
`record_outcome` atomically: the record write, the counter increment and the
final status settlement happen as one unit.
"""

__all__ = [
    "DatasetNotFoundError",
    "DatasetRepository",
    "InMemoryRepository",
    "InvalidStatusTransition",
    "StorageError",
]


class DatasetNotFoundError(Exception):
    """Raised by query / delete operations on unknown dataset ids."""

    def __init__(self, dataset_id: str) -> None:
        self.dataset_id = dataset_id
        super().__init__(f"Dataset not found: {dataset_id}")


class InvalidStatusTransition(Exception):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, dataset_id: str, current: DatasetStatus, target: DatasetStatus) -> None:
        self.dataset_id = dataset_id
        self.current = current
        self.target = target
        super().__init__(
            f"Dataset {dataset_id}: cannot move from {current.value} to {target.value}"
        )


class StorageError(Exception):
    """Backend failure (connection lost, constraint violation, ...)."""


class DatasetRepository(ABC):
    """Persistence operations used by the importer, worker and aggregator."""

    @abstractmethod
    def create_dataset(self, dataset: Dataset, records: list[FeedbackRecord]) -> None:
        """Persist a dataset shell and all its records (all-or-nothing)."""

    @abstractmethod
    def get_dataset(self, dataset_id: str) -> Dataset:
        """Raises DatasetNotFoundError for unknown ids."""

    @abstractmethod
    def list_datasets(self) -> list[Dataset]:
        """All datasets, most recent first."""

    @abstractmethod
    def delete_dataset(self, dataset_id: str) -> None:
        """Delete a dataset and, by cascade, all its records."""

    @abstractmethod
    def list_records(self, dataset_id: str) -> list[FeedbackRecord]:
        """All records of a dataset ordered by row index."""

    @abstractmethod
    def pending_records(self, dataset_id: str) -> list[FeedbackRecord]:
        """Records still lacking a sentiment result, ordered by row index."""

    @abstractmethod
    def transition(self, dataset_id: str, target: DatasetStatus) -> Dataset:
        """Move a dataset to `target`, validating the transition."""

    @abstractmethod
    def record_outcome(
        self, dataset_id: str, record_id: str, outcome: RecordOutcome
    ) -> Dataset | None:
        """Write a record's sentiment once and count it as analyzed.

        Returns:
            The updated dataset, or None when the dataset no longer exists.
            A record that already carries a sentiment is left untouched and
            the counters are not incremented.
        """

    @abstractmethod
    def review_responses(self, request_id: str) -> list[FeedbackRecord]:
        """Read-only records of a dispatched review form."""

    def close(self) -> None:  # noqa: B027 - optional hook
        """Release backend resources."""


class InMemoryRepository(DatasetRepository):
    """Process-local backend guarded by a single lock.

    Used by tests and by the CLI when no database is reachable.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._datasets: dict[str, Dataset] = {}
        self._records: dict[str, dict[str, FeedbackRecord]] = {}
        self._reviews: dict[str, list[FeedbackRecord]] = {}

    def create_dataset(self, dataset: Dataset, records: list[FeedbackRecord]) -> None:
        with self._lock:
            if dataset.id in self._datasets:
                raise StorageError(f"dataset already exists: {dataset.id}")
            for rec in records:
                if rec.dataset_id != dataset.id:
                    raise StorageError(
                        f"record {rec.id} belongs to {rec.dataset_id}, not {dataset.id}"
                    )
            self._datasets[dataset.id] = dataset
            self._records[dataset.id] = {rec.id: rec for rec in records}

    def get_dataset(self, dataset_id: str) -> Dataset:
        with self._lock:
            try:
                return self._datasets[dataset_id]
            except KeyError:
                raise DatasetNotFoundError(dataset_id) from None

    def list_datasets(self) -> list[Dataset]:
        with self._lock:
            return sorted(self._datasets.values(), key=lambda d: d.created_at, reverse=True)

    def delete_dataset(self, dataset_id: str) -> None:
        with self._lock:
            if dataset_id not in self._datasets:
                raise DatasetNotFoundError(dataset_id)
            del self._datasets[dataset_id]
            self._records.pop(dataset_id, None)

    def list_records(self, dataset_id: str) -> list[FeedbackRecord]:
        with self._lock:
            self.get_dataset(dataset_id)
            return sorted(self._records[dataset_id].values(), key=lambda r: r.row_index)

    def pending_records(self, dataset_id: str) -> list[FeedbackRecord]:
        return [r for r in self.list_records(dataset_id) if not r.is_analyzed]

    def transition(self, dataset_id: str, target: DatasetStatus) -> Dataset:
        with self._lock:
            current = self.get_dataset(dataset_id)
            if not current.status.can_transition_to(target):
                raise InvalidStatusTransition(dataset_id, current.status, target)
            updated = current.with_status(target)
            # a resumed dataset may already be fully counted
            if target == DatasetStatus.PROCESSING and updated.is_fully_analyzed:
                updated = updated.with_status(updated.settled_status())
            self._datasets[dataset_id] = updated
            return updated

    def record_outcome(
        self, dataset_id: str, record_id: str, outcome: RecordOutcome
    ) -> Dataset | None:
        with self._lock:
            dataset = self._datasets.get(dataset_id)
            if dataset is None:
                return None
            record = self._records[dataset_id][record_id]
            if record.is_analyzed:
                return dataset
            self._records[dataset_id][record_id] = record.with_outcome(outcome)
            updated = dataset.with_progress(failed=outcome.failed)
            self._datasets[dataset_id] = updated
            return updated

    def add_review_responses(self, request_id: str, records: list[FeedbackRecord]) -> None:
        """Register records of an external review form (read-only afterwards)."""
        with self._lock:
            self._reviews[request_id] = [replace(r, dataset_id=request_id) for r in records]

    def review_responses(self, request_id: str) -> list[FeedbackRecord]:
        with self._lock:
            return list(self._reviews.get(request_id, []))
