from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

"""Dataset domain model and DatasetStatus enum.

A Dataset is one imported batch of tabular feedback rows, tracked as a unit
for processing and reporting. The Dataset row (status, analyzed_row_count)
is the only state shared between concurrent analysis workers.
"""

__all__ = [
    "Dataset",
    "DatasetStatus",
    "SourceKind",
]


class SourceKind(Enum):
    CSV = "csv"
    SPREADSHEET = "spreadsheet"


class DatasetStatus(Enum):
    """Status enum for the Dataset processing lifecycle.

    State transitions: pending → processing → (complete | error | cancelled)
    A pending dataset may also be cancelled before any work starts.

    - PENDING: Rows persisted, analysis not yet started
    - PROCESSING: Analysis worker is classifying records
    - COMPLETE: Every row analyzed, none failed terminally
    - ERROR: Every row visited, at least one failed terminally
    - CANCELLED: Caller stopped the analysis; no new records are dispatched
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    def can_transition_to(self, target: DatasetStatus) -> bool:
        return target in _TRANSITIONS[self]


_TERMINAL = frozenset({DatasetStatus.COMPLETE, DatasetStatus.ERROR, DatasetStatus.CANCELLED})

_TRANSITIONS: dict[DatasetStatus, frozenset[DatasetStatus]] = {
    DatasetStatus.PENDING: frozenset({DatasetStatus.PROCESSING, DatasetStatus.CANCELLED}),
    DatasetStatus.PROCESSING: frozenset(
        {DatasetStatus.COMPLETE, DatasetStatus.ERROR, DatasetStatus.CANCELLED}
    ),
    DatasetStatus.COMPLETE: frozenset(),
    DatasetStatus.ERROR: frozenset(),
    DatasetStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class Dataset:
    """Processing context for one imported batch of feedback rows.

    Invariants:
        analyzed_row_count <= total_row_count
        status COMPLETE iff analyzed == total and failed_row_count == 0
        status ERROR iff analyzed == total and failed_row_count > 0
    """
    id: str
    title: str
    source_kind: SourceKind
    columns: list[str]
    total_row_count: int
    analyzed_row_count: int = 0
    failed_row_count: int = 0                 # rows with a terminal classification failure
    status: DatasetStatus = DatasetStatus.PENDING
    source_url: str | None = None             # spreadsheet link, if imported from one
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.analyzed_row_count > self.total_row_count:
            raise ValueError(
                f"analyzed_row_count {self.analyzed_row_count} exceeds "
                f"total_row_count {self.total_row_count}"
            )

    @property
    def is_fully_analyzed(self) -> bool:
        return self.analyzed_row_count >= self.total_row_count

    def settled_status(self) -> DatasetStatus:
        """Status a processing dataset should move to once every row is analyzed."""
        return DatasetStatus.ERROR if self.failed_row_count > 0 else DatasetStatus.COMPLETE

    def with_status(self, status: DatasetStatus) -> Dataset:
        return replace(self, status=status, updated_at=datetime.now(UTC))

    def with_progress(self, failed: bool) -> Dataset:
        """Return a copy with one more analyzed row, settling status when done."""
        updated = replace(
            self,
            analyzed_row_count=self.analyzed_row_count + 1,
            failed_row_count=self.failed_row_count + (1 if failed else 0),
            updated_at=datetime.now(UTC),
        )
        if updated.is_fully_analyzed and updated.status == DatasetStatus.PROCESSING:
            updated = replace(updated, status=updated.settled_status())
        return updated

    def to_status_dict(self) -> dict[str, Any]:
        """Shape returned by the status endpoint."""
        return {
            "status": self.status.value,
            "totalRows": self.total_row_count,
            "analyzedRows": self.analyzed_row_count,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "sourceKind": self.source_kind.value,
            "sourceUrl": self.source_url,
            "columns": list(self.columns),
            "totalRows": self.total_row_count,
            "analyzedRows": self.analyzed_row_count,
            "failedRows": self.failed_row_count,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
