from __future__ import annotations

import logging
import math
import re
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..models.dataset import Dataset, DatasetStatus, SourceKind
from ..models.feedback_record import FeedbackRecord
from ..models.row_data import RawRow

if TYPE_CHECKING:
    from ..db.repository import DatasetRepository

"""Row Normalizer.

Converts a raw tabular dataset (rows of arbitrary string-keyed columns) into
a Dataset shell plus one FeedbackRecord per row. Validation happens before
anything is persisted, so a rejected import leaves no trace.
"""

__all__ = [
    "EmptyDatasetError",
    "ImportValidationError",
    "InvalidTitleError",
    "NormalizedImport",
    "derive_columns",
    "detect_name_column",
    "detect_rating_columns",
    "import_rows",
    "normalize_rows",
]

NAME_COLUMN_RE = re.compile(r"^(name|student.?name|full.?name|respondent|participant)$", re.IGNORECASE)
RATING_COLUMN_RE = re.compile(r"(rating|score|stars|grade)", re.IGNORECASE)

logger = logging.getLogger(__name__)


class ImportValidationError(Exception):
    """Base class for synchronous import validation failures."""


class EmptyDatasetError(ImportValidationError):
    """Raised when an import carries zero rows."""


class InvalidTitleError(ImportValidationError):
    """Raised when the dataset title is empty after trimming."""


@dataclass(frozen=True)
class NormalizedImport:
    dataset: Dataset
    records: list[FeedbackRecord]


def derive_columns(rows: Iterable[RawRow]) -> list[str]:
    """Union of keys over all rows, ordered by first occurrence."""
    seen: dict[str, None] = {}
    for row in rows:
        for key in row.values:
            seen.setdefault(key, None)
    return list(seen)


def detect_name_column(columns: Iterable[str]) -> str | None:
    for col in columns:
        if NAME_COLUMN_RE.match(col.strip()):
            return col
    return None


def detect_rating_columns(columns: Iterable[str]) -> list[str]:
    """Columns whose header names a rating, in declaration order."""
    return [col for col in columns if RATING_COLUMN_RE.search(col)]


def _parse_number(value: str) -> float | None:
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _row_rating(row: RawRow, rating_columns: list[str]) -> float | None:
    """First rating-named column of the row whose value parses as a number."""
    for col in rating_columns:
        number = _parse_number(row.values.get(col, ""))
        if number is not None:
            return number
    return None


def _question_columns(row: RawRow, columns: list[str], name_col: str | None) -> tuple[str, ...]:
    questions = []
    for col in columns:
        if col == name_col:
            continue
        value = row.values.get(col, "")
        if not value.strip():
            continue
        # bare numbers (ratings included) are scale answers, not free text
        if _parse_number(value) is not None:
            continue
        questions.append(col)
    return tuple(questions)


def normalize_rows(
    title: str,
    source_kind: SourceKind | str,
    rows: Iterable[Mapping[str, object]],
    *,
    source_url: str | None = None,
    dataset_id: str | None = None,
) -> NormalizedImport:
    """Validate and normalize one import request.

    Args:
        title: Dataset title (must be non-empty after trimming)
        source_kind: "csv" or "spreadsheet"
        rows: Ordered rows, each a mapping of column name to raw value
        source_url: Spreadsheet link, when imported from one
        dataset_id: Pre-allocated id (a new uuid4 when omitted)

    Returns:
        NormalizedImport with a pending Dataset shell and its records

    Raises:
        InvalidTitleError: Title empty after trimming
        EmptyDatasetError: Zero rows
    """
    clean_title = (title or "").strip()
    if not clean_title:
        raise InvalidTitleError("Dataset title must not be empty.")

    raw_rows = [RawRow.from_mapping(i, dict(r)) for i, r in enumerate(rows)]
    if not raw_rows:
        raise EmptyDatasetError("Import must contain at least one row.")

    kind = source_kind if isinstance(source_kind, SourceKind) else SourceKind(source_kind)
    columns = derive_columns(raw_rows)
    name_col = detect_name_column(columns)
    rating_cols = detect_rating_columns(c for c in columns if c != name_col)

    ds_id = dataset_id or str(uuid.uuid4())
    dataset = Dataset(
        id=ds_id,
        title=clean_title,
        source_kind=kind,
        columns=columns,
        total_row_count=len(raw_rows),
        status=DatasetStatus.PENDING,
        source_url=source_url,
    )

    records: list[FeedbackRecord] = []
    for row in raw_rows:
        respondent = row.values.get(name_col, "").strip() if name_col else ""
        records.append(
            FeedbackRecord(
                id=str(uuid.uuid4()),
                dataset_id=ds_id,
                row_index=row.row_index,
                values=dict(row.values),
                respondent_name=respondent or f"Respondent {row.row_index + 1}",
                questions=_question_columns(row, columns, name_col),
                rating=_row_rating(row, rating_cols),
            )
        )
    return NormalizedImport(dataset=dataset, records=records)


def import_rows(
    repository: DatasetRepository,
    title: str,
    source_kind: SourceKind | str,
    rows: Iterable[Mapping[str, object]],
    *,
    source_url: str | None = None,
) -> NormalizedImport:
    """Normalize and persist an import (all-or-nothing).

    Validation errors are raised before the repository is touched; the
    repository stores the dataset shell and its records in one unit.
    """
    normalized = normalize_rows(title, source_kind, rows, source_url=source_url)
    repository.create_dataset(normalized.dataset, normalized.records)
    logger.info(
        f"imported dataset {normalized.dataset.id} '{normalized.dataset.title}' "
        f"rows={normalized.dataset.total_row_count} columns={len(normalized.dataset.columns)}"
    )
    return normalized
