from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2.errors import InvalidTextRepresentation
from psycopg2.extras import Json, RealDictCursor

from ..models.config_models import DatabaseConfig
from ..models.dataset import Dataset, DatasetStatus, SourceKind
from ..models.feedback_record import FailureKind, FeedbackRecord, RecordOutcome
from ..models.sentiment import SentimentLabel, SentimentResult
from .batch_insert import BatchInsertError, BatchMetrics, batch_insert
from .repository import (
    DatasetNotFoundError,
    DatasetRepository,
    InvalidStatusTransition,
    StorageError,
)

"""PostgreSQL backend.

Tables:
- imported_datasets: one row per Dataset (status + progress counters)
- imported_responses: one row per FeedbackRecord, ON DELETE CASCADE
- review_responses: answers of dispatched review forms (owned elsewhere,
  read-only here)

Every public method runs in its own transaction. Calls are serialized on a
lock because a psycopg2 connection is shared by the worker threads; the
progress counter is additionally incremented in SQL
(analyzed_rows = analyzed_rows + 1) in the same transaction as the record
write.
"""

__all__ = [
    "SCHEMA_SQL",
    "PostgresRepository",
    "connect",
    "resolve_dsn",
]

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS imported_datasets (
    id UUID PRIMARY KEY,
    title TEXT NOT NULL,
    source_type VARCHAR(20) NOT NULL DEFAULT 'csv',
    source_url TEXT,
    columns JSONB NOT NULL DEFAULT '[]',
    total_rows INTEGER NOT NULL DEFAULT 0,
    analyzed_rows INTEGER NOT NULL DEFAULT 0,
    failed_rows INTEGER NOT NULL DEFAULT 0,
    status VARCHAR(20) NOT NULL DEFAULT 'pending',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ,
    CONSTRAINT analyzed_le_total CHECK (analyzed_rows <= total_rows)
);

CREATE TABLE IF NOT EXISTS imported_responses (
    id UUID PRIMARY KEY,
    dataset_id UUID NOT NULL REFERENCES imported_datasets(id) ON DELETE CASCADE,
    row_index INTEGER NOT NULL,
    respondent_name VARCHAR(255),
    raw_data JSONB NOT NULL DEFAULT '{}',
    questions JSONB NOT NULL DEFAULT '[]',
    rating DOUBLE PRECISION,
    sentiment_label VARCHAR(20),
    sentiment_score DOUBLE PRECISION,
    ai_confidence DOUBLE PRECISION,
    source_hash VARCHAR(64),
    is_fallback BOOLEAN NOT NULL DEFAULT FALSE,
    question_sentiments JSONB NOT NULL DEFAULT '{}',
    failure VARCHAR(20),
    analyzed_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_imported_responses_dataset ON imported_responses(dataset_id);
"""

_DATASET_COLUMNS = (
    "id, title, source_type, source_url, columns, total_rows, analyzed_rows, "
    "failed_rows, status, created_at, updated_at"
)

_RECORD_COLUMNS = (
    "id, dataset_id, row_index, respondent_name, raw_data, questions, rating, "
    "sentiment_label, sentiment_score, ai_confidence, source_hash, is_fallback, "
    "question_sentiments, failure, analyzed_at"
)

_RECORD_INSERT_COLUMNS = [
    "id", "dataset_id", "row_index", "respondent_name", "raw_data", "questions", "rating",
]


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Resolve the connection string.

    Precedence:
        1. DATABASE_URL / PGDSN environment variables
        2. database.dsn from config
        3. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE with config fallbacks
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def connect(db_cfg: DatabaseConfig) -> Any:
    """Open a psycopg2 connection (explicit transactions, autocommit off)."""
    try:
        conn = psycopg2.connect(resolve_dsn(db_cfg))
    except psycopg2.Error as e:
        raise StorageError(f"database connection failed: {e}") from e
    conn.autocommit = False
    return conn


def _dataset_from_row(row: dict[str, Any]) -> Dataset:
    return Dataset(
        id=str(row["id"]),
        title=row["title"],
        source_kind=SourceKind(row["source_type"]),
        columns=list(row["columns"] or []),
        total_row_count=row["total_rows"],
        analyzed_row_count=row["analyzed_rows"],
        failed_row_count=row["failed_rows"],
        status=DatasetStatus(row["status"]),
        source_url=row["source_url"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _record_from_row(row: dict[str, Any]) -> FeedbackRecord:
    sentiment = None
    if row["sentiment_label"] is not None:
        sentiment = SentimentResult(
            label=SentimentLabel(row["sentiment_label"]),
            confidence=float(row["ai_confidence"] or 0.0),
            source_hash=row["source_hash"] or "",
            score=float(row["sentiment_score"] or 0.0),
            fallback=bool(row["is_fallback"]),
        )
    question_results = {
        q: SentimentResult.from_dict(data)
        for q, data in (row["question_sentiments"] or {}).items()
    }
    return FeedbackRecord(
        id=str(row["id"]),
        dataset_id=str(row["dataset_id"]),
        row_index=row["row_index"],
        values=dict(row["raw_data"] or {}),
        respondent_name=row["respondent_name"] or f"Respondent {row['row_index'] + 1}",
        questions=tuple(row["questions"] or ()),
        rating=row["rating"],
        sentiment=sentiment,
        question_results=question_results,
        failure=FailureKind(row["failure"]) if row["failure"] else None,
        analyzed_at=row["analyzed_at"],
    )


def _review_from_row(request_id: str, index: int, row: dict[str, Any]) -> FeedbackRecord:
    answers = row["answers"] or {}
    values = {str(k): v for k, v in answers.items() if isinstance(v, str)}
    sentiment = None
    if row["sentiment_label"] is not None:
        sentiment = SentimentResult(
            label=SentimentLabel(row["sentiment_label"]),
            confidence=min(max(float(row["ai_confidence"] or 0.0), 0.0), 1.0),
            source_hash="",
            score=min(max(float(row["sentiment_score"] or 0.0), -1.0), 1.0),
        )
    return FeedbackRecord(
        id=str(row["id"]),
        dataset_id=request_id,
        row_index=index,
        values=values,
        respondent_name=f"Respondent {index + 1}",
        questions=tuple(values),
        sentiment=sentiment,
        analyzed_at=row["analyzed_at"],
    )


class PostgresRepository(DatasetRepository):
    """DatasetRepository over a single psycopg2 connection."""

    def __init__(self, conn: Any) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    @contextmanager
    def _cursor(self, dataset_id: str | None = None) -> Iterator[Any]:
        """One transaction: commit on success, rollback on any exception.

        With `dataset_id` set, an id the UUID column cannot parse is reported
        as DatasetNotFoundError instead of a storage failure.
        """
        with self._lock:
            try:
                with self._conn:
                    with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
                        yield cur
            except InvalidTextRepresentation as e:
                if dataset_id is None:
                    raise StorageError(str(e)) from e
                raise DatasetNotFoundError(dataset_id) from e
            except psycopg2.Error as e:
                raise StorageError(str(e)) from e

    def create_schema(self) -> None:
        with self._cursor() as cur:
            cur.execute(SCHEMA_SQL)
        logger.info("schema ready: imported_datasets, imported_responses")

    def create_dataset(self, dataset: Dataset, records: list[FeedbackRecord]) -> None:
        def on_batch(metrics: BatchMetrics) -> None:
            logger.debug(
                f"inserted {metrics.batch_size} records in {metrics.elapsed_seconds:.3f}s"
            )

        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO imported_datasets (id, title, source_type, source_url, columns, "
                "total_rows, analyzed_rows, failed_rows, status, created_at) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    dataset.id,
                    dataset.title,
                    dataset.source_kind.value,
                    dataset.source_url,
                    Json(dataset.columns),
                    dataset.total_row_count,
                    dataset.analyzed_row_count,
                    dataset.failed_row_count,
                    dataset.status.value,
                    dataset.created_at,
                ),
            )
            try:
                batch_insert(
                    cur,
                    "imported_responses",
                    _RECORD_INSERT_COLUMNS,
                    (
                        (
                            r.id,
                            r.dataset_id,
                            r.row_index,
                            r.respondent_name[:255],
                            Json(r.values),
                            Json(list(r.questions)),
                            r.rating,
                        )
                        for r in records
                    ),
                    metrics_callback=on_batch,
                )
            except BatchInsertError as e:
                raise StorageError(f"failed inserting records: {e}") from e

    def get_dataset(self, dataset_id: str) -> Dataset:
        with self._cursor(dataset_id) as cur:
            return self._fetch_dataset(cur, dataset_id)

    def _fetch_dataset(self, cur: Any, dataset_id: str, for_update: bool = False) -> Dataset:
        sql = f"SELECT {_DATASET_COLUMNS} FROM imported_datasets WHERE id = %s"
        if for_update:
            sql += " FOR UPDATE"
        cur.execute(sql, (dataset_id,))
        row = cur.fetchone()
        if row is None:
            raise DatasetNotFoundError(dataset_id)
        return _dataset_from_row(row)

    def list_datasets(self) -> list[Dataset]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_DATASET_COLUMNS} FROM imported_datasets ORDER BY created_at DESC")
            return [_dataset_from_row(r) for r in cur.fetchall()]

    def delete_dataset(self, dataset_id: str) -> None:
        with self._cursor(dataset_id) as cur:
            cur.execute("DELETE FROM imported_datasets WHERE id = %s", (dataset_id,))
            if cur.rowcount == 0:
                raise DatasetNotFoundError(dataset_id)

    def list_records(self, dataset_id: str) -> list[FeedbackRecord]:
        with self._cursor(dataset_id) as cur:
            self._fetch_dataset(cur, dataset_id)
            cur.execute(
                f"SELECT {_RECORD_COLUMNS} FROM imported_responses "
                "WHERE dataset_id = %s ORDER BY row_index ASC",
                (dataset_id,),
            )
            return [_record_from_row(r) for r in cur.fetchall()]

    def pending_records(self, dataset_id: str) -> list[FeedbackRecord]:
        with self._cursor(dataset_id) as cur:
            self._fetch_dataset(cur, dataset_id)
            cur.execute(
                f"SELECT {_RECORD_COLUMNS} FROM imported_responses "
                "WHERE dataset_id = %s AND sentiment_label IS NULL ORDER BY row_index ASC",
                (dataset_id,),
            )
            return [_record_from_row(r) for r in cur.fetchall()]

    def transition(self, dataset_id: str, target: DatasetStatus) -> Dataset:
        with self._cursor(dataset_id) as cur:
            current = self._fetch_dataset(cur, dataset_id, for_update=True)
            if not current.status.can_transition_to(target):
                raise InvalidStatusTransition(dataset_id, current.status, target)
            new_status = target
            if target == DatasetStatus.PROCESSING and current.is_fully_analyzed:
                new_status = current.settled_status()
            cur.execute(
                "UPDATE imported_datasets SET status = %s, updated_at = now() "
                f"WHERE id = %s RETURNING {_DATASET_COLUMNS}",
                (new_status.value, dataset_id),
            )
            return _dataset_from_row(cur.fetchone())

    def record_outcome(
        self, dataset_id: str, record_id: str, outcome: RecordOutcome
    ) -> Dataset | None:
        sentiment = outcome.sentiment
        failed = 1 if outcome.failed else 0
        try:
            with self._cursor(dataset_id) as cur:
                cur.execute(
                    "UPDATE imported_responses SET sentiment_label = %s, sentiment_score = %s, "
                    "ai_confidence = %s, source_hash = %s, is_fallback = %s, "
                    "question_sentiments = %s, failure = %s, analyzed_at = now() "
                    "WHERE id = %s AND dataset_id = %s AND sentiment_label IS NULL",
                    (
                        sentiment.label.value,
                        sentiment.score,
                        sentiment.confidence,
                        sentiment.source_hash,
                        sentiment.fallback,
                        Json({q: r.to_dict() for q, r in outcome.question_results.items()}),
                        outcome.failure.value if outcome.failure else None,
                        record_id,
                        dataset_id,
                    ),
                )
                if cur.rowcount == 0:
                    # dataset deleted, or record already written by an earlier run
                    cur.execute(
                        f"SELECT {_DATASET_COLUMNS} FROM imported_datasets WHERE id = %s",
                        (dataset_id,),
                    )
                    row = cur.fetchone()
                    return _dataset_from_row(row) if row else None
                # SET expressions read the pre-update column values
                cur.execute(
                    "UPDATE imported_datasets SET "
                    "analyzed_rows = analyzed_rows + 1, "
                    "failed_rows = failed_rows + %(failed)s, "
                    "status = CASE WHEN status = 'processing' AND analyzed_rows + 1 >= total_rows "
                    "THEN CASE WHEN failed_rows + %(failed)s > 0 THEN 'error' ELSE 'complete' END "
                    "ELSE status END, "
                    "updated_at = now() "
                    f"WHERE id = %(id)s RETURNING {_DATASET_COLUMNS}",
                    {"failed": failed, "id": dataset_id},
                )
                row = cur.fetchone()
                return _dataset_from_row(row) if row else None
        except DatasetNotFoundError:
            # an id the UUID column cannot parse names no dataset
            return None

    def review_responses(self, request_id: str) -> list[FeedbackRecord]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT id, answers, sentiment_label, sentiment_score, ai_confidence, analyzed_at "
                "FROM review_responses WHERE request_id = %s ORDER BY id",
                (request_id,),
            )
            return [_review_from_row(request_id, i, r) for i, r in enumerate(cur.fetchall())]

    def close(self) -> None:
        if not self._conn.closed:
            self._conn.close()
