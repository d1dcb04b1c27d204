from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from campuspulse.db.repository import DatasetNotFoundError
from campuspulse.models.config_models import AppConfig, WorkerConfig
from campuspulse.models.dataset import DatasetStatus
from campuspulse.models.feedback_record import RecordOutcome
from campuspulse.models.sentiment import SentimentLabel, SentimentResult
from campuspulse.services.classifier import ClassificationRejected
from campuspulse.services.lifecycle import DatasetManager

"""Permanent classification failure, crash resume and deletion mid-run."""


def _rows(n: int) -> list[dict[str, str]]:
    return [{"Feedback": f"great class {i}"} for i in range(n)]


def _manager(repo, workdir: Path, classifier, concurrency: int = 2) -> DatasetManager:
    cfg = AppConfig(
        worker=WorkerConfig(concurrency=concurrency), error_log_dir=str(workdir / "logs")
    )
    return DatasetManager(repo, cfg, classifier=classifier, sleep=lambda _s: None)


def test_permanent_failure_settles_error(repo, temp_workdir: Path, fake_classifier_cls):
    clf = fake_classifier_cls(fail_plan={"great class 3": [ClassificationRejected("bad JSON")]})
    mgr = _manager(repo, temp_workdir, clf)
    try:
        receipt = mgr.import_rows("Fest", "csv", _rows(8), analyze=False)
        result = mgr.analyze(receipt.dataset_id)
    finally:
        mgr.shutdown()

    assert result.status == "error"
    ds = repo.get_dataset(receipt.dataset_id)
    assert ds.status is DatasetStatus.ERROR
    assert ds.analyzed_row_count == 8
    assert ds.failed_row_count == 1

    summary = mgr.get_summary(receipt.dataset_id)
    assert summary.overall.counts[SentimentLabel.POSITIVE] == 7
    assert summary.overall.counts[SentimentLabel.NEUTRAL] == 1
    assert summary.fallback_count == 1

    (log_file,) = (temp_workdir / "logs").glob("errors-*.log")
    entry = json.loads(log_file.read_text(encoding="utf-8").strip())
    assert entry["row"] == 3
    assert entry["error_type"] == "CLASSIFICATION_REJECTED"


def test_resume_after_crash(repo, temp_workdir: Path, fake_classifier_cls):
    first = _manager(repo, temp_workdir, fake_classifier_cls())
    receipt = first.import_rows("Fest", "csv", _rows(6), analyze=False)
    first.shutdown()

    # the previous process died after writing two outcomes
    repo.transition(receipt.dataset_id, DatasetStatus.PROCESSING)
    for rec in repo.list_records(receipt.dataset_id)[:2]:
        r = SentimentResult(SentimentLabel.NEGATIVE, 0.6, "h", score=-0.6)
        repo.record_outcome(receipt.dataset_id, rec.id, RecordOutcome(r, {"Feedback": r}))

    clf = fake_classifier_cls()
    second = _manager(repo, temp_workdir, clf)
    try:
        result = second.start_analysis(receipt.dataset_id).result(timeout=30)
    finally:
        second.shutdown()

    assert result.processed_records == 4
    assert len(clf.calls) == 4
    ds = repo.get_dataset(receipt.dataset_id)
    assert ds.status is DatasetStatus.COMPLETE
    assert ds.analyzed_row_count == 6
    counts = second.get_summary(receipt.dataset_id).overall.counts
    assert counts[SentimentLabel.NEGATIVE] == 2
    assert counts[SentimentLabel.POSITIVE] == 4


def test_delete_mid_processing(repo, temp_workdir: Path, fake_classifier_cls):
    holder: dict[str, DatasetManager] = {}
    deleted = threading.Event()

    def delete_on_second(n: int, text: str) -> None:
        if n == 2 and not deleted.is_set():
            holder["mgr"].delete(holder["id"])
            deleted.set()

    mgr = _manager(repo, temp_workdir, fake_classifier_cls(on_call=delete_on_second), concurrency=1)
    holder["mgr"] = mgr
    try:
        receipt = mgr.import_rows("Fest", "csv", _rows(10), analyze=False)
        holder["id"] = receipt.dataset_id
        result = mgr.analyze(receipt.dataset_id)
    finally:
        mgr.shutdown()

    assert deleted.is_set()
    assert result.status == "deleted"
    assert result.processed_records == 1
    with pytest.raises(DatasetNotFoundError):
        mgr.get_status(receipt.dataset_id)
    with pytest.raises(DatasetNotFoundError):
        repo.list_records(receipt.dataset_id)
