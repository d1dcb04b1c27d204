from __future__ import annotations

import json
import threading
import time
from dataclasses import replace
from pathlib import Path

import pytest

from campuspulse.db.repository import (
    DatasetNotFoundError,
    InMemoryRepository,
    InvalidStatusTransition,
    StorageError,
)
from campuspulse.models.config_models import WorkerConfig
from campuspulse.models.dataset import DatasetStatus
from campuspulse.models.feedback_record import FailureKind, RecordOutcome
from campuspulse.models.sentiment import SentimentLabel, SentimentResult
from campuspulse.services.aggregator import summarize_dataset
from campuspulse.services.classifier import ClassificationRejected, ClassificationUnavailable
from campuspulse.services.normalizer import import_rows
from campuspulse.services.worker import AnalysisWorker


@pytest.fixture()
def delays() -> list[float]:
    return []


@pytest.fixture()
def make_worker(repo, temp_workdir: Path, delays):
    def build(classifier, concurrency: int = 5, repository=None) -> AnalysisWorker:
        return AnalysisWorker(
            repository or repo,
            classifier,
            WorkerConfig(concurrency=concurrency),
            error_log_dir=temp_workdir / "logs",
            sleep=delays.append,
        )
    return build


def _import(repo, rows) -> str:
    return import_rows(repo, "Fest", "csv", rows).dataset.id


def _ten_rows() -> list[dict[str, str]]:
    return [{"Feedback": f"good point {i}"} for i in range(10)]


def test_all_records_analyzed(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, _ten_rows())
    clf = fake_classifier_cls()
    result = make_worker(clf).run(ds_id)

    ds = repo.get_dataset(ds_id)
    assert ds.status is DatasetStatus.COMPLETE
    assert ds.analyzed_row_count == ds.total_row_count == 10
    assert result.status == "complete"
    assert result.processed_records == 10
    assert result.failed_records == 0
    assert result.classifier_calls == 10
    assert len(clf.calls) == 10
    assert all(r.sentiment.label is SentimentLabel.POSITIVE for r in repo.list_records(ds_id))


def test_two_character_text_skips_classifier(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, [{"Feedback": "ok"}])
    clf = fake_classifier_cls()
    result = make_worker(clf).run(ds_id)

    assert clf.calls == []
    assert result.classifier_calls == 0
    rec = repo.list_records(ds_id)[0]
    assert rec.sentiment.label is SentimentLabel.NEUTRAL
    assert rec.sentiment.confidence == 0.0
    assert rec.sentiment.fallback is False
    assert repo.get_dataset(ds_id).status is DatasetStatus.COMPLETE


def test_transient_failures_are_retried(repo, make_worker, fake_classifier_cls, delays):
    ds_id = _import(repo, [{"Feedback": "Slow wifi"}])
    clf = fake_classifier_cls(fail_plan={
        "Slow wifi": [ClassificationUnavailable("timeout"), ClassificationUnavailable("timeout")],
    })
    result = make_worker(clf).run(ds_id)

    assert clf.calls == ["Slow wifi"] * 3
    assert delays == [0.5, 1.0]
    assert result.classifier_calls == 3
    rec = repo.list_records(ds_id)[0]
    assert rec.failure is None
    assert rec.sentiment.fallback is False
    assert repo.get_dataset(ds_id).status is DatasetStatus.COMPLETE


def test_exhausted_retries_fall_back_and_fail_record(repo, make_worker, fake_classifier_cls, delays):
    ds_id = _import(repo, [{"Feedback": "Slow wifi"}, {"Feedback": "good talk"}])
    clf = fake_classifier_cls(fail_plan={"Slow wifi": [ClassificationUnavailable("down")] * 4})
    result = make_worker(clf, concurrency=1).run(ds_id)

    assert clf.calls.count("Slow wifi") == 4
    assert delays == [0.5, 1.0, 2.0]
    assert result.failed_records == 1
    assert result.fallback_fields == 1
    failed = repo.list_records(ds_id)[0]
    assert failed.failure is FailureKind.UNAVAILABLE
    assert failed.sentiment.label is SentimentLabel.NEUTRAL
    assert failed.sentiment.fallback is True
    ds = repo.get_dataset(ds_id)
    assert ds.status is DatasetStatus.ERROR
    assert ds.analyzed_row_count == 2


def test_rejected_record_is_not_retried(repo, make_worker, fake_classifier_cls, delays, temp_workdir):
    rows = _ten_rows()
    rows[7] = {"Feedback": "garbled ###"}
    ds_id = _import(repo, rows)
    clf = fake_classifier_cls(fail_plan={"garbled ###": [ClassificationRejected("not JSON")]})
    make_worker(clf).run(ds_id)

    assert clf.calls.count("garbled ###") == 1
    assert delays == []
    ds = repo.get_dataset(ds_id)
    assert ds.status is DatasetStatus.ERROR
    assert ds.to_status_dict() == {"status": "error", "totalRows": 10, "analyzedRows": 10}
    summary = summarize_dataset(repo, ds_id)
    assert summary.overall.counts[SentimentLabel.NEUTRAL] == 1
    assert summary.overall.counts[SentimentLabel.POSITIVE] == 9
    assert summary.fallback_count == 1

    logs = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    entry = json.loads(logs[0].read_text(encoding="utf-8").strip())
    assert entry["dataset_id"] == ds_id
    assert entry["row"] == 7
    assert entry["question"] == "Feedback"
    assert entry["error_type"] == "CLASSIFICATION_REJECTED"


def test_other_fields_still_classified_after_rejection(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, [{"Q1": "garbled", "Q2": "great staff"}])
    clf = fake_classifier_cls(fail_plan={"garbled": [ClassificationRejected("bad")]})
    make_worker(clf).run(ds_id)

    rec = repo.list_records(ds_id)[0]
    assert rec.failure is FailureKind.REJECTED
    assert rec.question_results["Q1"].fallback is True
    assert rec.question_results["Q2"].label is SentimentLabel.POSITIVE
    assert rec.sentiment.fallback is True


def test_fields_classified_in_declaration_order(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, [{"Q1": "good a", "Q2": "bad b", "Q3": "meh c"}])
    clf = fake_classifier_cls()
    make_worker(clf, concurrency=1).run(ds_id)

    assert clf.calls == ["good a", "bad b", "meh c"]
    rec = repo.list_records(ds_id)[0]
    assert list(rec.question_results) == ["Q1", "Q2", "Q3"]
    assert rec.sentiment.label is SentimentLabel.NEUTRAL  # mean score 0


def test_text_under_rating_header_is_classified(repo, make_worker, fake_classifier_cls):
    question = "How would you grade the labs? Why?"
    ds_id = _import(repo, [{question: "Awful equipment, bad support", "Rating": "4"}])
    clf = fake_classifier_cls()
    make_worker(clf).run(ds_id)

    assert clf.calls == ["Awful equipment, bad support"]
    rec = repo.list_records(ds_id)[0]
    assert rec.sentiment.label is SentimentLabel.NEGATIVE
    assert rec.rating == 4.0
    assert list(rec.question_results) == [question]


def test_padded_answer_is_classified_trimmed(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, [{"Q": "  good pacing  "}])
    clf = fake_classifier_cls()
    make_worker(clf).run(ds_id)

    assert clf.calls == ["good pacing"]
    assert repo.list_records(ds_id)[0].values == {"Q": "  good pacing  "}


def test_record_without_text_is_neutral(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, [{"Name": "Asha", "Rating": "5"}])
    make_worker(fake_classifier_cls()).run(ds_id)
    rec = repo.list_records(ds_id)[0]
    assert rec.sentiment.label is SentimentLabel.NEUTRAL
    assert rec.question_results == {}
    assert repo.get_dataset(ds_id).status is DatasetStatus.COMPLETE


def test_rerun_on_complete_dataset_is_noop(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, _ten_rows())
    clf = fake_classifier_cls()
    worker = make_worker(clf)
    worker.run(ds_id)
    before = repo.list_records(ds_id)

    again = worker.run(ds_id)

    assert again.skipped is True
    assert again.processed_records == 0
    assert len(clf.calls) == 10
    assert repo.list_records(ds_id) == before


def test_resume_processes_only_pending_records(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, _ten_rows())
    repo.transition(ds_id, DatasetStatus.PROCESSING)
    done = repo.list_records(ds_id)[:4]
    for rec in done:
        r = SentimentResult(SentimentLabel.NEGATIVE, 0.5, "h", score=-0.5)
        repo.record_outcome(ds_id, rec.id, RecordOutcome(r, {"Feedback": r}))

    clf = fake_classifier_cls()
    result = make_worker(clf).run(ds_id)

    assert len(clf.calls) == 6
    assert result.processed_records == 6
    ds = repo.get_dataset(ds_id)
    assert ds.analyzed_row_count == 10
    assert ds.status is DatasetStatus.COMPLETE
    labels = [r.sentiment.label for r in repo.list_records(ds_id)]
    assert labels[:4] == [SentimentLabel.NEGATIVE] * 4


def test_cancellation_stops_dispatch(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, _ten_rows())
    holder: dict[str, AnalysisWorker] = {}

    def cancel_on_third(n: int, text: str) -> None:
        if n == 3:
            holder["worker"].cancel(ds_id)

    clf = fake_classifier_cls(on_call=cancel_on_third)
    holder["worker"] = make_worker(clf, concurrency=1)
    result = holder["worker"].run(ds_id)

    ds = repo.get_dataset(ds_id)
    assert ds.status is DatasetStatus.CANCELLED
    assert len(clf.calls) == 3
    assert ds.analyzed_row_count == 3  # in-flight record still written
    assert result.status == "cancelled"


def test_cancel_pending_dataset_then_run_is_noop(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, _ten_rows())
    clf = fake_classifier_cls()
    worker = make_worker(clf)
    worker.cancel(ds_id)
    assert worker.run(ds_id).skipped is True
    assert clf.calls == []


def test_cancel_complete_dataset_rejected(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, [{"Feedback": "good"}])
    worker = make_worker(fake_classifier_cls())
    worker.run(ds_id)
    with pytest.raises(InvalidStatusTransition):
        worker.cancel(ds_id)


def test_deletion_during_processing_stops_worker(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, _ten_rows())

    def delete_on_second(n: int, text: str) -> None:
        if n == 2:
            repo.delete_dataset(ds_id)

    clf = fake_classifier_cls(on_call=delete_on_second)
    result = make_worker(clf, concurrency=1).run(ds_id)

    assert result.status == "deleted"
    assert result.processed_records == 1
    assert len(clf.calls) == 2
    with pytest.raises(DatasetNotFoundError):
        repo.get_dataset(ds_id)


def test_pool_respects_concurrency_bound(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, [{"Feedback": f"answer number {i}"} for i in range(20)])
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def slow(n: int, text: str) -> None:
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.01)
        with lock:
            state["active"] -= 1

    clf = fake_classifier_cls(on_call=slow)
    make_worker(clf, concurrency=3).run(ds_id)

    assert 1 <= state["peak"] <= 3
    assert sorted(clf.calls) == sorted(f"answer number {i}" for i in range(20))
    assert repo.get_dataset(ds_id).analyzed_row_count == 20


def test_unknown_dataset(make_worker, fake_classifier_cls):
    with pytest.raises(DatasetNotFoundError):
        make_worker(fake_classifier_cls()).run("missing")


class _BrokenRepository(InMemoryRepository):
    def record_outcome(self, dataset_id, record_id, outcome):
        raise StorageError("connection lost")


def test_storage_failure_abandons_dataset(make_worker, fake_classifier_cls):
    broken = _BrokenRepository()
    ds_id = _import(broken, _ten_rows())
    with pytest.raises(StorageError):
        make_worker(fake_classifier_cls(), concurrency=2, repository=broken).run(ds_id)
    assert broken.get_dataset(ds_id).status is DatasetStatus.ERROR


def test_fully_counted_dataset_settles_on_start(repo, make_worker, fake_classifier_cls):
    ds_id = _import(repo, [{"Feedback": "good"}])
    rec = repo.list_records(ds_id)[0]
    r = SentimentResult.neutral("good")
    # every row already counted, status never moved past pending
    repo._records[ds_id][rec.id] = rec.with_outcome(RecordOutcome(r, {"Feedback": r}))
    repo._datasets[ds_id] = replace(repo.get_dataset(ds_id), analyzed_row_count=1)

    result = make_worker(fake_classifier_cls()).run(ds_id)

    assert result.status == "complete"
    assert repo.get_dataset(ds_id).status is DatasetStatus.COMPLETE
