from __future__ import annotations

from campuspulse.services.lifecycle import DatasetManager
from campuspulse.models.config_models import AppConfig

"""JSON shapes handed to import, status and summary callers."""


def test_receipt_status_and_summary_shapes(repo, temp_workdir, fake_classifier_cls, feedback_rows):
    mgr = DatasetManager(
        repo, AppConfig(error_log_dir=str(temp_workdir / "logs")), classifier=fake_classifier_cls()
    )
    try:
        receipt = mgr.import_rows("Fest", "csv", feedback_rows, analyze=False).to_dict()
        assert set(receipt) == {"datasetId", "message", "rowCount"}
        assert isinstance(receipt["datasetId"], str)

        status = mgr.get_status(receipt["datasetId"])
        assert status == {"status": "pending", "totalRows": 4, "analyzedRows": 0}

        mgr.analyze(receipt["datasetId"])
        summary = mgr.get_summary(receipt["datasetId"]).to_dict()
        assert set(summary) == {
            "sourceId", "totalAnalyzed", "counts", "percentages", "insufficientData",
            "dominantLabel", "fallbackCount", "averageScore", "averageRating", "perQuestion",
            "trend",
        }
        assert set(summary["counts"]) == {"Positive", "Neutral", "Negative"}
        assert set(summary["percentages"]) == {"Positive", "Neutral", "Negative"}
        assert summary["perQuestion"] is not None
        for breakdown in summary["perQuestion"].values():
            assert set(breakdown) == {
                "total", "counts", "percentages", "insufficientData", "dominantLabel",
            }
    finally:
        mgr.shutdown()
