# Shared pytest fixtures
from __future__ import annotations

import tempfile
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from campuspulse.db.repository import InMemoryRepository
from campuspulse.logging.init import reset_logging
from campuspulse.models.sentiment import SentimentLabel, SentimentResult, text_hash
from campuspulse.services.classifier import SentimentClassifier


class FakeClassifier(SentimentClassifier):
    """Deterministic classifier for tests.

    Texts containing "good"/"great" are Positive (0.8), "bad"/"awful" are
    Negative (-0.8), anything else Neutral. `fail_plan` maps a text to a
    list of exceptions raised, in order, on its first calls.
    """

    def __init__(
        self,
        min_text_length: int = 3,
        fail_plan: dict[str, list[Exception]] | None = None,
        on_call: Callable[[int, str], None] | None = None,
    ) -> None:
        super().__init__(min_text_length=min_text_length)
        self.fail_plan = {k: list(v) for k, v in (fail_plan or {}).items()}
        self.on_call = on_call
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def _classify(self, text: str) -> SentimentResult:
        with self._lock:
            self.calls.append(text)
            n = len(self.calls)
            plan = self.fail_plan.get(text)
            error = plan.pop(0) if plan else None
        if self.on_call is not None:
            self.on_call(n, text)
        if error is not None:
            raise error
        lower = text.lower()
        if "good" in lower or "great" in lower:
            return SentimentResult(SentimentLabel.POSITIVE, 0.9, text_hash(text), score=0.8)
        if "bad" in lower or "awful" in lower:
            return SentimentResult(SentimentLabel.NEGATIVE, 0.9, text_hash(text), score=-0.8)
        return SentimentResult(SentimentLabel.NEUTRAL, 0.7, text_hash(text), score=0.0)


@pytest.fixture(autouse=True)
def _clean_logging():
    # the app logger binds sys.stdout at setup time; capsys swaps it per test
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """classifier:
  model: llama-3.1-8b-instant
  api_key_env: CAMPUSPULSE_TEST_KEY
  timeout_seconds: 5
worker:
  concurrency: 3
  max_retries: 2
  backoff_base_seconds: 0
  backoff_cap_seconds: 0
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
error_log_dir: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "campuspulse.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def fake_classifier_cls() -> type[FakeClassifier]:
    return FakeClassifier


@pytest.fixture()
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture()
def feedback_rows() -> list[dict[str, str]]:
    return [
        {"Name": "Asha", "Rating": "5", "Liked": "Great lectures", "Improve": "Nothing"},
        {"Name": "Ben", "Rating": "2", "Liked": "The labs", "Improve": "Bad projector"},
        {"Name": "", "Rating": "4", "Liked": "Good pacing", "Improve": ""},
        {"Name": "Dee", "Rating": "3", "Liked": "ok", "Improve": "Awful room"},
    ]


@pytest.fixture()
def feedback_csv(temp_workdir: Path) -> Path:
    path = temp_workdir / "data" / "feedback.csv"
    path.write_text(
        "Name,Rating,Liked,Improve\n"
        "Asha,5,Great lectures,Nothing\n"
        "Ben,2,The labs,Bad projector\n"
        ",,,\n"
        ",4,Good pacing,\n"
        "Dee,3,ok,Awful room\n",
        encoding="utf-8",
    )
    return path
