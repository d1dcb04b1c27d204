from __future__ import annotations

from pathlib import Path

import pytest

from campuspulse.config.loader import ConfigError, default_config, load_config
from campuspulse.models.config_models import WorkerConfig


def test_load_config_full(write_config: Path):
    cfg = load_config(write_config)
    assert cfg.classifier.api_key_env == "CAMPUSPULSE_TEST_KEY"
    assert cfg.classifier.timeout_seconds == 5.0
    assert cfg.classifier.min_text_length == 3  # default kept
    assert cfg.worker.concurrency == 3
    assert cfg.worker.max_retries == 2
    assert cfg.database.user == "appuser"
    assert cfg.database.port == 5432
    assert cfg.error_log_dir == "./logs"


def test_load_config_empty_file_gives_defaults(temp_workdir: Path):
    p = temp_workdir / "config" / "campuspulse.yml"
    p.write_text("", encoding="utf-8")
    assert load_config(p) == default_config()


def test_defaults():
    cfg = default_config()
    assert cfg.classifier.model == "llama-3.1-8b-instant"
    assert cfg.classifier.base_url == "https://api.groq.com/openai/v1"
    assert cfg.classifier.timeout_seconds == 10.0
    assert cfg.worker == WorkerConfig(concurrency=5, max_retries=3)
    assert cfg.database.dsn is None


def test_missing_file(temp_workdir: Path):
    with pytest.raises(ConfigError, match="config file not found"):
        load_config(temp_workdir / "config" / "nope.yml")


def test_invalid_yaml(temp_workdir: Path):
    p = temp_workdir / "config" / "campuspulse.yml"
    p.write_text("worker: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid yaml"):
        load_config(p)


@pytest.mark.parametrize("text", [
    "unknown_section: 1\n",
    "worker:\n  concurrency: 0\n",
    "worker:\n  threads: 4\n",
    "classifier:\n  timeout_seconds: fast\n",
    "- a\n- b\n",
])
def test_schema_violations(temp_workdir: Path, text: str):
    p = temp_workdir / "config" / "campuspulse.yml"
    p.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError, match="config validation failed"):
        load_config(p)


@pytest.mark.parametrize("n,expected", [(0, 0.5), (1, 1.0), (2, 2.0), (3, 4.0), (4, 5.0), (10, 5.0)])
def test_backoff_delay(n, expected):
    assert WorkerConfig().backoff_delay(n) == expected
