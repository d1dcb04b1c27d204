from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import AppConfig, ClassifierConfig, DatabaseConfig, WorkerConfig

"""Config loader.

Responsibilities:
- Load YAML config (default config/campuspulse.yml)
- Validate against the bundled JSON schema
- Apply defaults for every missing section / key
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "default_config",
    "load_config",
]

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"
DEFAULT_CONFIG_PATH = Path("config/campuspulse.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against JSON schema.

    Raises:
        ConfigError: If the schema file is missing / not valid JSON, or the
            config data fails validation (unknown keys, wrong types, ...).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def default_config() -> AppConfig:
    return AppConfig()


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config validation failed: top level must be a mapping")

    _validate_config_schema(data)

    defaults = AppConfig()
    cls_raw = data.get("classifier") or {}
    worker_raw = data.get("worker") or {}
    db_raw = data.get("database") or {}

    classifier = ClassifierConfig(
        model=cls_raw.get("model", defaults.classifier.model),
        base_url=cls_raw.get("base_url", defaults.classifier.base_url),
        api_key_env=cls_raw.get("api_key_env", defaults.classifier.api_key_env),
        timeout_seconds=float(cls_raw.get("timeout_seconds", defaults.classifier.timeout_seconds)),
        min_text_length=int(cls_raw.get("min_text_length", defaults.classifier.min_text_length)),
        temperature=float(cls_raw.get("temperature", defaults.classifier.temperature)),
    )
    worker = WorkerConfig(
        concurrency=int(worker_raw.get("concurrency", defaults.worker.concurrency)),
        max_retries=int(worker_raw.get("max_retries", defaults.worker.max_retries)),
        backoff_base_seconds=float(
            worker_raw.get("backoff_base_seconds", defaults.worker.backoff_base_seconds)
        ),
        backoff_cap_seconds=float(
            worker_raw.get("backoff_cap_seconds", defaults.worker.backoff_cap_seconds)
        ),
    )
    database = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return AppConfig(
        classifier=classifier,
        worker=worker,
        database=database,
        error_log_dir=data.get("error_log_dir", defaults.error_log_dir),
    )
