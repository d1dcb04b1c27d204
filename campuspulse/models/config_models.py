from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the feedback analysis service.

Separate from the loader in campuspulse/config/loader.py, which reads YAML
and fills these in with defaults.
"""

__all__ = [
    "AppConfig",
    "ClassifierConfig",
    "DatabaseConfig",
    "WorkerConfig",
]


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ClassifierConfig:
    """Hosted sentiment model settings (OpenAI-compatible chat endpoint)."""
    model: str = "llama-3.1-8b-instant"
    base_url: str = "https://api.groq.com/openai/v1"
    api_key_env: str = "GROQ_API_KEY"  # name of the env var holding the key
    timeout_seconds: float = 10.0  # per-call timeout
    min_text_length: int = 3  # shorter texts short-circuit to Neutral/0
    temperature: float = 0.1


@dataclass(frozen=True)
class WorkerConfig:
    """Analysis worker pool and retry policy."""
    concurrency: int = 5
    max_retries: int = 3  # retries after the first attempt
    backoff_base_seconds: float = 0.5
    backoff_cap_seconds: float = 5.0

    def backoff_delay(self, retry_number: int) -> float:
        """Delay before retry `retry_number` (0-based): base * 2^n, capped."""
        return min(self.backoff_base_seconds * (2 ** retry_number), self.backoff_cap_seconds)


@dataclass(frozen=True)
class AppConfig:
    """Root configuration object."""
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    error_log_dir: str = "./logs"
