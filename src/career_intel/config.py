"""Runtime configuration for the task queue, generation client and worker."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

from career_intel.storage.common import DEFAULT_BUSY_TIMEOUT_MS

DEFAULT_DATABASE_URL = "sqlite:///.career_intel.db"
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(slots=True)
class DatabaseSettings:
    """Database connection settings."""

    url: str = DEFAULT_DATABASE_URL
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS


@dataclass(slots=True)
class GenerationSettings:
    """OpenAI-compatible generation service settings."""

    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o"
    timeout_seconds: float = 60.0
    temperature: float = 0.3
    top_p: float = 0.9
    max_tokens: int = 4096


@dataclass(slots=True)
class RetrySettings:
    """Transient failure retry settings."""

    max_retries: int = 3
    backoff_seconds: float = 15.0


@dataclass(slots=True)
class WorkerSettings:
    """Queue worker loop settings."""

    worker_id: str = field(default_factory=lambda: f"{socket.gethostname()}:{os.getpid()}")
    idle_sleep_seconds: float = 5.0
    cooldown_seconds: float = 0.0
    stale_running_seconds: int = 0


@dataclass(slots=True)
class LoggingSettings:
    """Log level and optional log file."""

    level: str = "INFO"
    file: Path | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_env(cls, database_url: str | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        log_file = os.getenv("CAREER_INTEL_LOG_FILE", "").strip()
        return cls(
            database=DatabaseSettings(
                url=database_url
                or os.getenv(
                    "CAREER_INTEL_DATABASE_URL",
                    os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
                ),
                busy_timeout_ms=int(
                    os.getenv("CAREER_INTEL_SQLITE_BUSY_TIMEOUT_MS", str(DEFAULT_BUSY_TIMEOUT_MS)),
                ),
            ),
            generation=GenerationSettings(
                api_key=os.getenv("CAREER_INTEL_OPENAI_API_KEY") or os.getenv("OPENAI_API_KEY"),
                base_url=os.getenv("CAREER_INTEL_OPENAI_BASE_URL", "https://api.openai.com/v1"),
                model=os.getenv("CAREER_INTEL_OPENAI_MODEL", "gpt-4o"),
                timeout_seconds=float(os.getenv("CAREER_INTEL_OPENAI_TIMEOUT_SECONDS", "60")),
                temperature=float(os.getenv("CAREER_INTEL_OPENAI_TEMPERATURE", "0.3")),
                top_p=float(os.getenv("CAREER_INTEL_OPENAI_TOP_P", "0.9")),
                max_tokens=int(os.getenv("CAREER_INTEL_OPENAI_MAX_TOKENS", "4096")),
            ),
            retry=RetrySettings(
                max_retries=int(os.getenv("CAREER_INTEL_RETRY_MAX", "3")),
                backoff_seconds=float(os.getenv("CAREER_INTEL_RETRY_BACKOFF_SECONDS", "15")),
            ),
            worker=WorkerSettings(
                worker_id=os.getenv("CAREER_INTEL_WORKER_ID")
                or f"{socket.gethostname()}:{os.getpid()}",
                idle_sleep_seconds=float(
                    os.getenv("CAREER_INTEL_WORKER_IDLE_SLEEP_SECONDS", "5"),
                ),
                cooldown_seconds=float(os.getenv("CAREER_INTEL_WORKER_COOLDOWN_SECONDS", "0")),
                stale_running_seconds=int(
                    os.getenv("CAREER_INTEL_WORKER_STALE_RUNNING_SECONDS", "0"),
                ),
            ),
            logging=LoggingSettings(
                level=os.getenv("CAREER_INTEL_LOG_LEVEL", "INFO").strip().upper(),
                file=Path(log_file) if log_file else None,
            ),
        )

    def validate_for_worker(self) -> None:
        """Raise configuration error if the worker cannot run with these settings."""

        if not self.generation.api_key:
            raise ValueError(
                "Generation API key is required. "
                "Set CAREER_INTEL_OPENAI_API_KEY or OPENAI_API_KEY.",
            )
        if self.generation.timeout_seconds <= 0:
            raise ValueError("CAREER_INTEL_OPENAI_TIMEOUT_SECONDS must be > 0.")
        if self.generation.max_tokens <= 0:
            raise ValueError("CAREER_INTEL_OPENAI_MAX_TOKENS must be > 0.")
        if self.retry.max_retries < 0:
            raise ValueError("CAREER_INTEL_RETRY_MAX must be >= 0.")
        if self.retry.backoff_seconds < 0:
            raise ValueError("CAREER_INTEL_RETRY_BACKOFF_SECONDS must be >= 0.")
        if self.worker.idle_sleep_seconds < 0:
            raise ValueError("CAREER_INTEL_WORKER_IDLE_SLEEP_SECONDS must be >= 0.")
        if self.worker.cooldown_seconds < 0:
            raise ValueError("CAREER_INTEL_WORKER_COOLDOWN_SECONDS must be >= 0.")
        if self.worker.stale_running_seconds < 0:
            raise ValueError("CAREER_INTEL_WORKER_STALE_RUNNING_SECONDS must be >= 0.")
        self.validate_logging()

    def validate_logging(self) -> None:
        if self.logging.level not in _LOG_LEVELS:
            raise ValueError(
                f"CAREER_INTEL_LOG_LEVEL must be one of {', '.join(sorted(_LOG_LEVELS))}.",
            )
