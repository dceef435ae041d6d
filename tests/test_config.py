from __future__ import annotations

from pathlib import Path

import allure
import pytest

from career_intel.config import (
    DEFAULT_DATABASE_URL,
    GenerationSettings,
    LoggingSettings,
    RetrySettings,
    Settings,
    WorkerSettings,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]

_ENV_NAMES = (
    "CAREER_INTEL_DATABASE_URL",
    "DATABASE_URL",
    "CAREER_INTEL_OPENAI_API_KEY",
    "OPENAI_API_KEY",
    "CAREER_INTEL_OPENAI_MODEL",
    "CAREER_INTEL_RETRY_MAX",
    "CAREER_INTEL_RETRY_BACKOFF_SECONDS",
    "CAREER_INTEL_WORKER_ID",
    "CAREER_INTEL_WORKER_STALE_RUNNING_SECONDS",
    "CAREER_INTEL_LOG_LEVEL",
    "CAREER_INTEL_LOG_FILE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.database.url == DEFAULT_DATABASE_URL
    assert settings.generation.api_key is None
    assert settings.generation.model == "gpt-4o"
    assert settings.generation.timeout_seconds == 60.0
    assert settings.retry.max_retries == 3
    assert settings.retry.backoff_seconds == 15.0
    assert settings.worker.idle_sleep_seconds == 5.0
    assert settings.worker.cooldown_seconds == 0.0
    assert settings.worker.stale_running_seconds == 0
    assert settings.worker.worker_id
    assert settings.logging.level == "INFO"
    assert settings.logging.file is None


def test_from_env_reads_prefixed_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAREER_INTEL_DATABASE_URL", "postgresql://u:p@db/career")
    monkeypatch.setenv("CAREER_INTEL_OPENAI_API_KEY", "sk-prefixed")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-generic")
    monkeypatch.setenv("CAREER_INTEL_OPENAI_MODEL", "gpt-4o-mini")
    monkeypatch.setenv("CAREER_INTEL_RETRY_MAX", "5")
    monkeypatch.setenv("CAREER_INTEL_RETRY_BACKOFF_SECONDS", "2.5")
    monkeypatch.setenv("CAREER_INTEL_WORKER_ID", "worker-7")
    monkeypatch.setenv("CAREER_INTEL_WORKER_STALE_RUNNING_SECONDS", "900")
    monkeypatch.setenv("CAREER_INTEL_LOG_LEVEL", "debug")
    monkeypatch.setenv("CAREER_INTEL_LOG_FILE", "logs/worker.log")

    settings = Settings.from_env()

    assert settings.database.url == "postgresql://u:p@db/career"
    assert settings.generation.api_key == "sk-prefixed"
    assert settings.generation.model == "gpt-4o-mini"
    assert settings.retry.max_retries == 5
    assert settings.retry.backoff_seconds == 2.5
    assert settings.worker.worker_id == "worker-7"
    assert settings.worker.stale_running_seconds == 900
    assert settings.logging.level == "DEBUG"
    assert settings.logging.file == Path("logs/worker.log")


def test_from_env_falls_back_to_generic_names(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "sqlite:///generic.db")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-generic")

    settings = Settings.from_env()

    assert settings.database.url == "sqlite:///generic.db"
    assert settings.generation.api_key == "sk-generic"


def test_explicit_database_url_wins(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAREER_INTEL_DATABASE_URL", "sqlite:///env.db")

    assert Settings.from_env(database_url="sqlite:///cli.db").database.url == "sqlite:///cli.db"


def test_validate_for_worker_requires_api_key() -> None:
    settings = Settings(generation=GenerationSettings(api_key=None))

    with pytest.raises(ValueError, match="API key is required"):
        settings.validate_for_worker()


@pytest.mark.parametrize(
    ("settings", "match"),
    [
        (
            Settings(generation=GenerationSettings(api_key="k", timeout_seconds=0)),
            "TIMEOUT_SECONDS",
        ),
        (Settings(generation=GenerationSettings(api_key="k", max_tokens=0)), "MAX_TOKENS"),
        (
            Settings(
                generation=GenerationSettings(api_key="k"),
                retry=RetrySettings(max_retries=-1),
            ),
            "RETRY_MAX",
        ),
        (
            Settings(
                generation=GenerationSettings(api_key="k"),
                worker=WorkerSettings(cooldown_seconds=-1),
            ),
            "COOLDOWN_SECONDS",
        ),
        (
            Settings(
                generation=GenerationSettings(api_key="k"),
                logging=LoggingSettings(level="CHATTY"),
            ),
            "LOG_LEVEL",
        ),
    ],
)
def test_validate_for_worker_rejects_bad_numbers(settings: Settings, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        settings.validate_for_worker()


def test_validate_for_worker_accepts_defaults_with_key() -> None:
    Settings(generation=GenerationSettings(api_key="sk-test")).validate_for_worker()
