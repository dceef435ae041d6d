from __future__ import annotations

import allure
import pytest
from click.testing import CliRunner

from career_intel import main
from career_intel.orchestrator.catalog_defaults import DEFAULT_TASK_DEFINITIONS
from career_intel.orchestrator.controllers import CareerIntelCliController
from career_intel.orchestrator.errors import FatalUpstreamError
from career_intel.orchestrator.models import UpstreamReason

from conftest import ScriptedGenerationService, valid_payload

pytestmark = [
    allure.epic("Operator CLI"),
    allure.feature("Queue Commands"),
]


@pytest.fixture(autouse=True)
def _quiet_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CAREER_INTEL_LOG_FILE", raising=False)
    monkeypatch.setenv("CAREER_INTEL_LOG_LEVEL", "WARNING")


def _invoke(runner: CliRunner, database_url: str, *args: str) -> str:
    result = runner.invoke(main.career_intel, [*args, "--database-url", database_url])
    assert result.exit_code == 0, result.output
    return result.output


def _seed(runner: CliRunner, database_url: str) -> None:
    _invoke(runner, database_url, "catalog", "install")
    _invoke(
        runner,
        database_url,
        "entities",
        "add",
        "--title",
        "Electrician",
        "--soc-code",
        "47-2111",
        "--enqueue",
    )


def test_db_init_and_catalog_commands(database_url: str) -> None:
    runner = CliRunner()

    assert "up to date" in _invoke(runner, database_url, "db", "init")
    installed = _invoke(runner, database_url, "catalog", "install")
    listed = _invoke(runner, database_url, "catalog", "list")

    assert f"{len(DEFAULT_TASK_DEFINITIONS)} task definitions" in installed
    assert f"Task definitions: {len(DEFAULT_TASK_DEFINITIONS)}" in listed
    assert "economics-analysis v1.0.0 policy=econ.lowtemp" in listed


def test_entities_add_enqueues_full_catalog_once(database_url: str) -> None:
    runner = CliRunner()
    _seed(runner, database_url)

    again = _invoke(runner, database_url, "entities", "enqueue", "--entity-id", "1")
    status = _invoke(runner, database_url, "status")

    assert "Enqueued task instances: 0" in again
    total = len(DEFAULT_TASK_DEFINITIONS)
    assert f"total={total} pending={total} running=0 done=0 failed=0" in status


def test_worker_dry_run_claims_nothing(database_url: str) -> None:
    runner = CliRunner()
    _seed(runner, database_url)

    output = _invoke(runner, database_url, "worker", "run", "--dry-run", "--max-items", "3")
    listed = _invoke(runner, database_url, "tasks", "list", "--status", "running")

    assert "Dry run: next 3 pending task instances" in output
    assert "Task instances: 0" in listed


def test_worker_run_processes_and_reports(
    database_url: str,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    runner = CliRunner()
    _seed(runner, database_url)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    fatal = FatalUpstreamError("HTTP 401: bad key", reason=UpstreamReason.AUTH, status_code=401)
    generation = ScriptedGenerationService([valid_payload(), fatal, valid_payload()])
    monkeypatch.setattr(
        main,
        "CONTROLLER",
        CareerIntelCliController(generation_factory=lambda _: generation, sleep=lambda _: None),
    )

    output = _invoke(runner, database_url, "worker", "run", "--max-items", "3")
    status = _invoke(runner, database_url, "status")
    errors = _invoke(runner, database_url, "errors", "--limit", "5")

    assert "processed=3 succeeded=2 failed=1" in output
    assert "done=2 failed=1" in status
    assert "Errors: 1" in errors
    assert "class=fatal_upstream" in errors

    reset = _invoke(runner, database_url, "tasks", "reset")
    failed = _invoke(runner, database_url, "tasks", "list", "--status", "failed")

    assert "Reset to pending: 1 (statuses=failed)" in reset
    assert "Task instances: 0" in failed


def test_worker_run_requires_api_key(database_url: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("CAREER_INTEL_OPENAI_API_KEY", raising=False)
    runner = CliRunner()

    result = runner.invoke(
        main.career_intel,
        ["worker", "run", "--max-items", "1", "--database-url", database_url],
    )

    assert result.exit_code != 0
    assert "API key is required" in result.output


def test_recover_stale_reports_count(database_url: str) -> None:
    runner = CliRunner()
    _seed(runner, database_url)

    output = _invoke(runner, database_url, "tasks", "recover-stale", "--older-than-seconds", "60")

    assert "Recovered stale running instances: 0" in output
