"""Controllers for queue CLI commands."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta

from career_intel.config import Settings
from career_intel.orchestrator.backend import GenerationService, OpenAiChatService
from career_intel.orchestrator.backend.openai_chat import OpenAiChatSettings
from career_intel.orchestrator.catalog import TaskCatalog
from career_intel.orchestrator.models import EntityWrite, TaskStatus
from career_intel.orchestrator.reports import (
    render_catalog_lines,
    render_error_lines,
    render_status_lines,
    render_task_lines,
)
from career_intel.orchestrator.repository import QueueRepository
from career_intel.orchestrator.retry import RetryPolicy
from career_intel.orchestrator.worker import QueueWorker, WorkerOptions
from career_intel.storage.common import open_engine

GenerationFactory = Callable[[Settings], GenerationService]


@dataclass(slots=True)
class DbInitCommand:
    """CLI input for schema migration."""

    database_url: str | None


@dataclass(slots=True)
class CatalogCommand:
    """CLI input for catalog install/list."""

    database_url: str | None


@dataclass(slots=True)
class EntityAddCommand:
    """CLI input for entity registration."""

    database_url: str | None
    canonical_title: str
    soc_code: str | None
    short_description: str | None
    onet_code: str | None
    enqueue: bool
    region_code: str
    priority: int


@dataclass(slots=True)
class EntityEnqueueCommand:
    """CLI input for enqueueing task instances for an existing entity."""

    database_url: str | None
    entity_id: int
    region_code: str
    priority: int
    task_ids: tuple[str, ...]


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for worker execution."""

    database_url: str | None
    max_items: int | None
    region_code: str | None
    idle_sleep_seconds: float | None
    exit_when_idle: bool
    dry_run: bool


@dataclass(slots=True)
class StatusCommand:
    """CLI input for progress reporting."""

    database_url: str | None
    region_code: str | None


@dataclass(slots=True)
class ErrorsCommand:
    """CLI input for error log listing."""

    database_url: str | None
    limit: int
    task_id: str | None = None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task instance listing."""

    database_url: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class ResetTasksCommand:
    """CLI input for manual reset of terminal or stuck instances."""

    database_url: str | None
    statuses: tuple[str, ...]
    region_code: str | None
    task_id: str | None


@dataclass(slots=True)
class RecoverStaleCommand:
    """CLI input for returning stale running instances to pending."""

    database_url: str | None
    older_than_seconds: int


class CareerIntelCliController:
    """Glue between click commands and the queue components."""

    def __init__(
        self,
        *,
        generation_factory: GenerationFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._generation_factory = generation_factory or _openai_service
        self._sleep = sleep

    def init_db(self, command: DbInitCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings):
            pass
        return ["Database schema is up to date."]

    def install_catalog(self, command: CatalogCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings) as repository:
            policies, definitions = TaskCatalog(repository.engine).install_defaults()
        return [f"Installed {policies} run policies and {definitions} task definitions."]

    def list_catalog(self, command: CatalogCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings) as repository:
            definitions = TaskCatalog(repository.engine).list_definitions()
        return render_catalog_lines(definitions)

    def add_entity(self, command: EntityAddCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings) as repository:
            entity_id = repository.add_entity(
                EntityWrite(
                    canonical_title=command.canonical_title,
                    soc_code=command.soc_code,
                    short_description=command.short_description,
                    onet_code=command.onet_code,
                ),
            )
            lines = [f"Entity: {entity_id} ({command.canonical_title})"]
            if command.enqueue:
                created = repository.enqueue_entity(
                    entity_id=entity_id,
                    region_code=command.region_code,
                    priority=command.priority,
                )
                lines.append(f"Enqueued task instances: {created}")
        return lines

    def enqueue_entity(self, command: EntityEnqueueCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings) as repository:
            created = repository.enqueue_entity(
                entity_id=command.entity_id,
                region_code=command.region_code,
                priority=command.priority,
                task_ids=command.task_ids or None,
            )
        return [
            f"Enqueued task instances: {created} "
            f"(entity={command.entity_id} region={command.region_code.upper()})",
        ]

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        if command.dry_run:
            return self._preview_worker(settings=settings, command=command)

        settings.validate_for_worker()
        with _repository(settings) as repository:
            generation = self._generation_factory(settings)
            try:
                worker = QueueWorker(
                    repository=repository,
                    catalog=TaskCatalog(repository.engine),
                    generation=generation,
                    retry_policy=RetryPolicy(
                        max_retries=settings.retry.max_retries,
                        base_backoff_seconds=settings.retry.backoff_seconds,
                    ),
                    worker_id=settings.worker.worker_id,
                    idle_sleep_seconds=settings.worker.idle_sleep_seconds,
                    cooldown_seconds=settings.worker.cooldown_seconds,
                    stale_running_seconds=settings.worker.stale_running_seconds,
                    sleep=self._sleep,
                )
                summary = worker.run(
                    WorkerOptions(
                        max_items=command.max_items,
                        region_code=command.region_code,
                        idle_sleep_seconds=command.idle_sleep_seconds,
                        exit_when_idle=command.exit_when_idle,
                    ),
                )
            finally:
                close = getattr(generation, "close", None)
                if callable(close):
                    close()

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} retried={summary.retried} "
            f"persistence_errors={summary.persistence_errors} "
            f"unhandled_errors={summary.unhandled_errors} idle_polls={summary.idle_polls}",
        ]

    def status(self, command: StatusCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings) as repository:
            progress = repository.status_counts(region_code=command.region_code)
            queue = repository.queue_counts()
            per_task = repository.task_status_counts(region_code=command.region_code)
        return render_status_lines(
            progress=progress,
            queue=queue,
            per_task=per_task,
            region_code=command.region_code.upper() if command.region_code else None,
        )

    def errors(self, command: ErrorsCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings) as repository:
            entries = repository.list_recent_errors(limit=command.limit, task_id=command.task_id)
        return render_error_lines(entries)

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)
        return render_task_lines(tasks)

    def reset_tasks(self, command: ResetTasksCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        statuses = tuple(
            status
            for status in (_parse_status(value) for value in command.statuses or ("failed",))
            if status is not None
        )
        with _repository(settings) as repository:
            reset = repository.reset_tasks(
                statuses=statuses,
                region_code=command.region_code,
                task_id=command.task_id,
            )
        return [
            f"Reset to pending: {reset} "
            f"(statuses={','.join(status.value for status in statuses)})",
        ]

    def recover_stale(self, command: RecoverStaleCommand) -> list[str]:
        settings = Settings.from_env(database_url=command.database_url)
        with _repository(settings) as repository:
            recovered = repository.recover_stale_running(
                stale_after=timedelta(seconds=command.older_than_seconds),
            )
        return [f"Recovered stale running instances: {recovered}"]

    def _preview_worker(self, *, settings: Settings, command: WorkerCommand) -> list[str]:
        limit = command.max_items or 10
        with _repository(settings) as repository:
            pending = repository.peek_pending(limit=limit, region_code=command.region_code)
        lines = [f"Dry run: next {len(pending)} pending task instances (nothing claimed)"]
        for task in pending:
            lines.append(
                f"  #{task.id} entity={task.entity_id} region={task.region_id} "
                f"task={task.task_id} priority={task.priority}",
            )
        return lines


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _openai_service(settings: Settings) -> GenerationService:
    generation = settings.generation
    return OpenAiChatService(
        OpenAiChatSettings(
            api_key=generation.api_key or "",
            model=generation.model,
            base_url=generation.base_url,
            timeout_seconds=generation.timeout_seconds,
            temperature=generation.temperature,
            top_p=generation.top_p,
            max_tokens=generation.max_tokens,
        ),
    )


@contextmanager
def _repository(settings: Settings) -> Iterator[QueueRepository]:
    with open_engine(
        database_url=settings.database.url,
        busy_timeout_ms=settings.database.busy_timeout_ms,
    ) as engine:
        repository = QueueRepository(engine)
        repository.init_schema()
        yield repository
