"""CLI entrypoint for career-intel."""

from collections.abc import Callable

import rich_click as click

from career_intel import __version__
from career_intel.config import Settings
from career_intel.log_config import configure_logging
from career_intel.orchestrator.controllers import (
    CareerIntelCliController,
    CatalogCommand,
    DbInitCommand,
    EntityAddCommand,
    EntityEnqueueCommand,
    ErrorsCommand,
    ListTasksCommand,
    RecoverStaleCommand,
    ResetTasksCommand,
    StatusCommand,
    WorkerCommand,
)
from career_intel.storage.sqlmodel_models import DEFAULT_PRIORITY, DEFAULT_REGION_CODE

click.rich_click.USE_MARKDOWN = True
CONTROLLER = CareerIntelCliController()

_STATUS_CHOICES = ["pending", "running", "done", "failed"]

database_url_option = click.option(
    "--database-url",
    default=None,
    help="Database URL (defaults to CAREER_INTEL_DATABASE_URL or DATABASE_URL).",
)


@click.group()
@click.version_option(version=__version__, prog_name="career-intel")
def career_intel() -> None:
    """Career intelligence task queue CLI."""

    settings = Settings.from_env()
    settings.validate_logging()
    configure_logging(settings.logging)


@career_intel.group()
def db() -> None:
    """Database commands."""


@db.command("init")
@database_url_option
def db_init(database_url: str | None) -> None:
    """Apply schema migrations up to head."""

    _emit(lambda: CONTROLLER.init_db(DbInitCommand(database_url=database_url)))


@career_intel.group()
def catalog() -> None:
    """Task catalog commands."""


@catalog.command("install")
@database_url_option
def catalog_install(database_url: str | None) -> None:
    """Install or refresh the built-in run policies and task definitions."""

    _emit(lambda: CONTROLLER.install_catalog(CatalogCommand(database_url=database_url)))


@catalog.command("list")
@database_url_option
def catalog_list(database_url: str | None) -> None:
    """List task definitions."""

    _emit(lambda: CONTROLLER.list_catalog(CatalogCommand(database_url=database_url)))


@career_intel.group()
def entities() -> None:
    """Entity commands."""


@entities.command("add")
@database_url_option
@click.option("--title", "canonical_title", required=True, help="Canonical occupation title.")
@click.option("--soc-code", default=None, help="SOC code; entities are unique by SOC code.")
@click.option("--description", "short_description", default=None, help="Short description.")
@click.option("--onet-code", default=None, help="O*NET-SOC code.")
@click.option(
    "--enqueue/--no-enqueue",
    default=False,
    show_default=True,
    help="Also enqueue every catalog task for the entity.",
)
@click.option("--region", "region_code", default=DEFAULT_REGION_CODE, show_default=True)
@click.option("--priority", type=int, default=DEFAULT_PRIORITY, show_default=True)
def entities_add(  # noqa: PLR0913
    database_url: str | None,
    canonical_title: str,
    soc_code: str | None,
    short_description: str | None,
    onet_code: str | None,
    enqueue: bool,
    region_code: str,
    priority: int,
) -> None:
    """Register an occupation entity."""

    _emit(
        lambda: CONTROLLER.add_entity(
            EntityAddCommand(
                database_url=database_url,
                canonical_title=canonical_title,
                soc_code=soc_code,
                short_description=short_description,
                onet_code=onet_code,
                enqueue=enqueue,
                region_code=region_code,
                priority=priority,
            ),
        ),
    )


@entities.command("enqueue")
@database_url_option
@click.option("--entity-id", type=int, required=True)
@click.option("--region", "region_code", default=DEFAULT_REGION_CODE, show_default=True)
@click.option("--priority", type=int, default=DEFAULT_PRIORITY, show_default=True)
@click.option(
    "--task-id",
    "task_ids",
    multiple=True,
    help="Restrict to these task definitions. Can be repeated.",
)
def entities_enqueue(
    database_url: str | None,
    entity_id: int,
    region_code: str,
    priority: int,
    task_ids: tuple[str, ...],
) -> None:
    """Create pending task instances for an entity (existing ones are kept)."""

    _emit(
        lambda: CONTROLLER.enqueue_entity(
            EntityEnqueueCommand(
                database_url=database_url,
                entity_id=entity_id,
                region_code=region_code,
                priority=priority,
                task_ids=task_ids,
            ),
        ),
    )


@career_intel.group()
def worker() -> None:
    """Worker commands."""


@worker.command("run")
@database_url_option
@click.option(
    "--max-items",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many instances; also stops as soon as the queue is empty.",
)
@click.option("--region", "region_code", default=None, help="Only claim instances in this region.")
@click.option(
    "--sleep",
    "idle_sleep_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds to wait between polls of an empty queue.",
)
@click.option(
    "--exit-when-idle/--keep-polling",
    default=False,
    show_default=True,
    help="Exit instead of polling when the queue is empty.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Show the next pending instances without claiming them.",
)
def worker_run(  # noqa: PLR0913
    database_url: str | None,
    max_items: int | None,
    region_code: str | None,
    idle_sleep_seconds: float | None,
    exit_when_idle: bool,
    dry_run: bool,
) -> None:
    """Claim and process task instances until stopped."""

    _emit(
        lambda: CONTROLLER.run_worker(
            WorkerCommand(
                database_url=database_url,
                max_items=max_items,
                region_code=region_code,
                idle_sleep_seconds=idle_sleep_seconds,
                exit_when_idle=exit_when_idle,
                dry_run=dry_run,
            ),
        ),
    )


@career_intel.command("status")
@database_url_option
@click.option("--region", "region_code", default=None, help="Limit counts to one region.")
def status(database_url: str | None, region_code: str | None) -> None:
    """Show progress counts overall and per task definition."""

    _emit(
        lambda: CONTROLLER.status(
            StatusCommand(database_url=database_url, region_code=region_code),
        ),
    )


@career_intel.command("errors")
@database_url_option
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
)
@click.option("--task-id", default=None, help="Only errors for this task definition.")
def errors(database_url: str | None, limit: int, task_id: str | None) -> None:
    """Show the most recent error log entries."""

    _emit(
        lambda: CONTROLLER.errors(
            ErrorsCommand(database_url=database_url, limit=limit, task_id=task_id),
        ),
    )


@career_intel.group()
def tasks() -> None:
    """Task instance commands."""


@tasks.command("list")
@database_url_option
@click.option(
    "--status",
    "status_value",
    type=click.Choice(_STATUS_CHOICES, case_sensitive=False),
    default=None,
)
@click.option("--limit", type=click.IntRange(min=1, max=1000), default=50, show_default=True)
def tasks_list(database_url: str | None, status_value: str | None, limit: int) -> None:
    """List recently updated task instances."""

    _emit(
        lambda: CONTROLLER.list_tasks(
            ListTasksCommand(database_url=database_url, status=status_value, limit=limit),
        ),
    )


@tasks.command("reset")
@database_url_option
@click.option(
    "--status",
    "statuses",
    type=click.Choice(["running", "done", "failed"], case_sensitive=False),
    multiple=True,
    help="Statuses to reset (default: failed). Can be repeated.",
)
@click.option("--region", "region_code", default=None)
@click.option("--task-id", default=None)
def tasks_reset(
    database_url: str | None,
    statuses: tuple[str, ...],
    region_code: str | None,
    task_id: str | None,
) -> None:
    """Put matching task instances back to pending."""

    _emit(
        lambda: CONTROLLER.reset_tasks(
            ResetTasksCommand(
                database_url=database_url,
                statuses=statuses,
                region_code=region_code,
                task_id=task_id,
            ),
        ),
    )


@tasks.command("recover-stale")
@database_url_option
@click.option(
    "--older-than-seconds",
    type=click.IntRange(min=1),
    default=3600,
    show_default=True,
    help="Running instances claimed longer ago than this go back to pending.",
)
def tasks_recover_stale(database_url: str | None, older_than_seconds: int) -> None:
    """Recover running instances abandoned by a crashed worker."""

    _emit(
        lambda: CONTROLLER.recover_stale(
            RecoverStaleCommand(
                database_url=database_url,
                older_than_seconds=older_than_seconds,
            ),
        ),
    )


def _emit(produce: Callable[[], list[str]]) -> None:
    try:
        lines = produce()
    except (RuntimeError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    career_intel()
