"""Operator-facing text renderers for queue status and the error log."""

from __future__ import annotations

from collections.abc import Sequence

from career_intel.orchestrator.models import (
    ErrorEntryView,
    StatusCounts,
    TaskDefinition,
    TaskInstanceView,
    TaskStatusCounts,
)

ERROR_PREVIEW_CHARS = 200


def render_status_lines(
    *,
    progress: StatusCounts,
    queue: StatusCounts,
    per_task: Sequence[TaskStatusCounts],
    region_code: str | None,
) -> list[str]:
    scope = region_code or "all regions"
    lines = [
        f"Progress ({scope}): total={progress.total} {_counts(progress)} "
        f"completion={progress.completion_rate:.1%}",
        f"Work ledger: total={queue.total} {_counts(queue)}",
    ]
    if progress.total != queue.total and region_code is None:
        lines.append(
            "Warning: progress ledger and work ledger totals differ "
            f"({progress.total} vs {queue.total}).",
        )
    if per_task:
        lines.append("By task:")
        for item in per_task:
            lines.append(
                f"  {item.task_id} ({item.display_name}): {_counts(item.counts)} "
                f"completion={item.counts.completion_rate:.1%}",
            )
    return lines


def render_error_lines(errors: Sequence[ErrorEntryView]) -> list[str]:
    lines = [f"Errors: {len(errors)}"]
    for entry in errors:
        lines.append(
            f"  {entry.occurred_at.isoformat()} entity={entry.entity_id} "
            f"region={entry.region_id} task={entry.task_id} class={entry.failure_class} "
            f"model={entry.model or '-'}",
        )
        lines.append(f"    {_preview(entry.error)}")
    return lines


def render_task_lines(tasks: Sequence[TaskInstanceView]) -> list[str]:
    lines = [f"Task instances: {len(tasks)}"]
    for task in tasks:
        lines.append(
            f"  #{task.id} entity={task.entity_id} region={task.region_id} task={task.task_id} "
            f"status={task.status.value} priority={task.priority} attempts={task.attempts} "
            f"worker={task.worker_id or '-'} updated_at={task.updated_at.isoformat()}",
        )
        if task.last_error:
            lines.append(f"    last_error: {_preview(task.last_error)}")
    return lines


def render_catalog_lines(definitions: Sequence[TaskDefinition]) -> list[str]:
    lines = [f"Task definitions: {len(definitions)}"]
    for definition in definitions:
        policy = definition.run_policy.id if definition.run_policy is not None else "-"
        lines.append(
            f"  {definition.id} v{definition.version} policy={policy} "
            f"required={','.join(definition.required_fields)}",
        )
    return lines


def _counts(counts: StatusCounts) -> str:
    return (
        f"pending={counts.pending} running={counts.running} "
        f"done={counts.done} failed={counts.failed}"
    )


def _preview(text: str) -> str:
    flat = " ".join(text.split())
    if len(flat) <= ERROR_PREVIEW_CHARS:
        return flat
    return flat[: ERROR_PREVIEW_CHARS - 3] + "..."
