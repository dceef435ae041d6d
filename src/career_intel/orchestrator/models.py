"""Domain models for the task queue and worker coordination engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task instance lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy and the error log."""

    TRANSIENT_UPSTREAM = "transient_upstream"
    FATAL_UPSTREAM = "fatal_upstream"
    VALIDATION_FAILURE = "validation_failure"
    PERSISTENCE_FAILURE = "persistence_failure"
    INPUT_ERROR = "input_error"


class UpstreamReason(str, Enum):
    """Finer-grained reason behind an upstream failure class."""

    RATE_LIMITED = "rate_limited"
    SERVER_FAULT = "server_fault"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    CLIENT_FAULT = "client_fault"
    AUTH = "auth"
    QUOTA = "quota"


TERMINAL_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.FAILED})


@dataclass(slots=True)
class RunPolicy:
    """Opaque generation parameters passed through to the generation service."""

    id: str
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    stop: tuple[str, ...] | None = None
    notes: str | None = None


@dataclass(slots=True)
class TaskDefinition:
    """One catalog entry: template plus expected output contract."""

    id: str
    display_name: str
    input_template: str
    output_schema: dict[str, Any] | None
    required_fields: tuple[str, ...]
    run_policy: RunPolicy | None
    purpose: str | None = None
    version: str = "1.0.0"


@dataclass(slots=True)
class TaskInstanceView:
    """Readable work ledger row."""

    id: int
    entity_id: int
    region_id: int
    task_id: str
    status: TaskStatus
    attempts: int
    priority: int
    last_error: str | None
    worker_id: str | None
    claimed_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ProgressRecordView:
    """Readable progress ledger row."""

    entity_id: int
    region_id: int
    task_id: str
    status: TaskStatus
    last_error: str | None
    updated_at: datetime


@dataclass(slots=True)
class ResultPayloadView:
    """Stored validated output for one task instance key."""

    entity_id: int
    region_id: int
    task_id: str
    data: dict[str, Any]
    model: str | None
    total_tokens: int | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ErrorEntryView:
    """Append-only audit record of one terminal failure."""

    id: int
    entity_id: int
    region_id: int
    task_id: str
    failure_class: str
    model: str | None
    error: str
    occurred_at: datetime
    prompt: str | None = None


@dataclass(slots=True)
class RenderContext:
    """Entity and region attributes available to template placeholders."""

    entity_id: int
    canonical_title: str
    soc_code: str | None
    region_code: str
    currency: str
    locale: str

    def to_variables(self, *, today: str, task_id: str) -> dict[str, str]:
        """Flatten into placeholder variables for template rendering."""

        return {
            "canonical_title": self.canonical_title,
            "soc_code": self.soc_code or "",
            "region_code": self.region_code,
            "currency": self.currency,
            "locale": self.locale,
            "today": today,
            "task_id": task_id,
        }


@dataclass(slots=True)
class EntityWrite:
    """Payload for registering one entity ahead of enqueue."""

    canonical_title: str
    soc_code: str | None = None
    short_description: str | None = None
    onet_code: str | None = None


@dataclass(slots=True)
class TokenUsage:
    """Token accounting reported by the generation service."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(slots=True)
class StatusCounts:
    """Aggregate status counts for reporting."""

    pending: int = 0
    running: int = 0
    done: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.running + self.done + self.failed

    @property
    def completion_rate(self) -> float:
        """Share of instances that reached `done`."""

        if self.total == 0:
            return 0.0
        return self.done / self.total

    def add(self, status: TaskStatus, count: int) -> None:
        setattr(self, status.value, getattr(self, status.value) + count)


@dataclass(slots=True)
class TaskStatusCounts:
    """Status counts grouped by task definition."""

    task_id: str
    display_name: str
    counts: StatusCounts = field(default_factory=StatusCounts)
