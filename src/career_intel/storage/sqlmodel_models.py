"""SQLModel ORM tables for the work ledger, progress ledger and results store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel

DEFAULT_REGION_CODE = "US"
DEFAULT_PRIORITY = 100


class Entity(SQLModel, table=True):
    __tablename__ = "entities"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    canonical_title: str = Field(index=True)
    short_description: str | None = Field(default=None, sa_column=Column(Text))
    soc_code: str | None = Field(
        default=None,
        sa_column=Column(String, unique=True, nullable=True),
    )
    onet_code: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Region(SQLModel, table=True):
    __tablename__ = "regions"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String, unique=True, nullable=False))
    name: str
    currency: str = Field(default="USD")
    locale: str = Field(default="en-US")


class RunPolicyRow(SQLModel, table=True):
    __tablename__ = "run_policies"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    stop_json: str | None = Field(default=None, sa_column=Column(Text))
    notes: str | None = Field(default=None, sa_column=Column(Text))


class TaskDefinitionRow(SQLModel, table=True):
    __tablename__ = "task_definitions"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    display_name: str
    purpose: str | None = Field(default=None, sa_column=Column(Text))
    template: str = Field(sa_column=Column(Text, nullable=False))
    output_schema_json: str | None = Field(default=None, sa_column=Column(Text))
    required_fields_json: str = Field(sa_column=Column(Text, nullable=False))
    run_policy_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("run_policies.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    version: str = Field(default="1.0.0")
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskInstanceRow(SQLModel, table=True):
    __tablename__ = "task_instances"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "entity_id",
            "region_id",
            "task_id",
            name="uq_task_instances_entity_region_task",
        ),
        Index("idx_task_instances_queue", "status", "priority", "id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    entity_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("entities.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    region_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("regions.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    task_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("task_definitions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    status: str = Field(index=True)
    attempts: int = Field(default=0)
    priority: int = Field(default=DEFAULT_PRIORITY)
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    worker_id: str | None = None
    claimed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ProgressRecordRow(SQLModel, table=True):
    __tablename__ = "progress_records"  # type: ignore[bad-override]
    __table_args__ = (
        PrimaryKeyConstraint("entity_id", "region_id", "task_id", name="pk_progress_records"),
        Index("idx_progress_records_status", "status"),
    )

    entity_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("entities.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    region_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("regions.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    task_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("task_definitions.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    status: str
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ResultPayloadRow(SQLModel, table=True):
    __tablename__ = "result_payloads"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "entity_id",
            "region_id",
            "task_id",
            name="uq_result_payloads_entity_region_task",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    entity_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("entities.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    region_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("regions.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    task_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("task_definitions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    model: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ErrorEntryRow(SQLModel, table=True):
    __tablename__ = "error_entries"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_error_entries_key_time", "entity_id", "region_id", "task_id", "occurred_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    entity_id: int
    region_id: int
    task_id: str
    failure_class: str = Field(index=True)
    model: str | None = None
    prompt: str | None = Field(default=None, sa_column=Column(Text))
    error: str = Field(sa_column=Column(Text, nullable=False))
    occurred_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
