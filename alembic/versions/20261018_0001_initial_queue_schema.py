"""Initial work ledger, progress ledger, results store and error log schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "entities",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("canonical_title", sa.String(), nullable=False),
        sa.Column("short_description", sa.Text(), nullable=True),
        sa.Column("soc_code", sa.String(), nullable=True),
        sa.Column("onet_code", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("soc_code"),
    )
    op.create_index("ix_entities_canonical_title", "entities", ["canonical_title"])

    regions = op.create_table(
        "regions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("currency", sa.String(), nullable=False, server_default="USD"),
        sa.Column("locale", sa.String(), nullable=False, server_default="en-US"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )

    op.create_table(
        "run_policies",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("top_p", sa.Float(), nullable=True),
        sa.Column("max_tokens", sa.Integer(), nullable=True),
        sa.Column("stop_json", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "task_definitions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=True),
        sa.Column("template", sa.Text(), nullable=False),
        sa.Column("output_schema_json", sa.Text(), nullable=True),
        sa.Column("required_fields_json", sa.Text(), nullable=False),
        sa.Column("run_policy_id", sa.String(), nullable=True),
        sa.Column("version", sa.String(), nullable=False, server_default="1.0.0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["run_policy_id"], ["run_policies.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "task_instances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["entity_id"], ["entities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["region_id"], ["regions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["task_id"], ["task_definitions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "entity_id",
            "region_id",
            "task_id",
            name="uq_task_instances_entity_region_task",
        ),
    )
    op.create_index("ix_task_instances_entity_id", "task_instances", ["entity_id"])
    op.create_index("ix_task_instances_task_id", "task_instances", ["task_id"])
    op.create_index("ix_task_instances_status", "task_instances", ["status"])
    op.create_index(
        "idx_task_instances_queue",
        "task_instances",
        ["status", "priority", "id"],
    )

    op.create_table(
        "progress_records",
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["entity_id"], ["entities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["region_id"], ["regions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["task_id"], ["task_definitions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("entity_id", "region_id", "task_id", name="pk_progress_records"),
    )
    op.create_index("idx_progress_records_status", "progress_records", ["status"])

    op.create_table(
        "result_payloads",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("completion_tokens", sa.Integer(), nullable=True),
        sa.Column("total_tokens", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["entity_id"], ["entities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["region_id"], ["regions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["task_id"], ["task_definitions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "entity_id",
            "region_id",
            "task_id",
            name="uq_result_payloads_entity_region_task",
        ),
    )
    op.create_index("ix_result_payloads_task_id", "result_payloads", ["task_id"])

    op.create_table(
        "error_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("failure_class", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("prompt", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_error_entries_failure_class", "error_entries", ["failure_class"])
    op.create_index("ix_error_entries_occurred_at", "error_entries", ["occurred_at"])
    op.create_index(
        "idx_error_entries_key_time",
        "error_entries",
        ["entity_id", "region_id", "task_id", "occurred_at"],
    )

    op.bulk_insert(
        regions,
        [{"code": "US", "name": "United States", "currency": "USD", "locale": "en-US"}],
    )


def downgrade() -> None:
    op.drop_index("idx_error_entries_key_time", table_name="error_entries")
    op.drop_index("ix_error_entries_occurred_at", table_name="error_entries")
    op.drop_index("ix_error_entries_failure_class", table_name="error_entries")
    op.drop_table("error_entries")
    op.drop_index("ix_result_payloads_task_id", table_name="result_payloads")
    op.drop_table("result_payloads")
    op.drop_index("idx_progress_records_status", table_name="progress_records")
    op.drop_table("progress_records")
    op.drop_index("idx_task_instances_queue", table_name="task_instances")
    op.drop_index("ix_task_instances_status", table_name="task_instances")
    op.drop_index("ix_task_instances_task_id", table_name="task_instances")
    op.drop_index("ix_task_instances_entity_id", table_name="task_instances")
    op.drop_table("task_instances")
    op.drop_table("task_definitions")
    op.drop_table("run_policies")
    op.drop_table("regions")
    op.drop_index("ix_entities_canonical_title", table_name="entities")
    op.drop_table("entities")
