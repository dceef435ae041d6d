"""Task catalog: task definitions and run policies stored in the database."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from career_intel.orchestrator.catalog_defaults import (
    DEFAULT_RUN_POLICIES,
    DEFAULT_TASK_DEFINITIONS,
)
from career_intel.orchestrator.errors import UnknownTaskDefinitionError
from career_intel.orchestrator.models import RunPolicy, TaskDefinition
from career_intel.orchestrator.validator import DEFAULT_REQUIRED_FIELDS
from career_intel.storage.common import utc_now
from career_intel.storage.sqlmodel_models import RunPolicyRow, TaskDefinitionRow

logger = logging.getLogger(__name__)


def required_fields_for(output_schema: dict[str, Any] | None) -> tuple[str, ...]:
    """Top-level `required` list of a schema, or the common envelope fields."""

    if isinstance(output_schema, dict):
        required = output_schema.get("required")
        if isinstance(required, list) and required:
            return tuple(str(name) for name in required)
    return DEFAULT_REQUIRED_FIELDS


class TaskCatalog:
    """Read and publish task definitions; republishing an id overwrites it."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_definition(self, task_id: str) -> TaskDefinition:
        with Session(self.engine) as session:
            row = session.get(TaskDefinitionRow, task_id)
            if row is None:
                raise UnknownTaskDefinitionError(task_id)
            policy_row = (
                session.get(RunPolicyRow, row.run_policy_id)
                if row.run_policy_id is not None
                else None
            )
            return _to_definition(row, policy_row)

    def list_definitions(self) -> list[TaskDefinition]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskDefinitionRow).order_by(col(TaskDefinitionRow.id)),
            ).all()
            policies = {policy.id: policy for policy in session.exec(select(RunPolicyRow)).all()}
            return [
                _to_definition(
                    row,
                    policies.get(row.run_policy_id) if row.run_policy_id is not None else None,
                )
                for row in rows
            ]

    def list_policies(self) -> list[RunPolicy]:
        with Session(self.engine) as session:
            rows = session.exec(select(RunPolicyRow).order_by(col(RunPolicyRow.id))).all()
            return [_to_policy(row) for row in rows]

    def upsert_policy(self, policy: RunPolicy) -> None:
        with Session(self.engine) as session:
            session.merge(_policy_row(policy))
            session.commit()
        logger.info("Upserted run policy %s", policy.id)

    def upsert_definition(self, definition: TaskDefinition) -> None:
        """Publish a definition together with its run policy, if it has one."""

        required = definition.required_fields or required_fields_for(definition.output_schema)
        with Session(self.engine) as session:
            if definition.run_policy is not None:
                session.merge(_policy_row(definition.run_policy))
            session.merge(
                TaskDefinitionRow(
                    id=definition.id,
                    display_name=definition.display_name,
                    purpose=definition.purpose,
                    template=definition.input_template,
                    output_schema_json=(
                        json.dumps(definition.output_schema, sort_keys=True)
                        if definition.output_schema is not None
                        else None
                    ),
                    required_fields_json=json.dumps(list(required)),
                    run_policy_id=(
                        definition.run_policy.id if definition.run_policy is not None else None
                    ),
                    version=definition.version,
                    updated_at=utc_now(),
                ),
            )
            session.commit()
        logger.info("Upserted task definition %s (version %s)", definition.id, definition.version)

    def install_defaults(
        self,
        *,
        policies: Sequence[RunPolicy] = DEFAULT_RUN_POLICIES,
        definitions: Sequence[TaskDefinition] = DEFAULT_TASK_DEFINITIONS,
    ) -> tuple[int, int]:
        """Install the starter catalog; returns (policies, definitions) written."""

        for policy in policies:
            self.upsert_policy(policy)
        for definition in definitions:
            self.upsert_definition(definition)
        return len(policies), len(definitions)


def _policy_row(policy: RunPolicy) -> RunPolicyRow:
    return RunPolicyRow(
        id=policy.id,
        temperature=policy.temperature,
        top_p=policy.top_p,
        max_tokens=policy.max_tokens,
        stop_json=json.dumps(list(policy.stop)) if policy.stop else None,
        notes=policy.notes,
    )


def _to_policy(row: RunPolicyRow) -> RunPolicy:
    stop = json.loads(row.stop_json) if row.stop_json else None
    return RunPolicy(
        id=row.id,
        temperature=row.temperature,
        top_p=row.top_p,
        max_tokens=row.max_tokens,
        stop=tuple(stop) if stop else None,
        notes=row.notes,
    )


def _to_definition(row: TaskDefinitionRow, policy_row: RunPolicyRow | None) -> TaskDefinition:
    output_schema = json.loads(row.output_schema_json) if row.output_schema_json else None
    required = json.loads(row.required_fields_json) if row.required_fields_json else []
    return TaskDefinition(
        id=row.id,
        display_name=row.display_name,
        input_template=row.template,
        output_schema=output_schema,
        required_fields=tuple(required) or required_fields_for(output_schema),
        run_policy=_to_policy(policy_row) if policy_row is not None else None,
        purpose=row.purpose,
        version=row.version,
    )
