from __future__ import annotations

from dataclasses import replace

import allure
import pytest
from sqlalchemy import func
from sqlmodel import Session, select

from career_intel.orchestrator.catalog import TaskCatalog, required_fields_for
from career_intel.orchestrator.catalog_defaults import (
    DEFAULT_RUN_POLICIES,
    DEFAULT_TASK_DEFINITIONS,
    TEMPLATE_HEADER,
)
from career_intel.orchestrator.errors import UnknownTaskDefinitionError
from career_intel.orchestrator.models import FailureClass, RunPolicy
from career_intel.orchestrator.validator import DEFAULT_REQUIRED_FIELDS
from career_intel.storage.sqlmodel_models import RunPolicyRow, TaskDefinitionRow

from conftest import make_definition

pytestmark = [
    allure.epic("Task Catalog"),
    allure.feature("Definitions and Run Policies"),
]


def test_install_defaults_is_idempotent(catalog: TaskCatalog) -> None:
    first = catalog.install_defaults()
    second = catalog.install_defaults()

    assert first == second == (len(DEFAULT_RUN_POLICIES), len(DEFAULT_TASK_DEFINITIONS))
    with Session(catalog.engine) as session:
        assert session.exec(select(func.count()).select_from(TaskDefinitionRow)).one() == len(
            DEFAULT_TASK_DEFINITIONS,
        )
        assert session.exec(select(func.count()).select_from(RunPolicyRow)).one() == len(
            DEFAULT_RUN_POLICIES,
        )


def test_default_catalog_shape(catalog: TaskCatalog) -> None:
    catalog.install_defaults()

    definitions = {definition.id: definition for definition in catalog.list_definitions()}
    policies = {policy.id: policy for policy in catalog.list_policies()}

    assert set(policies) == {"default.lowtemp", "econ.lowtemp", "creative.moderate"}
    assert policies["default.lowtemp"].temperature == 0.25
    assert policies["default.lowtemp"].max_tokens == 3500
    assert policies["econ.lowtemp"].temperature == 0.2
    assert policies["creative.moderate"].temperature == 0.35
    assert "economics-analysis" in definitions
    for definition in definitions.values():
        assert definition.input_template.startswith(TEMPLATE_HEADER)
        assert definition.required_fields == DEFAULT_REQUIRED_FIELDS
        assert definition.run_policy is not None
    assert definitions["economics-analysis"].run_policy.id == "econ.lowtemp"


def test_upsert_definition_overwrites_in_place(catalog: TaskCatalog) -> None:
    catalog.upsert_definition(make_definition("alpha", template="v1 {{canonical_title}}"))
    catalog.upsert_definition(
        replace(
            make_definition("alpha", template="v2 {{canonical_title}}"),
            version="2.0.0",
            run_policy=RunPolicy(id="other", temperature=0.5, stop=("END",)),
        ),
    )

    definition = catalog.get_definition("alpha")

    assert definition.input_template == "v2 {{canonical_title}}"
    assert definition.version == "2.0.0"
    assert definition.run_policy is not None
    assert definition.run_policy.id == "other"
    assert definition.run_policy.stop == ("END",)
    assert [item.id for item in catalog.list_definitions()] == ["alpha"]


def test_unknown_definition_raises_input_error(catalog: TaskCatalog) -> None:
    with pytest.raises(UnknownTaskDefinitionError) as error_info:
        catalog.get_definition("missing")

    assert error_info.value.failure_class == FailureClass.INPUT_ERROR


def test_required_fields_follow_schema_then_envelope_default(catalog: TaskCatalog) -> None:
    schema = {"type": "object", "required": ["query_id", "data"]}
    catalog.upsert_definition(
        replace(make_definition("beta"), output_schema=schema, required_fields=()),
    )

    assert catalog.get_definition("beta").required_fields == ("query_id", "data")
    assert required_fields_for(None) == DEFAULT_REQUIRED_FIELDS
    assert required_fields_for({"type": "object"}) == DEFAULT_REQUIRED_FIELDS
