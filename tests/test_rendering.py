from __future__ import annotations

import allure

from career_intel.orchestrator.models import RenderContext
from career_intel.orchestrator.rendering import render_template, unresolved_placeholders

pytestmark = [
    allure.epic("Task Catalog"),
    allure.feature("Template Rendering"),
]


def test_render_replaces_known_placeholders_with_optional_spaces() -> None:
    rendered = render_template(
        'Job: "{{canonical_title}}" (SOC: {{ soc_code }}) | Region: {{region_code}}',
        {"canonical_title": "Electrician", "soc_code": "47-2111", "region_code": "US"},
    )

    assert rendered == 'Job: "Electrician" (SOC: 47-2111) | Region: US'


def test_unknown_placeholders_stay_verbatim() -> None:
    rendered = render_template("{{canonical_title}} in {{county}}", {"canonical_title": "Welder"})

    assert rendered == "Welder in {{county}}"
    assert unresolved_placeholders(rendered) == ["county"]


def test_render_context_variables() -> None:
    context = RenderContext(
        entity_id=1,
        canonical_title="Registered Nurse",
        soc_code=None,
        region_code="CA",
        currency="CAD",
        locale="en-CA",
    )

    variables = context.to_variables(today="2026-10-18", task_id="economics-analysis")

    assert variables == {
        "canonical_title": "Registered Nurse",
        "soc_code": "",
        "region_code": "CA",
        "currency": "CAD",
        "locale": "en-CA",
        "today": "2026-10-18",
        "task_id": "economics-analysis",
    }
    assert render_template("{{currency}}/{{today}}", variables) == "CAD/2026-10-18"
