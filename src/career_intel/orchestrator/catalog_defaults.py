"""Built-in starter catalog: run policies and career-analysis task templates."""

from __future__ import annotations

from typing import Any

from career_intel.orchestrator.models import RunPolicy, TaskDefinition
from career_intel.orchestrator.validator import DEFAULT_REQUIRED_FIELDS

DEFAULT_VERSION = "1.0.0"

TEMPLATE_HEADER = (
    "You are an expert labor-market analyst and career educator. "
    "OUTPUT STRICTLY VALID JSON ONLY.\n"
    "Audience: neutral and inclusive; when audience-specific, follow exactly the query brief.\n"
    'Job: "{{canonical_title}}" (SOC: {{soc_code}}) | Region: {{region_code}} | '
    "Date: {{today}} | Currency: {{currency}}\n"
    "Return JSON with keys: query_id, job, data, provenance. "
    "Do not include commentary, markdown, or code fences."
)
TEMPLATE_FOOTER = "Return ONLY the JSON object."

DEFAULT_RUN_POLICIES: tuple[RunPolicy, ...] = (
    RunPolicy(
        id="default.lowtemp",
        temperature=0.25,
        top_p=0.9,
        max_tokens=3500,
        notes="Deterministic-leaning outputs for structured JSON across all career queries.",
    ),
    RunPolicy(
        id="econ.lowtemp",
        temperature=0.2,
        top_p=0.9,
        max_tokens=3500,
        notes="Economics-related queries. Low temperature; discourage speculation.",
    ),
    RunPolicy(
        id="creative.moderate",
        temperature=0.35,
        top_p=0.9,
        max_tokens=3500,
        notes="Slightly more freedom for pathways and action plans, still JSON-structured.",
    ),
)

_POLICIES_BY_ID = {policy.id: policy for policy in DEFAULT_RUN_POLICIES}

_JOB_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "canonical_title": {"type": "string"},
        "soc_code": {"type": "string"},
        "region_code": {"type": "string"},
    },
    "required": ["canonical_title", "soc_code", "region_code"],
}

_PROVENANCE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "methodology": {"type": "string"},
        "sources": {"type": "array", "items": {"type": "string"}},
        "assumptions": {"type": "array", "items": {"type": "string"}},
        "confidence": {"type": "number"},
    },
    "required": ["methodology", "sources", "assumptions"],
}


def build_template(body: str) -> str:
    """Wrap a task body with the shared header and footer."""

    return f"{TEMPLATE_HEADER}\n\nTASK:\n{body.strip()}\n\n{TEMPLATE_FOOTER}"


def top_level_schema(data: dict[str, Any]) -> dict[str, Any]:
    """Output schema with the common envelope around a task-specific `data` object."""

    return {
        "type": "object",
        "properties": {
            "query_id": {"type": "string"},
            "job": _JOB_SCHEMA,
            "data": data,
            "provenance": _PROVENANCE_SCHEMA,
        },
        "required": list(DEFAULT_REQUIRED_FIELDS),
    }


def _strings() -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}}


def _definition(
    task_id: str,
    *,
    display_name: str,
    purpose: str,
    body: str,
    data_schema: dict[str, Any],
    policy_id: str = "default.lowtemp",
) -> TaskDefinition:
    return TaskDefinition(
        id=task_id,
        display_name=display_name,
        input_template=build_template(body),
        output_schema=top_level_schema(data_schema),
        required_fields=DEFAULT_REQUIRED_FIELDS,
        run_policy=_POLICIES_BY_ID[policy_id],
        purpose=purpose,
        version=DEFAULT_VERSION,
    )


DEFAULT_TASK_DEFINITIONS: tuple[TaskDefinition, ...] = (
    _definition(
        "job-taxonomy",
        display_name="Job taxonomy",
        purpose="Standardize title, aliases, classification, brief description, hazard estimate.",
        body=(
            "Produce canonical title, up to 10 aliases, SOC and ISCO if known, category path "
            "(broad to narrow, 2-4 elements), brief description (<= 60 words), and "
            "hazard_level 0-3 (0 none, 3 high) for the job. Prefer O*NET for SOC mapping."
        ),
        data_schema={
            "type": "object",
            "properties": {
                "canonical_title": {"type": "string"},
                "aliases": _strings(),
                "category_path": _strings(),
                "brief_description": {"type": "string"},
                "hazard_level": {"type": "integer", "minimum": 0, "maximum": 3},
            },
            "required": ["canonical_title", "category_path", "brief_description", "hazard_level"],
        },
    ),
    _definition(
        "job-keywords",
        display_name="Job keywords",
        purpose="Extract skills, tools, tasks, contexts, software, certifications and industries.",
        body=(
            "List multi-bucket keywords (strings). Minimums: skills(5+), tools(4+), tasks(4+), "
            "contexts(3+), software(3+), certifications(2+), industries(3+). Include value_tags "
            'like "debt_free", "early_income", "service", "work_life_balance".'
        ),
        data_schema={
            "type": "object",
            "properties": {
                name: _strings()
                for name in (
                    "skills",
                    "tools",
                    "tasks",
                    "contexts",
                    "software",
                    "certifications",
                    "industries",
                    "value_tags",
                )
            },
            "required": ["skills", "tools", "tasks"],
        },
    ),
    _definition(
        "task-analysis",
        display_name="Task analysis",
        purpose="Score 2-4 core tasks across seven 0.0-1.0 dimensions.",
        body=(
            "Pick 2-4 essential tasks and score each: manual, tool_use, paperwork, pattern_rec, "
            "creative, empathy_ethics, compliance (0.0-1.0)."
        ),
        data_schema={
            "type": "object",
            "properties": {"tasks": {"type": "array", "minItems": 2, "maxItems": 4}},
            "required": ["tasks"],
        },
    ),
    _definition(
        "ai-resistance",
        display_name="Automation resistance",
        purpose="Forecast automation resistance at 0-15 year horizons with confidence bounds.",
        body=(
            "For horizons [0,1,2,3,4,5,6,10,15], provide resistance_pct (0-100) and "
            "ci_low/ci_high."
        ),
        data_schema={
            "type": "object",
            "properties": {"forecasts": {"type": "array", "minItems": 9}},
            "required": ["forecasts"],
        },
    ),
    _definition(
        "growth-projection",
        display_name="Growth projection",
        purpose="Growth status, projected growth percentage, confidence and entry window.",
        body=(
            "Assess growth status (growing, flat or declining), projected_growth_pct (can be "
            'negative), confidence (0.0-1.0), and entry_window (e.g., "2031-2038").'
        ),
        data_schema={
            "type": "object",
            "properties": {
                "status": {"type": "string", "enum": ["growing", "flat", "declining"]},
                "projected_growth_pct": {"type": "number"},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                "entry_window": {"type": "string"},
            },
            "required": ["status", "projected_growth_pct", "confidence", "entry_window"],
        },
        policy_id="econ.lowtemp",
    ),
    _definition(
        "economics-analysis",
        display_name="Economics analysis",
        purpose="Median income, income progression and projections, tuition and startup costs.",
        body=(
            "Provide incomes: current_median_income, progression (y1, y3, y5, y10), "
            "projections (y5, y10, y15), tuition_cost (if applicable), "
            "startup_cost_low/high (trade path). Use {{currency}}."
        ),
        data_schema={
            "type": "object",
            "properties": {
                "current_median_income": {"type": "number"},
                "progression": {"type": "object"},
                "projections": {"type": "object"},
                "tuition_cost": {"type": "number"},
            },
            "required": ["current_median_income", "progression", "projections"],
        },
        policy_id="econ.lowtemp",
    ),
    _definition(
        "training-paths",
        display_name="Training paths",
        purpose="Routes into the job: apprenticeship, college, certificate, self-taught, military.",
        body=(
            "For each applicable pathway (apprenticeship, 2yr trade, 4yr degree, certificate, "
            "self-taught, military) give months_min, months_max, age_min, description and "
            "cost_low/high."
        ),
        data_schema={
            "type": "object",
            "properties": {"paths": {"type": "array"}},
            "required": ["paths"],
        },
        policy_id="creative.moderate",
    ),
    _definition(
        "start-now",
        display_name="Start now",
        purpose="Ordered, age-specific first steps for ages 12 to 18.",
        body="Provide age-specific, ordered steps for age bands: 12-13, 14, 15-16, 17-18.",
        data_schema={
            "type": "object",
            "properties": {"steps": {"type": "array", "minItems": 4}},
            "required": ["steps"],
        },
        policy_id="creative.moderate",
    ),
)
