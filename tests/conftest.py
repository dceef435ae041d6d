"""Shared test fixtures."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine

from career_intel.orchestrator.backend.base import GenerationRequest, GenerationResponse
from career_intel.orchestrator.catalog import TaskCatalog
from career_intel.orchestrator.models import EntityWrite, RunPolicy, TaskDefinition, TokenUsage
from career_intel.orchestrator.repository import QueueRepository
from career_intel.orchestrator.validator import DEFAULT_REQUIRED_FIELDS
from career_intel.storage.common import build_engine

TEST_POLICY = RunPolicy(id="test.lowtemp", temperature=0.1, top_p=0.8, max_tokens=500)


def valid_payload(task_id: str = "alpha", **data: object) -> str:
    return json.dumps(
        {
            "query_id": task_id,
            "job": {"canonical_title": "Electrician", "soc_code": "47-2111", "region_code": "US"},
            "data": data or {"summary": "ok"},
            "provenance": {"methodology": "test", "sources": [], "assumptions": []},
        },
    )


def make_definition(task_id: str, *, template: str | None = None) -> TaskDefinition:
    return TaskDefinition(
        id=task_id,
        display_name=task_id.title(),
        input_template=template
        or "Task {{task_id}} for {{canonical_title}} ({{soc_code}}) in {{region_code}}",
        output_schema=None,
        required_fields=DEFAULT_REQUIRED_FIELDS,
        run_policy=TEST_POLICY,
    )


class ScriptedGenerationService:
    """Generation service replaying scripted payloads or exceptions in order."""

    model = "scripted-model"

    def __init__(self, outcomes: Sequence[str | Exception] = (), *, default: str | None = None):
        self._outcomes = list(outcomes)
        self._default = default
        self._lock = threading.Lock()
        self.requests: list[GenerationRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def complete(self, request: GenerationRequest) -> GenerationResponse:
        with self._lock:
            self.requests.append(request)
            if self._outcomes:
                outcome = self._outcomes.pop(0)
            elif self._default is not None:
                outcome = self._default
            else:
                raise AssertionError("No scripted generation outcome left.")
        if isinstance(outcome, Exception):
            raise outcome
        return GenerationResponse(
            payload=outcome,
            usage=TokenUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
            model=self.model,
        )


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'career-intel.db'}"


@pytest.fixture()
def engine(database_url: str) -> Iterator[Engine]:
    engine = build_engine(database_url=database_url)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def repository(engine: Engine) -> QueueRepository:
    repository = QueueRepository(engine)
    repository.init_schema()
    return repository


@pytest.fixture()
def catalog(repository: QueueRepository) -> TaskCatalog:
    return TaskCatalog(repository.engine)


@pytest.fixture()
def seed_queue(
    repository: QueueRepository,
    catalog: TaskCatalog,
) -> Callable[..., list[int]]:
    """Publish definitions, register entities and enqueue the full grid."""

    def _seed(
        *,
        task_ids: Sequence[str] = ("alpha",),
        entities: int = 1,
        region_code: str = "US",
        priority: int = 100,
    ) -> list[int]:
        for task_id in task_ids:
            catalog.upsert_definition(make_definition(task_id))
        entity_ids = []
        for index in range(entities):
            entity_id = repository.add_entity(
                EntityWrite(canonical_title=f"Occupation {index}", soc_code=f"11-{index:04d}"),
            )
            repository.enqueue_entity(
                entity_id=entity_id,
                region_code=region_code,
                priority=priority,
            )
            entity_ids.append(entity_id)
        return entity_ids

    return _seed
