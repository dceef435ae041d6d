"""Generation service interface for task execution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from career_intel.orchestrator.models import RunPolicy, TokenUsage


@dataclass(slots=True)
class GenerationRequest:
    """Inputs required for one generation call."""

    rendered_input: str
    run_policy: RunPolicy | None = None


@dataclass(slots=True)
class GenerationResponse:
    """Raw payload returned by the generation service."""

    payload: str
    usage: TokenUsage | None = None
    model: str | None = None
    finish_reason: str | None = None


class GenerationService(Protocol):
    """Protocol implemented by generation backends."""

    def complete(self, request: GenerationRequest) -> GenerationResponse:
        """Run one generation call; raise `UpstreamError` subclasses on failure."""
