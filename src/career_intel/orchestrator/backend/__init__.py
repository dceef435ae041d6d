"""Generation service backends."""

from career_intel.orchestrator.backend.base import (
    GenerationRequest,
    GenerationResponse,
    GenerationService,
)
from career_intel.orchestrator.backend.openai_chat import OpenAiChatService

__all__ = [
    "GenerationRequest",
    "GenerationResponse",
    "GenerationService",
    "OpenAiChatService",
]
