"""OpenAI-compatible chat completions client built on httpx."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from career_intel.orchestrator.backend.base import GenerationRequest, GenerationResponse
from career_intel.orchestrator.errors import TransientUpstreamError
from career_intel.orchestrator.failure_classifier import classify_upstream_failure
from career_intel.orchestrator.models import TokenUsage, UpstreamReason

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_SYSTEM_PROMPT = (
    "You are a career intelligence analyst. Return only valid JSON without markdown formatting."
)
DEFAULT_USER_AGENT = "career-intel/1.0"


@dataclass(slots=True)
class OpenAiChatSettings:
    """Connection and default sampling parameters."""

    api_key: str
    model: str = "gpt-4o"
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = 60.0
    temperature: float = 0.3
    top_p: float = 0.9
    max_tokens: int = 4096
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    json_response_format: bool = True


class OpenAiChatService:
    """Stateless request/response generation call against `/chat/completions`.

    Run policy values override the configured sampling defaults field by field;
    the service does not interpret them beyond passing them through.
    """

    def __init__(
        self,
        settings: OpenAiChatSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._client = httpx.Client(
            base_url=settings.base_url.rstrip("/"),
            timeout=httpx.Timeout(settings.timeout_seconds, connect=10.0),
            headers={
                "Authorization": f"Bearer {settings.api_key}",
                "User-Agent": DEFAULT_USER_AGENT,
            },
            transport=transport,
        )

    @property
    def model(self) -> str:
        return self.settings.model

    def complete(self, request: GenerationRequest) -> GenerationResponse:
        body = self._build_body(request)
        logger.debug(
            "Calling chat completions (model=%s temperature=%s max_tokens=%s)",
            body["model"],
            body["temperature"],
            body["max_tokens"],
        )
        try:
            response = self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException as error:
            raise classify_upstream_failure(
                status_code=None,
                message=str(error),
                timed_out=True,
            ).to_error(f"Generation request timed out: {error}") from error
        except httpx.HTTPError as error:
            raise classify_upstream_failure(
                status_code=None,
                message=str(error),
            ).to_error(f"Generation transport error: {error}") from error

        if not response.is_success:
            error_code, message = _error_details(response)
            classification = classify_upstream_failure(
                status_code=response.status_code,
                error_code=error_code,
                message=message,
            )
            raise classification.to_error(
                f"Generation service returned HTTP {response.status_code}: {message}",
                status_code=response.status_code,
            )

        return _parse_completion(response, fallback_model=body["model"])

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAiChatService:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _build_body(self, request: GenerationRequest) -> dict[str, Any]:
        policy = request.run_policy
        body: dict[str, Any] = {
            "model": self.settings.model,
            "messages": [
                {"role": "system", "content": self.settings.system_prompt},
                {"role": "user", "content": request.rendered_input},
            ],
            "temperature": _pick(policy and policy.temperature, self.settings.temperature),
            "top_p": _pick(policy and policy.top_p, self.settings.top_p),
            "max_tokens": _pick(policy and policy.max_tokens, self.settings.max_tokens),
        }
        if policy is not None and policy.stop:
            body["stop"] = list(policy.stop)
        if self.settings.json_response_format:
            body["response_format"] = {"type": "json_object"}
        return body


def _pick(value: Any, default: Any) -> Any:
    return default if value is None else value


def _error_details(response: httpx.Response) -> tuple[str | None, str]:
    try:
        payload = response.json()
    except (json.JSONDecodeError, ValueError):
        return None, response.text[:500]
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return None, response.text[:500]
    code = error.get("code") or error.get("type")
    message = error.get("message") or response.text[:500]
    return (str(code) if code is not None else None), str(message)


def _parse_completion(response: httpx.Response, *, fallback_model: str) -> GenerationResponse:
    try:
        payload = response.json()
        choice = payload["choices"][0]
        content = choice["message"]["content"] or ""
    except (json.JSONDecodeError, ValueError, KeyError, IndexError, TypeError) as error:
        raise TransientUpstreamError(
            f"Malformed completion envelope: {error}",
            reason=UpstreamReason.SERVER_FAULT,
            status_code=response.status_code,
            reason_code="upstream_malformed_envelope",
        ) from error
    if not isinstance(content, str):
        raise TransientUpstreamError(
            f"Malformed completion envelope: message content is {type(content).__name__}",
            reason=UpstreamReason.SERVER_FAULT,
            status_code=response.status_code,
            reason_code="upstream_malformed_envelope",
        )

    usage_raw = payload.get("usage")
    usage = None
    if isinstance(usage_raw, dict):
        usage = TokenUsage(
            prompt_tokens=usage_raw.get("prompt_tokens"),
            completion_tokens=usage_raw.get("completion_tokens"),
            total_tokens=usage_raw.get("total_tokens"),
        )
    finish_reason = choice.get("finish_reason")
    logger.info(
        "Generation call succeeded (tokens=%s finish_reason=%s)",
        usage.total_tokens if usage is not None else "-",
        finish_reason,
    )
    return GenerationResponse(
        payload=content,
        usage=usage,
        model=str(payload.get("model") or fallback_model),
        finish_reason=finish_reason,
    )
