from __future__ import annotations

import json
from collections.abc import Callable

import allure
import httpx
import pytest

from career_intel.orchestrator.backend import GenerationRequest, OpenAiChatService
from career_intel.orchestrator.backend.openai_chat import OpenAiChatSettings
from career_intel.orchestrator.errors import FatalUpstreamError, TransientUpstreamError
from career_intel.orchestrator.models import RunPolicy, UpstreamReason

pytestmark = [
    allure.epic("Generation Service"),
    allure.feature("OpenAI-compatible Client"),
]

Handler = Callable[[httpx.Request], httpx.Response]


def _completion(content: str, *, model: str = "gpt-4o-2024-08-06") -> dict:
    return {
        "id": "chatcmpl-1",
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            },
        ],
        "usage": {"prompt_tokens": 11, "completion_tokens": 22, "total_tokens": 33},
    }


def _service(handler, **overrides) -> OpenAiChatService:  # type: ignore[no-untyped-def]
    settings = OpenAiChatSettings(
        api_key="sk-test",
        base_url="https://llm.example.test/v1/",
        **overrides,
    )
    return OpenAiChatService(settings, transport=httpx.MockTransport(handler))


def _error_handler(status_code: int, code: str | None, message: str) -> Handler:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code,
            json={"error": {"message": message, "type": "error", "code": code}},
        )

    return _handler


def test_success_returns_payload_usage_and_model() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion('{"query_id": "x"}'))

    with _service(_handler) as service:
        response = service.complete(GenerationRequest(rendered_input="Describe electricians"))

    assert response.payload == '{"query_id": "x"}'
    assert response.model == "gpt-4o-2024-08-06"
    assert response.finish_reason == "stop"
    assert response.usage is not None
    assert response.usage.total_tokens == 33
    (request,) = seen
    assert str(request.url) == "https://llm.example.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["model"] == "gpt-4o"
    assert body["messages"][-1] == {"role": "user", "content": "Describe electricians"}
    assert body["temperature"] == 0.3
    assert body["top_p"] == 0.9
    assert body["max_tokens"] == 4096
    assert body["response_format"] == {"type": "json_object"}
    assert "stop" not in body


def test_run_policy_overrides_defaults_field_by_field() -> None:
    bodies: list[dict] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=_completion("{}"))

    policy = RunPolicy(id="econ.lowtemp", temperature=0.0, max_tokens=3500, stop=("###",))
    with _service(_handler) as service:
        service.complete(GenerationRequest(rendered_input="x", run_policy=policy))

    (body,) = bodies
    assert body["temperature"] == 0.0
    assert body["top_p"] == 0.9
    assert body["max_tokens"] == 3500
    assert body["stop"] == ["###"]


@pytest.mark.parametrize(
    ("status_code", "code", "message", "error_type", "reason"),
    [
        (429, "rate_limit_exceeded", "Rate limit reached", TransientUpstreamError,
         UpstreamReason.RATE_LIMITED),
        (429, "insufficient_quota", "You exceeded your current quota", FatalUpstreamError,
         UpstreamReason.QUOTA),
        (500, None, "The server had an error", TransientUpstreamError,
         UpstreamReason.SERVER_FAULT),
        (401, "invalid_api_key", "Incorrect API key provided", FatalUpstreamError,
         UpstreamReason.AUTH),
        (400, "context_length_exceeded", "Too long", FatalUpstreamError,
         UpstreamReason.CLIENT_FAULT),
    ],
)
def test_http_errors_are_classified(  # noqa: PLR0913
    status_code: int,
    code: str | None,
    message: str,
    error_type: type[Exception],
    reason: UpstreamReason,
) -> None:
    with _service(_error_handler(status_code, code, message)) as service:
        with pytest.raises(error_type) as error_info:
            service.complete(GenerationRequest(rendered_input="x"))

    assert error_info.value.status_code == status_code  # type: ignore[attr-defined]
    assert error_info.value.reason == reason  # type: ignore[attr-defined]
    assert message in str(error_info.value)


def test_timeout_is_transient() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    with _service(_handler) as service:
        with pytest.raises(TransientUpstreamError) as error_info:
            service.complete(GenerationRequest(rendered_input="x"))

    assert error_info.value.reason == UpstreamReason.TIMEOUT


def test_connection_error_is_transient() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _service(_handler) as service:
        with pytest.raises(TransientUpstreamError) as error_info:
            service.complete(GenerationRequest(rendered_input="x"))

    assert error_info.value.status_code is None


def test_malformed_envelope_is_transient() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    with _service(_handler) as service:
        with pytest.raises(TransientUpstreamError) as error_info:
            service.complete(GenerationRequest(rendered_input="x"))

    assert error_info.value.reason_code == "upstream_malformed_envelope"


@pytest.mark.parametrize(
    "content",
    [[{"type": "text", "text": "{}"}], 42, {"query_id": "x"}],
)
def test_non_text_message_content_is_malformed_envelope(content: object) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    with _service(_handler) as service:
        with pytest.raises(TransientUpstreamError) as error_info:
            service.complete(GenerationRequest(rendered_input="x"))

    assert error_info.value.reason_code == "upstream_malformed_envelope"
    assert "message content is" in str(error_info.value)


def test_non_json_error_body_is_still_classified() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    with _service(_handler) as service:
        with pytest.raises(TransientUpstreamError, match="HTTP 502"):
            service.complete(GenerationRequest(rendered_input="x"))


def test_json_response_format_can_be_disabled() -> None:
    bodies: list[dict] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=_completion("{}"))

    with _service(_handler, json_response_format=False, model="local-model") as service:
        response = service.complete(GenerationRequest(rendered_input="x"))

    assert "response_format" not in bodies[0]
    assert bodies[0]["model"] == "local-model"
    assert service.model == "local-model"
    assert response.model == "gpt-4o-2024-08-06"
