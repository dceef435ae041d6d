from __future__ import annotations

import allure
import pytest

from career_intel.orchestrator.errors import FatalUpstreamError, TransientUpstreamError
from career_intel.orchestrator.failure_classifier import (
    UPSTREAM_FAILURE_CLASSIFIER_VERSION,
    classify_upstream_failure,
)
from career_intel.orchestrator.models import FailureClass, UpstreamReason

pytestmark = [
    allure.epic("Generation Service"),
    allure.feature("Failure Classification"),
]


def test_classifier_version_is_stable() -> None:
    assert UPSTREAM_FAILURE_CLASSIFIER_VERSION == 1


@pytest.mark.parametrize(
    ("status_code", "error_code", "message", "failure_class", "reason", "rule"),
    [
        (429, "rate_limit_exceeded", "Rate limit reached", FailureClass.TRANSIENT_UPSTREAM,
         UpstreamReason.RATE_LIMITED, "rate_limit_status"),
        (429, "insufficient_quota", "You exceeded your current quota",
         FailureClass.FATAL_UPSTREAM, UpstreamReason.QUOTA, "quota_error_code"),
        (429, None, "You exceeded your current quota, check billing",
         FailureClass.FATAL_UPSTREAM, UpstreamReason.QUOTA, "quota_pattern"),
        (500, None, "Internal error", FailureClass.TRANSIENT_UPSTREAM,
         UpstreamReason.SERVER_FAULT, "server_fault_status"),
        (503, None, "overloaded", FailureClass.TRANSIENT_UPSTREAM,
         UpstreamReason.SERVER_FAULT, "server_fault_status"),
        (408, None, "", FailureClass.TRANSIENT_UPSTREAM, UpstreamReason.TIMEOUT, "timeout"),
        (401, "invalid_api_key", "Incorrect API key provided", FailureClass.FATAL_UPSTREAM,
         UpstreamReason.AUTH, "auth_status"),
        (403, None, "Forbidden", FailureClass.FATAL_UPSTREAM, UpstreamReason.AUTH,
         "auth_status"),
        (400, "invalid_request_error", "max_tokens is too large",
         FailureClass.FATAL_UPSTREAM, UpstreamReason.CLIENT_FAULT, "client_fault_status"),
        (None, None, "Connection refused", FailureClass.TRANSIENT_UPSTREAM,
         UpstreamReason.CONNECTION, "transient_pattern"),
        (None, None, "name resolution failed", FailureClass.TRANSIENT_UPSTREAM,
         UpstreamReason.CONNECTION, "no_response"),
    ],
)
def test_classification_table(  # noqa: PLR0913
    status_code: int | None,
    error_code: str | None,
    message: str,
    failure_class: FailureClass,
    reason: UpstreamReason,
    rule: str,
) -> None:
    classified = classify_upstream_failure(
        status_code=status_code,
        error_code=error_code,
        message=message,
    )

    assert classified.failure_class == failure_class
    assert classified.reason == reason
    assert classified.matched_rule == rule
    assert classified.reason_code == f"upstream_{reason.value}"


def test_timeout_flag_wins_over_status() -> None:
    classified = classify_upstream_failure(status_code=None, message="read", timed_out=True)

    assert classified.retryable is True
    assert classified.reason == UpstreamReason.TIMEOUT


def test_to_error_builds_matching_exception_type() -> None:
    transient = classify_upstream_failure(status_code=502).to_error("bad gateway", status_code=502)
    fatal = classify_upstream_failure(status_code=401).to_error("denied", status_code=401)

    assert isinstance(transient, TransientUpstreamError)
    assert transient.status_code == 502
    assert transient.reason_code == "upstream_server_fault"
    assert isinstance(fatal, FatalUpstreamError)
    assert fatal.failure_class == FailureClass.FATAL_UPSTREAM
    assert fatal.reason == UpstreamReason.AUTH
