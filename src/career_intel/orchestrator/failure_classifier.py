"""Deterministic upstream failure classification for retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from career_intel.orchestrator.errors import (
    FatalUpstreamError,
    TransientUpstreamError,
    UpstreamError,
)
from career_intel.orchestrator.models import FailureClass, UpstreamReason

UPSTREAM_FAILURE_CLASSIFIER_VERSION = 1

HTTP_TOO_MANY_REQUESTS = 429
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_REQUEST_TIMEOUT = 408
HTTP_CLIENT_ERROR_MIN = 400
HTTP_SERVER_ERROR_MIN = 500

_QUOTA_ERROR_CODES: frozenset[str] = frozenset(
    {"insufficient_quota", "billing_hard_limit_reached", "billing_not_active"},
)
_RATE_LIMIT_ERROR_CODES: frozenset[str] = frozenset({"rate_limit_exceeded"})

_QUOTA_PATTERNS: tuple[str, ...] = (
    "insufficient_quota",
    "exceeded your current quota",
    "billing",
    "payment required",
)
_AUTH_PATTERNS: tuple[str, ...] = (
    "invalid api key",
    "incorrect api key",
    "unauthorized",
    "forbidden",
    "permission denied",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "too many requests",
    "try again later",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "connection reset",
    "connection refused",
    "server disconnected",
    "bad gateway",
    "overloaded",
)


@dataclass(slots=True)
class UpstreamFailureClassification:
    """Normalized upstream failure classification result."""

    failure_class: FailureClass
    reason: UpstreamReason
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def retryable(self) -> bool:
        return self.failure_class == FailureClass.TRANSIENT_UPSTREAM

    def to_error(self, message: str, *, status_code: int | None = None) -> UpstreamError:
        """Build the exception type matching this classification."""

        error_type = TransientUpstreamError if self.retryable else FatalUpstreamError
        return error_type(
            message,
            reason=self.reason,
            status_code=status_code,
            reason_code=self.reason_code,
        )


def classify_upstream_failure(  # noqa: PLR0911
    *,
    status_code: int | None,
    error_code: str | None = None,
    message: str = "",
    timed_out: bool = False,
) -> UpstreamFailureClassification:
    """Classify one failed generation call into a deterministic retry class."""

    code = (error_code or "").strip().lower()
    haystack = f"{code}\n{message}".lower()

    if timed_out or status_code == HTTP_REQUEST_TIMEOUT:
        return _transient(UpstreamReason.TIMEOUT, matched_rule="timeout")

    if code in _QUOTA_ERROR_CODES:
        return _fatal(UpstreamReason.QUOTA, matched_rule="quota_error_code", pattern=code)

    if status_code == HTTP_TOO_MANY_REQUESTS or code in _RATE_LIMIT_ERROR_CODES:
        pattern = _first_match(haystack, _QUOTA_PATTERNS)
        if pattern is not None:
            return _fatal(UpstreamReason.QUOTA, matched_rule="quota_pattern", pattern=pattern)
        return _transient(UpstreamReason.RATE_LIMITED, matched_rule="rate_limit_status")

    if status_code is not None and status_code >= HTTP_SERVER_ERROR_MIN:
        return _transient(UpstreamReason.SERVER_FAULT, matched_rule="server_fault_status")

    if status_code in {HTTP_UNAUTHORIZED, HTTP_FORBIDDEN}:
        return _fatal(UpstreamReason.AUTH, matched_rule="auth_status")

    if status_code is not None and status_code >= HTTP_CLIENT_ERROR_MIN:
        return _fatal(UpstreamReason.CLIENT_FAULT, matched_rule="client_fault_status")

    pattern = _first_match(haystack, _QUOTA_PATTERNS)
    if pattern is not None:
        return _fatal(UpstreamReason.QUOTA, matched_rule="quota_pattern", pattern=pattern)

    pattern = _first_match(haystack, _AUTH_PATTERNS)
    if pattern is not None:
        return _fatal(UpstreamReason.AUTH, matched_rule="auth_pattern", pattern=pattern)

    pattern = _first_match(haystack, _RATE_LIMIT_PATTERNS)
    if pattern is not None:
        return _transient(
            UpstreamReason.RATE_LIMITED,
            matched_rule="rate_limit_pattern",
            pattern=pattern,
        )

    pattern = _first_match(haystack, _TRANSIENT_PATTERNS)
    if pattern is not None:
        return _transient(
            UpstreamReason.CONNECTION,
            matched_rule="transient_pattern",
            pattern=pattern,
        )

    if status_code is None:
        return _transient(UpstreamReason.CONNECTION, matched_rule="no_response")

    return _fatal(UpstreamReason.CLIENT_FAULT, matched_rule="fallback_non_retryable")


def _transient(
    reason: UpstreamReason,
    *,
    matched_rule: str,
    pattern: str | None = None,
) -> UpstreamFailureClassification:
    return UpstreamFailureClassification(
        failure_class=FailureClass.TRANSIENT_UPSTREAM,
        reason=reason,
        reason_code=f"upstream_{reason.value}",
        matched_rule=matched_rule,
        matched_pattern=pattern,
    )


def _fatal(
    reason: UpstreamReason,
    *,
    matched_rule: str,
    pattern: str | None = None,
) -> UpstreamFailureClassification:
    return UpstreamFailureClassification(
        failure_class=FailureClass.FATAL_UPSTREAM,
        reason=reason,
        reason_code=f"upstream_{reason.value}",
        matched_rule=matched_rule,
        matched_pattern=pattern,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
