"""Error taxonomy for the worker coordination engine."""

from __future__ import annotations

from career_intel.orchestrator.models import FailureClass, UpstreamReason


class UpstreamError(RuntimeError):
    """Generation service call failed with a classified reason."""

    failure_class = FailureClass.FATAL_UPSTREAM

    def __init__(
        self,
        message: str,
        *,
        reason: UpstreamReason,
        status_code: int | None = None,
        reason_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code
        self.reason_code = reason_code or reason.value


class TransientUpstreamError(UpstreamError):
    """Rate limit, server fault or timeout. Retried by the retry controller."""

    failure_class = FailureClass.TRANSIENT_UPSTREAM


class FatalUpstreamError(UpstreamError):
    """Malformed request, auth or quota failure. Never retried."""

    failure_class = FailureClass.FATAL_UPSTREAM


class RetryExhaustedError(RuntimeError):
    """Retry cap exceeded; wraps the last transient error as a terminal one."""

    failure_class = FailureClass.TRANSIENT_UPSTREAM

    def __init__(self, last_error: TransientUpstreamError, *, attempts: int) -> None:
        super().__init__(f"Retry cap exceeded after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class PersistenceError(RuntimeError):
    """Ledger commit failed and was rolled back; the instance stays `running`."""

    failure_class = FailureClass.PERSISTENCE_FAILURE


class UnknownTaskDefinitionError(LookupError):
    """Task catalog has no definition for the requested id."""

    failure_class = FailureClass.INPUT_ERROR
