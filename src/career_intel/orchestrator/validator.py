"""Structural validation of generation service payloads."""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

DEFAULT_REQUIRED_FIELDS: tuple[str, ...] = ("query_id", "job", "data", "provenance")

_FENCED_JSON = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)

PayloadCheck = Callable[[dict[str, Any]], str | None]


@dataclass(slots=True)
class ValidationResult:
    """Result of payload validation."""

    ok: bool
    data: dict[str, Any] | None
    reason: str | None

    @classmethod
    def success(cls, data: dict[str, Any]) -> ValidationResult:
        return cls(ok=True, data=data, reason=None)

    @classmethod
    def failure(cls, reason: str) -> ValidationResult:
        return cls(ok=False, data=None, reason=reason)


class PayloadValidator:
    """Checks that a payload is a JSON object carrying the required top-level fields.

    `extra_checks` is the extension point for per-template schema checks: each
    callable receives the parsed object and returns an error message or None.
    """

    def __init__(
        self,
        required_fields: Sequence[str] = DEFAULT_REQUIRED_FIELDS,
        *,
        extra_checks: Sequence[PayloadCheck] = (),
    ) -> None:
        self.required_fields = tuple(required_fields)
        self.extra_checks = tuple(extra_checks)

    def validate(self, payload: str) -> ValidationResult:
        if not isinstance(payload, str):
            return ValidationResult.failure(
                f"Payload must be text, got {type(payload).__name__}.",
            )
        text = _strip_code_fence(payload.strip())
        if not text:
            return ValidationResult.failure("Empty payload.")
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as error:
            return ValidationResult.failure(f"Invalid JSON response: {error}")
        if not isinstance(parsed, dict):
            return ValidationResult.failure(
                f"Payload must be a JSON object, got {type(parsed).__name__}.",
            )

        missing = [name for name in self.required_fields if _is_missing(parsed.get(name))]
        if missing:
            return ValidationResult.failure(
                "Missing required top-level fields: " + ", ".join(missing),
            )

        for check in self.extra_checks:
            reason = check(parsed)
            if reason is not None:
                return ValidationResult.failure(reason)
        return ValidationResult.success(parsed)


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _strip_code_fence(text: str) -> str:
    fenced = _FENCED_JSON.match(text)
    if fenced is None:
        return text
    return fenced.group(1)
