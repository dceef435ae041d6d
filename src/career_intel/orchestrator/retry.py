"""Retry/backoff controller for transient generation service failures."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from career_intel.orchestrator.errors import RetryExhaustedError, TransientUpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Exponential backoff without jitter, capped by retry count."""

    max_retries: int = 3
    base_backoff_seconds: float = 15.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0.")
        if self.base_backoff_seconds < 0:
            raise ValueError("base_backoff_seconds must be >= 0.")

    def backoff_delay(self, attempt_index: int) -> float:
        """Delay before retry number `attempt_index + 1` (indices start at 0)."""

        if attempt_index < 0:
            raise ValueError("attempt_index must be >= 0.")
        return self.base_backoff_seconds * (2**attempt_index)


@dataclass(slots=True)
class RetryStats:
    """Counters from the most recent `attempt` call."""

    calls: int = 0
    retries: int = 0


class RetryController:
    """Re-invokes a call on transient failure; fatal errors pass straight through."""

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.policy = policy
        self._sleep = sleep
        self.last_stats = RetryStats()

    def attempt(self, call: Callable[[], T], *, label: str = "generation call") -> T:
        """Run `call` until it succeeds, fails fatally, or exhausts the retry cap.

        Any exception other than `TransientUpstreamError` propagates unchanged
        on the first occurrence. Transient errors are absorbed (logged only)
        until `max_retries` retries have been spent; the next one is raised as
        `RetryExhaustedError`.
        """

        stats = RetryStats()
        self.last_stats = stats
        attempt_index = 0
        while True:
            stats.calls += 1
            try:
                return call()
            except TransientUpstreamError as error:
                if attempt_index >= self.policy.max_retries:
                    logger.error(
                        "%s failed after %d attempts: %s",
                        label,
                        stats.calls,
                        error,
                    )
                    raise RetryExhaustedError(error, attempts=stats.calls) from error
                delay = self.policy.backoff_delay(attempt_index)
                logger.warning(
                    "%s transient failure (attempt %d/%d, reason=%s), retrying in %.1fs: %s",
                    label,
                    attempt_index + 1,
                    self.policy.max_retries,
                    error.reason_code,
                    delay,
                    error,
                )
                stats.retries += 1
                attempt_index += 1
                if delay > 0:
                    self._sleep(delay)
