"""Queue worker that claims task instances and drives them to a terminal state."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta

from career_intel.orchestrator.backend.base import GenerationRequest, GenerationService
from career_intel.orchestrator.catalog import TaskCatalog
from career_intel.orchestrator.errors import (
    FatalUpstreamError,
    PersistenceError,
    RetryExhaustedError,
    UnknownTaskDefinitionError,
)
from career_intel.orchestrator.models import FailureClass, TaskInstanceView
from career_intel.orchestrator.rendering import render_template, unresolved_placeholders
from career_intel.orchestrator.repository import QueueRepository
from career_intel.orchestrator.retry import RetryController, RetryPolicy
from career_intel.orchestrator.validator import PayloadValidator
from career_intel.storage.common import utc_now

logger = logging.getLogger(__name__)

_SLEEP_SLICE_SECONDS = 0.5


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    persistence_errors: int = 0
    unhandled_errors: int = 0
    idle_polls: int = 0

    def merge(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.retried += other.retried
        self.persistence_errors += other.persistence_errors
        self.unhandled_errors += other.unhandled_errors
        self.idle_polls += other.idle_polls


@dataclass(slots=True)
class WorkerOptions:
    """Loop bounds for one `run` invocation."""

    max_items: int | None = None
    region_code: str | None = None
    idle_sleep_seconds: float | None = None
    exit_when_idle: bool = False


class QueueWorker:
    """Claims one instance at a time: render, generate, validate, commit."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: QueueRepository,
        catalog: TaskCatalog,
        generation: GenerationService,
        retry_policy: RetryPolicy,
        worker_id: str,
        idle_sleep_seconds: float = 5.0,
        cooldown_seconds: float = 0.0,
        stale_running_seconds: int = 0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.generation = generation
        self.worker_id = worker_id
        self.idle_sleep_seconds = idle_sleep_seconds
        self.cooldown_seconds = cooldown_seconds
        self.stale_running_seconds = stale_running_seconds
        self._sleep = sleep
        self._retry = RetryController(retry_policy, sleep=sleep)
        self._stop_requested = False
        self._stop_signal_name: str | None = None
        self._current_instance_id: int | None = None

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self, *, signal_name: str = "manual") -> None:
        """Ask the loop to exit after the in-flight instance is committed."""

        self._stop_requested = True
        self._stop_signal_name = signal_name
        if self._current_instance_id is not None:
            logger.info(
                "Stop requested by %s; finishing task instance %d first",
                signal_name,
                self._current_instance_id,
            )
        else:
            logger.info("Stop requested by %s", signal_name)

    def run_once(self, *, region_code: str | None = None) -> WorkerRunSummary:
        """Process at most one task instance from the queue."""

        summary = WorkerRunSummary()
        if self._stop_requested:
            return summary

        if self.stale_running_seconds > 0:
            self.repository.recover_stale_running(
                stale_after=timedelta(seconds=self.stale_running_seconds),
            )

        instance = self.repository.claim_next(region_code=region_code, worker_id=self.worker_id)
        if instance is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        self._current_instance_id = instance.id
        logger.info(
            "Claimed task instance %d (task=%s entity=%d region=%d)",
            instance.id,
            instance.task_id,
            instance.entity_id,
            instance.region_id,
        )
        try:
            self._process(instance, summary)
        except PersistenceError as error:
            summary.persistence_errors += 1
            logger.error(
                "Ledger commit failed for task instance %d, it stays running: %s",
                instance.id,
                error,
            )
        except Exception:  # noqa: BLE001
            summary.unhandled_errors += 1
            logger.exception(
                "Unexpected error processing task instance %d, it stays running",
                instance.id,
            )
        finally:
            self._current_instance_id = None
        return summary

    def run(self, options: WorkerOptions | None = None) -> WorkerRunSummary:
        """Loop until stopped, `max_items` reached, or the queue is empty and exit is requested."""

        options = options or WorkerOptions()
        idle_sleep = (
            options.idle_sleep_seconds
            if options.idle_sleep_seconds is not None
            else self.idle_sleep_seconds
        )
        aggregate = WorkerRunSummary()
        with self._signal_handlers():
            while not self._stop_requested:
                if options.max_items is not None and aggregate.processed >= options.max_items:
                    break

                summary = self.run_once(region_code=options.region_code)
                aggregate.merge(summary)

                if summary.processed == 0:
                    if options.max_items is not None or options.exit_when_idle:
                        logger.info("Queue is empty, worker %s exiting", self.worker_id)
                        break
                    self._sleep_with_stop(idle_sleep)
                    continue

                if self.cooldown_seconds > 0:
                    self._sleep_with_stop(self.cooldown_seconds)

        logger.info(
            "Worker %s finished: processed=%d succeeded=%d failed=%d retried=%d "
            "persistence_errors=%d unhandled_errors=%d",
            self.worker_id,
            aggregate.processed,
            aggregate.succeeded,
            aggregate.failed,
            aggregate.retried,
            aggregate.persistence_errors,
            aggregate.unhandled_errors,
        )
        return aggregate

    def _process(self, instance: TaskInstanceView, summary: WorkerRunSummary) -> None:
        try:
            definition = self.catalog.get_definition(instance.task_id)
            context = self.repository.get_render_context(instance)
        except UnknownTaskDefinitionError as error:
            self._fail(
                instance,
                summary,
                error=f"Unknown task definition: {error}",
                failure_class=FailureClass.INPUT_ERROR,
                prompt=None,
            )
            return
        except Exception as error:  # noqa: BLE001
            self._fail(
                instance,
                summary,
                error=f"Input load error: {error}",
                failure_class=FailureClass.INPUT_ERROR,
                prompt=None,
            )
            return

        prompt = render_template(
            definition.input_template,
            context.to_variables(today=utc_now().date().isoformat(), task_id=definition.id),
        )
        unresolved = unresolved_placeholders(prompt)
        if unresolved:
            logger.debug(
                "Task instance %d rendered with unresolved placeholders: %s",
                instance.id,
                ", ".join(unresolved),
            )
        request = GenerationRequest(rendered_input=prompt, run_policy=definition.run_policy)

        try:
            response = self._retry.attempt(
                lambda: self.generation.complete(request),
                label=f"task instance {instance.id}",
            )
        except RetryExhaustedError as error:
            summary.retried += self._retry.last_stats.retries
            self._fail(
                instance,
                summary,
                error=str(error),
                failure_class=FailureClass.TRANSIENT_UPSTREAM,
                prompt=prompt,
            )
            return
        except FatalUpstreamError as error:
            summary.retried += self._retry.last_stats.retries
            self._fail(
                instance,
                summary,
                error=str(error),
                failure_class=FailureClass.FATAL_UPSTREAM,
                prompt=prompt,
            )
            return
        except Exception as error:  # noqa: BLE001
            logger.exception("Generation call crashed for task instance %d", instance.id)
            self._fail(
                instance,
                summary,
                error=f"Unexpected generation error: {error}",
                failure_class=FailureClass.FATAL_UPSTREAM,
                prompt=prompt,
            )
            return
        summary.retried += self._retry.last_stats.retries

        validation = PayloadValidator(definition.required_fields).validate(response.payload)
        if not validation.ok or validation.data is None:
            self._fail(
                instance,
                summary,
                error=validation.reason or "Payload validation failed.",
                failure_class=FailureClass.VALIDATION_FAILURE,
                prompt=prompt,
            )
            return

        committed = self.repository.commit_success(
            instance,
            data=validation.data,
            usage=response.usage,
            model=response.model or self._model_name(),
        )
        if not committed:
            logger.warning(
                "Task instance %d is no longer running; success was not recorded",
                instance.id,
            )
            return
        summary.succeeded = 1
        logger.info("Task instance %d done (task=%s)", instance.id, instance.task_id)

    def _fail(  # noqa: PLR0913
        self,
        instance: TaskInstanceView,
        summary: WorkerRunSummary,
        *,
        error: str,
        failure_class: FailureClass,
        prompt: str | None,
    ) -> None:
        committed = self.repository.commit_failure(
            instance,
            error=error,
            failure_class=failure_class,
            model=self._model_name(),
            prompt=prompt,
        )
        if not committed:
            logger.warning(
                "Task instance %d is no longer running; failure was not recorded",
                instance.id,
            )
            return
        summary.failed = 1
        logger.warning(
            "Task instance %d failed (class=%s): %s",
            instance.id,
            failure_class.value,
            error,
        )

    def _model_name(self) -> str | None:
        model = getattr(self.generation, "model", None)
        return str(model) if model is not None else None

    def _sleep_with_stop(self, seconds: float) -> None:
        remaining = seconds
        while remaining > 0 and not self._stop_requested:
            step = min(_SLEEP_SLICE_SECONDS, remaining)
            self._sleep(step)
            remaining -= step

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)
        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in the main thread.
            logger.debug("Signal handlers not installed outside the main thread")
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
