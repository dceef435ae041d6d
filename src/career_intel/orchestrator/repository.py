"""Work ledger, progress ledger, results store and error log persistence."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from career_intel.orchestrator.errors import PersistenceError
from career_intel.orchestrator.models import (
    EntityWrite,
    ErrorEntryView,
    FailureClass,
    ProgressRecordView,
    RenderContext,
    ResultPayloadView,
    StatusCounts,
    TaskInstanceView,
    TaskStatus,
    TaskStatusCounts,
    TokenUsage,
)
from career_intel.storage.alembic_runner import upgrade_head
from career_intel.storage.common import to_utc_aware_datetime, utc_now
from career_intel.storage.sqlmodel_models import (
    DEFAULT_PRIORITY,
    DEFAULT_REGION_CODE,
    Entity,
    ErrorEntryRow,
    ProgressRecordRow,
    Region,
    ResultPayloadRow,
    TaskDefinitionRow,
    TaskInstanceRow,
)

logger = logging.getLogger(__name__)

LEDGER_ERROR_MAX_CHARS = 1000
AUDIT_ERROR_MAX_CHARS = 5000
AUDIT_PROMPT_MAX_CHARS = 5000

_KEY_COLUMNS = ("entity_id", "region_id", "task_id")


class QueueRepository:
    """Queue persistence facade over an injected SQLAlchemy engine.

    Every status transition on a task instance is written together with the
    paired progress record in the same transaction.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        dialect = engine.dialect.name
        if dialect == "postgresql":
            self._insert = pg_insert
        elif dialect == "sqlite":
            self._insert = sqlite_insert
        else:
            raise ValueError(f"Unsupported database dialect: {dialect}")

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.engine.url.render_as_string(hide_password=False))

    # -- entities and enqueue -------------------------------------------------

    def ensure_region(
        self,
        code: str,
        *,
        name: str | None = None,
        currency: str = "USD",
        locale: str = "en-US",
    ) -> int:
        """Return region id for `code`, creating the region when missing."""

        normalized = code.strip().upper()
        with Session(self.engine) as session:
            row = session.exec(select(Region).where(Region.code == normalized)).one_or_none()
            if row is not None and row.id is not None:
                return row.id
            row = Region(code=normalized, name=name or normalized, currency=currency, locale=locale)
            session.add(row)
            session.commit()
            session.refresh(row)
            if row.id is None:
                raise RuntimeError(f"Region id was not assigned for {normalized}")
            return row.id

    def add_entity(self, payload: EntityWrite) -> int:
        """Register an entity; entities with a known `soc_code` are reused."""

        with Session(self.engine) as session:
            if payload.soc_code:
                existing = session.exec(
                    select(Entity).where(Entity.soc_code == payload.soc_code),
                ).one_or_none()
                if existing is not None and existing.id is not None:
                    return existing.id
            row = Entity(
                canonical_title=payload.canonical_title,
                soc_code=payload.soc_code,
                short_description=payload.short_description,
                onet_code=payload.onet_code,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            if row.id is None:
                raise RuntimeError("Entity id was not assigned.")
            return row.id

    def enqueue_entity(
        self,
        *,
        entity_id: int,
        region_code: str = DEFAULT_REGION_CODE,
        priority: int = DEFAULT_PRIORITY,
        task_ids: Iterable[str] | None = None,
    ) -> int:
        """Create pending task instances + progress records for one entity.

        Returns how many new instances were created; existing triples are left
        untouched.
        """

        region_id = self.ensure_region(region_code)
        now = utc_now()
        with Session(self.engine) as session:
            if session.get(Entity, entity_id) is None:
                raise RuntimeError(f"Entity not found: {entity_id}")
            definition_ids = list(session.exec(select(TaskDefinitionRow.id)).all())
            if task_ids is not None:
                wanted = set(task_ids)
                unknown = wanted.difference(definition_ids)
                if unknown:
                    raise RuntimeError(f"Unknown task definitions: {', '.join(sorted(unknown))}")
                definition_ids = [task_id for task_id in definition_ids if task_id in wanted]

            existing = set(
                session.exec(
                    select(TaskInstanceRow.task_id).where(
                        TaskInstanceRow.entity_id == entity_id,
                        TaskInstanceRow.region_id == region_id,
                    ),
                ).all(),
            )
            created = 0
            for task_id in sorted(definition_ids):
                if task_id in existing:
                    continue
                session.add(
                    TaskInstanceRow(
                        entity_id=entity_id,
                        region_id=region_id,
                        task_id=task_id,
                        status=TaskStatus.PENDING.value,
                        attempts=0,
                        priority=priority,
                        created_at=now,
                        updated_at=now,
                    ),
                )
                self._upsert_progress(
                    session,
                    key=(entity_id, region_id, task_id),
                    status=TaskStatus.PENDING,
                    last_error=None,
                    now=now,
                )
                created += 1
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise RuntimeError(
                    "Task instances changed concurrently while enqueuing; "
                    f"please retry (entity_id={entity_id}).",
                ) from error
        logger.info(
            "Enqueued %d task instances for entity %d in region %s",
            created,
            entity_id,
            region_code,
        )
        return created

    # -- lease protocol --------------------------------------------------------

    def claim_next(
        self,
        *,
        region_code: str | None = None,
        worker_id: str | None = None,
    ) -> TaskInstanceView | None:
        """Atomically claim the next pending instance and mark it `running`.

        Rows locked by another in-flight claim are skipped (`FOR UPDATE SKIP
        LOCKED`); on engines without row locks the guarded update below is
        what keeps two claimants from taking the same row.
        """

        while True:
            now = utc_now()
            with Session(self.engine) as session:
                statement = select(TaskInstanceRow).where(
                    TaskInstanceRow.status == TaskStatus.PENDING.value,
                )
                if region_code is not None:
                    statement = statement.join(
                        Region,
                        col(Region.id) == col(TaskInstanceRow.region_id),
                    ).where(Region.code == region_code.strip().upper())
                statement = (
                    statement.order_by(
                        col(TaskInstanceRow.priority).desc(),
                        col(TaskInstanceRow.id).asc(),
                    )
                    .limit(1)
                    .with_for_update(skip_locked=True, of=TaskInstanceRow)
                )
                candidate = session.exec(statement).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(TaskInstanceRow)
                    .where(
                        col(TaskInstanceRow.id) == candidate.id,
                        col(TaskInstanceRow.status) == TaskStatus.PENDING.value,
                    )
                    .values(
                        status=TaskStatus.RUNNING.value,
                        worker_id=worker_id,
                        claimed_at=now,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                self._upsert_progress(
                    session,
                    key=(candidate.entity_id, candidate.region_id, candidate.task_id),
                    status=TaskStatus.RUNNING,
                    last_error=None,
                    now=now,
                )
                session.commit()
                session.refresh(candidate)
                return _to_instance_view(candidate)

    def peek_pending(
        self,
        *,
        limit: int = 10,
        region_code: str | None = None,
    ) -> list[TaskInstanceView]:
        """Read-only preview of the next pending instances in claim order."""

        with Session(self.engine) as session:
            statement = select(TaskInstanceRow).where(
                TaskInstanceRow.status == TaskStatus.PENDING.value,
            )
            if region_code is not None:
                statement = statement.join(
                    Region,
                    col(Region.id) == col(TaskInstanceRow.region_id),
                ).where(Region.code == region_code.strip().upper())
            rows = session.exec(
                statement.order_by(
                    col(TaskInstanceRow.priority).desc(),
                    col(TaskInstanceRow.id).asc(),
                ).limit(limit),
            ).all()
        return [_to_instance_view(row) for row in rows]

    def get_render_context(self, instance: TaskInstanceView) -> RenderContext:
        """Entity/region attributes used to render the instance's input."""

        with Session(self.engine) as session:
            entity = session.get(Entity, instance.entity_id)
            region = session.get(Region, instance.region_id)
            if entity is None or region is None:
                raise RuntimeError(
                    f"Task instance {instance.id} references a missing entity or region.",
                )
            return RenderContext(
                entity_id=instance.entity_id,
                canonical_title=entity.canonical_title,
                soc_code=entity.soc_code,
                region_code=region.code,
                currency=region.currency,
                locale=region.locale,
            )

    # -- commit shapes ---------------------------------------------------------

    def commit_success(
        self,
        instance: TaskInstanceView,
        *,
        data: dict[str, Any],
        usage: TokenUsage | None = None,
        model: str | None = None,
    ) -> bool:
        """Upsert result, mark instance + progress `done`; all or nothing.

        Returns False without writing when the instance is no longer `running`.
        Raises `PersistenceError` when the transaction fails and was rolled back.
        """

        now = utc_now()
        key = (instance.entity_id, instance.region_id, instance.task_id)
        with Session(self.engine) as session:
            try:
                result = session.exec(
                    sa_update(TaskInstanceRow)
                    .where(
                        col(TaskInstanceRow.id) == instance.id,
                        col(TaskInstanceRow.status) == TaskStatus.RUNNING.value,
                    )
                    .values(
                        status=TaskStatus.DONE.value,
                        last_error=None,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    return False
                self._upsert_result(session, key=key, data=data, usage=usage, model=model, now=now)
                self._upsert_progress(
                    session,
                    key=key,
                    status=TaskStatus.DONE,
                    last_error=None,
                    now=now,
                )
                session.commit()
            except SQLAlchemyError as error:
                session.rollback()
                raise PersistenceError(
                    f"Success commit rolled back for task instance {instance.id}: {error}",
                ) from error
        return True

    def commit_failure(  # noqa: PLR0913
        self,
        instance: TaskInstanceView,
        *,
        error: str,
        failure_class: FailureClass,
        model: str | None = None,
        prompt: str | None = None,
    ) -> bool:
        """Mark instance + progress `failed`, bump attempts, append one error entry."""

        now = utc_now()
        key = (instance.entity_id, instance.region_id, instance.task_id)
        summary = error[:LEDGER_ERROR_MAX_CHARS]
        with Session(self.engine) as session:
            try:
                result = session.exec(
                    sa_update(TaskInstanceRow)
                    .where(
                        col(TaskInstanceRow.id) == instance.id,
                        col(TaskInstanceRow.status) == TaskStatus.RUNNING.value,
                    )
                    .values(
                        status=TaskStatus.FAILED.value,
                        last_error=summary,
                        attempts=col(TaskInstanceRow.attempts) + 1,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    return False
                self._upsert_progress(
                    session,
                    key=key,
                    status=TaskStatus.FAILED,
                    last_error=summary,
                    now=now,
                )
                session.add(
                    ErrorEntryRow(
                        entity_id=instance.entity_id,
                        region_id=instance.region_id,
                        task_id=instance.task_id,
                        failure_class=failure_class.value,
                        model=model,
                        prompt=prompt[:AUDIT_PROMPT_MAX_CHARS] if prompt is not None else None,
                        error=error[:AUDIT_ERROR_MAX_CHARS],
                        occurred_at=now,
                    ),
                )
                session.commit()
            except SQLAlchemyError as db_error:
                session.rollback()
                raise PersistenceError(
                    f"Failure commit rolled back for task instance {instance.id}: {db_error}",
                ) from db_error
        return True

    # -- administrative resets -------------------------------------------------

    def reset_tasks(
        self,
        *,
        statuses: Iterable[TaskStatus] = (TaskStatus.FAILED,),
        region_code: str | None = None,
        task_id: str | None = None,
        entity_id: int | None = None,
    ) -> int:
        """Put matching instances back to `pending` (manual operator recovery)."""

        status_values = [status.value for status in statuses]
        if TaskStatus.PENDING.value in status_values:
            raise ValueError("Pending instances cannot be reset.")
        return self._reset_matching(
            status_values=status_values,
            region_code=region_code,
            task_id=task_id,
            entity_id=entity_id,
            claimed_before=None,
            reason="manual_reset",
        )

    def recover_stale_running(self, *, stale_after: timedelta) -> int:
        """Return `running` instances claimed longer than `stale_after` ago to `pending`."""

        recovered = self._reset_matching(
            status_values=[TaskStatus.RUNNING.value],
            region_code=None,
            task_id=None,
            entity_id=None,
            claimed_before=utc_now() - stale_after,
            reason="stale_recovered",
        )
        if recovered:
            logger.warning("Recovered %d stale running task instances", recovered)
        return recovered

    def _reset_matching(  # noqa: PLR0913
        self,
        *,
        status_values: list[str],
        region_code: str | None,
        task_id: str | None,
        entity_id: int | None,
        claimed_before: datetime | None,
        reason: str,
    ) -> int:
        now = utc_now()
        with Session(self.engine) as session:
            statement = select(TaskInstanceRow).where(
                col(TaskInstanceRow.status).in_(status_values),
            )
            if region_code is not None:
                statement = statement.join(
                    Region,
                    col(Region.id) == col(TaskInstanceRow.region_id),
                ).where(Region.code == region_code.strip().upper())
            if task_id is not None:
                statement = statement.where(TaskInstanceRow.task_id == task_id)
            if entity_id is not None:
                statement = statement.where(TaskInstanceRow.entity_id == entity_id)
            if claimed_before is not None:
                statement = statement.where(col(TaskInstanceRow.claimed_at) < claimed_before)
            rows = session.exec(
                statement.with_for_update(skip_locked=True, of=TaskInstanceRow),
            ).all()

            reset = 0
            for row in rows:
                result = session.exec(
                    sa_update(TaskInstanceRow)
                    .where(
                        col(TaskInstanceRow.id) == row.id,
                        col(TaskInstanceRow.status) == row.status,
                    )
                    .values(
                        status=TaskStatus.PENDING.value,
                        last_error=None,
                        worker_id=None,
                        claimed_at=None,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    continue
                self._upsert_progress(
                    session,
                    key=(row.entity_id, row.region_id, row.task_id),
                    status=TaskStatus.PENDING,
                    last_error=None,
                    now=now,
                )
                reset += 1
            session.commit()
        if reset:
            logger.info("Reset %d task instances to pending (%s)", reset, reason)
        return reset

    # -- reads -----------------------------------------------------------------

    def get_task_instance(self, instance_id: int) -> TaskInstanceView | None:
        with Session(self.engine) as session:
            row = session.get(TaskInstanceRow, instance_id)
            return _to_instance_view(row) if row is not None else None

    def find_task_instance(
        self,
        *,
        entity_id: int,
        task_id: str,
        region_code: str = DEFAULT_REGION_CODE,
    ) -> TaskInstanceView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(TaskInstanceRow)
                .join(Region, col(Region.id) == col(TaskInstanceRow.region_id))
                .where(
                    TaskInstanceRow.entity_id == entity_id,
                    TaskInstanceRow.task_id == task_id,
                    Region.code == region_code.strip().upper(),
                ),
            ).one_or_none()
            return _to_instance_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskInstanceView]:
        """List recently updated instances, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(TaskInstanceRow)
            if status is not None:
                statement = statement.where(TaskInstanceRow.status == status.value)
            rows = session.exec(
                statement.order_by(
                    col(TaskInstanceRow.updated_at).desc(),
                    col(TaskInstanceRow.id).desc(),
                ).limit(limit),
            ).all()
        return [_to_instance_view(row) for row in rows]

    def get_progress(
        self,
        *,
        entity_id: int,
        region_id: int,
        task_id: str,
    ) -> ProgressRecordView | None:
        with Session(self.engine) as session:
            row = session.get(ProgressRecordRow, (entity_id, region_id, task_id))
            if row is None:
                return None
            return ProgressRecordView(
                entity_id=row.entity_id,
                region_id=row.region_id,
                task_id=row.task_id,
                status=TaskStatus(row.status),
                last_error=row.last_error,
                updated_at=to_utc_aware_datetime(row.updated_at),
            )

    def get_result(
        self,
        *,
        entity_id: int,
        region_id: int,
        task_id: str,
    ) -> ResultPayloadView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(ResultPayloadRow).where(
                    ResultPayloadRow.entity_id == entity_id,
                    ResultPayloadRow.region_id == region_id,
                    ResultPayloadRow.task_id == task_id,
                ),
            ).one_or_none()
            if row is None:
                return None
            return ResultPayloadView(
                entity_id=row.entity_id,
                region_id=row.region_id,
                task_id=row.task_id,
                data=json.loads(row.payload_json),
                model=row.model,
                total_tokens=row.total_tokens,
                created_at=to_utc_aware_datetime(row.created_at),
                updated_at=to_utc_aware_datetime(row.updated_at),
            )

    def count_results(self, *, task_id: str | None = None) -> int:
        with Session(self.engine) as session:
            statement = select(func.count()).select_from(ResultPayloadRow)
            if task_id is not None:
                statement = statement.where(ResultPayloadRow.task_id == task_id)
            return int(session.exec(statement).one())

    def list_recent_errors(
        self,
        *,
        limit: int = 20,
        entity_id: int | None = None,
        task_id: str | None = None,
    ) -> list[ErrorEntryView]:
        """Most recent error entries first."""

        with Session(self.engine) as session:
            statement = select(ErrorEntryRow)
            if entity_id is not None:
                statement = statement.where(ErrorEntryRow.entity_id == entity_id)
            if task_id is not None:
                statement = statement.where(ErrorEntryRow.task_id == task_id)
            rows = session.exec(
                statement.order_by(
                    col(ErrorEntryRow.occurred_at).desc(),
                    col(ErrorEntryRow.id).desc(),
                ).limit(limit),
            ).all()
        return [
            ErrorEntryView(
                id=row.id or 0,
                entity_id=row.entity_id,
                region_id=row.region_id,
                task_id=row.task_id,
                failure_class=row.failure_class,
                model=row.model,
                error=row.error,
                occurred_at=to_utc_aware_datetime(row.occurred_at),
                prompt=row.prompt,
            )
            for row in rows
        ]

    def status_counts(self, *, region_code: str | None = None) -> StatusCounts:
        """Aggregate counts from the progress ledger."""

        with Session(self.engine) as session:
            statement = select(ProgressRecordRow.status, func.count()).group_by(
                col(ProgressRecordRow.status),
            )
            if region_code is not None:
                statement = statement.join(
                    Region,
                    col(Region.id) == col(ProgressRecordRow.region_id),
                ).where(Region.code == region_code.strip().upper())
            rows = session.exec(statement).all()
        return _counts_from_rows(rows)

    def queue_counts(self) -> StatusCounts:
        """Aggregate counts straight from the work ledger."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskInstanceRow.status, func.count()).group_by(
                    col(TaskInstanceRow.status),
                ),
            ).all()
        return _counts_from_rows(rows)

    def task_status_counts(self, *, region_code: str | None = None) -> list[TaskStatusCounts]:
        """Progress ledger counts grouped by task definition."""

        with Session(self.engine) as session:
            statement = (
                select(
                    ProgressRecordRow.task_id,
                    TaskDefinitionRow.display_name,
                    ProgressRecordRow.status,
                    func.count(),
                )
                .join(
                    TaskDefinitionRow,
                    col(TaskDefinitionRow.id) == col(ProgressRecordRow.task_id),
                )
                .group_by(
                    col(ProgressRecordRow.task_id),
                    col(TaskDefinitionRow.display_name),
                    col(ProgressRecordRow.status),
                )
            )
            if region_code is not None:
                statement = statement.join(
                    Region,
                    col(Region.id) == col(ProgressRecordRow.region_id),
                ).where(Region.code == region_code.strip().upper())
            rows = session.exec(statement).all()

        grouped: dict[str, TaskStatusCounts] = {}
        for task_id, display_name, status, count in rows:
            entry = grouped.setdefault(
                task_id,
                TaskStatusCounts(task_id=task_id, display_name=display_name),
            )
            entry.counts.add(TaskStatus(status), int(count))
        return sorted(
            grouped.values(),
            key=lambda item: (-item.counts.done, item.task_id),
        )

    # -- helpers ---------------------------------------------------------------

    def _upsert_progress(
        self,
        session: Session,
        *,
        key: tuple[int, int, str],
        status: TaskStatus,
        last_error: str | None,
        now: datetime,
    ) -> None:
        entity_id, region_id, task_id = key
        statement = self._insert(ProgressRecordRow).values(
            entity_id=entity_id,
            region_id=region_id,
            task_id=task_id,
            status=status.value,
            last_error=last_error,
            updated_at=now,
        )
        session.exec(
            statement.on_conflict_do_update(
                index_elements=list(_KEY_COLUMNS),
                set_={
                    "status": statement.excluded.status,
                    "last_error": statement.excluded.last_error,
                    "updated_at": statement.excluded.updated_at,
                },
            ),
        )

    def _upsert_result(  # noqa: PLR0913
        self,
        session: Session,
        *,
        key: tuple[int, int, str],
        data: dict[str, Any],
        usage: TokenUsage | None,
        model: str | None,
        now: datetime,
    ) -> None:
        entity_id, region_id, task_id = key
        statement = self._insert(ResultPayloadRow).values(
            entity_id=entity_id,
            region_id=region_id,
            task_id=task_id,
            payload_json=json.dumps(data, ensure_ascii=False, sort_keys=True),
            model=model,
            prompt_tokens=usage.prompt_tokens if usage is not None else None,
            completion_tokens=usage.completion_tokens if usage is not None else None,
            total_tokens=usage.total_tokens if usage is not None else None,
            created_at=now,
            updated_at=now,
        )
        session.exec(
            statement.on_conflict_do_update(
                index_elements=list(_KEY_COLUMNS),
                set_={
                    "payload_json": statement.excluded.payload_json,
                    "model": statement.excluded.model,
                    "prompt_tokens": statement.excluded.prompt_tokens,
                    "completion_tokens": statement.excluded.completion_tokens,
                    "total_tokens": statement.excluded.total_tokens,
                    "updated_at": statement.excluded.updated_at,
                },
            ),
        )


def _counts_from_rows(rows: Iterable[tuple[str, int]]) -> StatusCounts:
    counts = StatusCounts()
    for status, count in rows:
        counts.add(TaskStatus(status), int(count))
    return counts


def _to_instance_view(row: TaskInstanceRow) -> TaskInstanceView:
    if row.id is None:
        raise RuntimeError("Task instance row has no id.")
    return TaskInstanceView(
        id=row.id,
        entity_id=row.entity_id,
        region_id=row.region_id,
        task_id=row.task_id,
        status=TaskStatus(row.status),
        attempts=row.attempts,
        priority=row.priority,
        last_error=row.last_error,
        worker_id=row.worker_id,
        claimed_at=to_utc_aware_datetime(row.claimed_at) if row.claimed_at is not None else None,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
