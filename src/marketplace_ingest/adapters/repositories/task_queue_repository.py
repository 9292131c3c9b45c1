# src/marketplace_ingest/adapters/repositories/task_queue_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Task queue repository (SQLAlchemy).

Purpose:
    Durable, concurrency-safe task queue on PostgreSQL. Implements the
    ``TaskQueueRepository`` protocol.

Layer:
    adapters/repositories

Design:
    * Claiming is two statements in the caller's transaction:
      ``SELECT id ... FOR UPDATE SKIP LOCKED`` picks due PENDING rows without
      blocking on rows another worker holds, then ``UPDATE ... WHERE id IN
      (...) AND status = 'PENDING' RETURNING *`` flips them to RUNNING.
    * Log entries are appended with JSONB concatenation (``log || $entry``)
      so concurrent writers never overwrite each other.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import cast, func, insert, literal, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import ColumnElement

from marketplace_ingest.adapters.repositories.base_repository import BaseRepository
from marketplace_ingest.domain.entities.task import NewTask, Task, TaskScope
from marketplace_ingest.domain.enums.task import ScopeType, TaskStatus, TaskType
from marketplace_ingest.infrastructure.database.models.tasks import TaskModel


def _log_append(entry: Mapping[str, Any]) -> ColumnElement[Any]:
    """Return ``log || '[entry]'::jsonb``."""
    payload = json.dumps([dict(entry)], default=str)
    return TaskModel.log.op("||")(cast(literal(payload), JSONB))


def _to_entity(row: TaskModel) -> Task:
    return Task(
        id=row.id,
        task_type=row.task_type,
        scope=TaskScope(scope_type=ScopeType(row.scope_type), scope_id=row.scope_id),
        input=dict(row.input or {}),
        status=TaskStatus(row.status),
        priority=row.priority,
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        scheduled_for=row.scheduled_for,
        started_at=row.started_at,
        finished_at=row.finished_at,
        result=row.result,
        error_message=row.error_message,
        log=tuple(row.log or ()),
        created_by=row.created_by,
        created_at=row.created_at,
    )


class SqlAlchemyTaskQueueRepository(BaseRepository[TaskModel]):
    """SQLAlchemy-backed task queue."""

    _TABLE = "tasks"

    # ------------------------------------------------------------------ #
    # Writes                                                             #
    # ------------------------------------------------------------------ #

    async def enqueue(self, task: NewTask) -> Task:
        """Insert a PENDING task."""
        now = self.utc_now()
        stmt = (
            insert(TaskModel)
            .values(
                task_type=task.task_type.value,
                scope_type=task.scope.scope_type.value,
                scope_id=task.scope.scope_id,
                input=dict(task.input),
                status=TaskStatus.PENDING.value,
                priority=task.priority,
                attempts=0,
                max_attempts=task.max_attempts,
                scheduled_for=task.scheduled_for or now,
                log=[],
                created_by=task.created_by,
                created_at=now,
                updated_at=now,
            )
            .returning(TaskModel)
        )
        async with self._observe("task_enqueue"):
            res = await self._session.execute(stmt)
            return _to_entity(res.scalars().one())

    async def claim_next(self, batch_size: int) -> list[Task]:
        """Claim up to ``batch_size`` due tasks with SKIP LOCKED."""
        if batch_size < 1:
            return []
        now = self.utc_now()
        pick = (
            select(TaskModel.id)
            .where(
                TaskModel.status == TaskStatus.PENDING.value,
                TaskModel.scheduled_for <= now,
                TaskModel.attempts < TaskModel.max_attempts,
            )
            .order_by(TaskModel.priority.desc(), TaskModel.scheduled_for.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        async with self._observe("task_claim"):
            ids = list((await self._session.execute(pick)).scalars().all())
            if not ids:
                return []
            claim = (
                update(TaskModel)
                .where(
                    TaskModel.id.in_(ids),
                    TaskModel.status == TaskStatus.PENDING.value,
                    TaskModel.attempts < TaskModel.max_attempts,
                )
                .values(
                    status=TaskStatus.RUNNING.value,
                    started_at=now,
                    attempts=TaskModel.attempts + 1,
                    updated_at=now,
                )
                .returning(TaskModel)
                .execution_options(synchronize_session=False)
            )
            rows = list((await self._session.execute(claim)).scalars().all())

        tasks = [_to_entity(r) for r in rows]
        tasks.sort(key=lambda t: (-t.priority, t.scheduled_for))
        return tasks

    async def mark_succeeded(self, task_id: UUID, result: Mapping[str, Any]) -> bool:
        """Record success unless the task was cancelled while running.

        Returns:
            bool: False when the row was no longer RUNNING.
        """
        now = self.utc_now()
        stmt = (
            update(TaskModel)
            .where(TaskModel.id == task_id, TaskModel.status == TaskStatus.RUNNING.value)
            .values(
                status=TaskStatus.SUCCEEDED.value,
                finished_at=now,
                result=dict(result),
                error_message=None,
                updated_at=now,
            )
            .returning(TaskModel.id)
            .execution_options(synchronize_session=False)
        )
        async with self._observe("task_mark_succeeded"):
            res = await self._session.execute(stmt)
            return res.scalar_one_or_none() is not None

    async def mark_failed(
        self,
        task: Task,
        *,
        error: str,
        log_entry: Mapping[str, Any],
        backoff_s: float,
        terminal: bool = False,
    ) -> TaskStatus:
        """Record a failed attempt, rescheduling while attempts remain."""
        now = self.utc_now()
        values: dict[str, Any] = {
            "error_message": error,
            "log": _log_append(log_entry),
            "updated_at": now,
        }
        if terminal or not task.has_attempts_left:
            status = TaskStatus.FAILED
            values["finished_at"] = now
        else:
            status = TaskStatus.PENDING
            values["scheduled_for"] = now + timedelta(seconds=backoff_s)
        values["status"] = status.value

        stmt = (
            update(TaskModel)
            .where(TaskModel.id == task.id, TaskModel.status == TaskStatus.RUNNING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._observe("task_mark_failed"):
            await self._session.execute(stmt)
        return status

    async def cancel(self, task_id: UUID) -> bool:
        """Cancel a PENDING or RUNNING task."""
        now = self.utc_now()
        stmt = (
            update(TaskModel)
            .where(
                TaskModel.id == task_id,
                TaskModel.status.in_([TaskStatus.PENDING.value, TaskStatus.RUNNING.value]),
            )
            .values(status=TaskStatus.CANCELLED.value, finished_at=now, updated_at=now)
            .returning(TaskModel.id)
            .execution_options(synchronize_session=False)
        )
        async with self._observe("task_cancel"):
            res = await self._session.execute(stmt)
            return res.scalar_one_or_none() is not None

    async def append_log(self, task_id: UUID, entry: Mapping[str, Any]) -> None:
        """Append one entry to the task log."""
        stmt = (
            update(TaskModel)
            .where(TaskModel.id == task_id)
            .values(log=_log_append(entry), updated_at=self.utc_now())
            .execution_options(synchronize_session=False)
        )
        async with self._observe("task_append_log"):
            await self._session.execute(stmt)

    # ------------------------------------------------------------------ #
    # Reads                                                              #
    # ------------------------------------------------------------------ #

    async def get(self, task_id: UUID) -> Task | None:
        """Return a task by id."""

        async def _run() -> Task | None:
            row = await self.fetch_optional(select(TaskModel).where(TaskModel.id == task_id))
            return _to_entity(row) if row is not None else None

        return await self._read("task_get", _run, None)

    async def find_pending_for_scope(
        self, task_type: TaskType, scope: TaskScope
    ) -> Sequence[Task]:
        """Return PENDING tasks of a type for a scope (NULL scope ids match NULL)."""
        scope_filter = (
            TaskModel.scope_id.is_(None)
            if scope.scope_id is None
            else TaskModel.scope_id == scope.scope_id
        )
        stmt = select(TaskModel).where(
            TaskModel.task_type == task_type.value,
            TaskModel.scope_type == scope.scope_type.value,
            scope_filter,
            TaskModel.status == TaskStatus.PENDING.value,
        )

        async def _run() -> list[Task]:
            return [_to_entity(r) for r in await self.fetch_all(stmt)]

        return await self._read("task_find_pending", _run, [])

    async def count_by_status(self) -> dict[TaskStatus, int]:
        """Return counts for every status."""
        counts = {status: 0 for status in TaskStatus}
        stmt = select(TaskModel.status, func.count()).group_by(TaskModel.status)

        async def _run() -> dict[TaskStatus, int]:
            res = await self._session.execute(stmt)
            for status, n in res.all():
                counts[TaskStatus(status)] = int(n)
            return counts

        return await self._read("task_count_by_status", _run, counts)
