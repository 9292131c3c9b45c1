# src/marketplace_ingest/application/use_cases/enqueue_task.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Use case: enqueue, cancel and summarize queued tasks."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from marketplace_ingest.application.uow import UnitOfWork, UnitOfWorkFactory, run_in_uow
from marketplace_ingest.domain.entities.task import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PRIORITY,
    NewTask,
    Task,
    TaskScope,
)
from marketplace_ingest.domain.enums.task import ScopeType, TaskStatus, TaskType
from marketplace_ingest.domain.exceptions.tasks import TaskNotFoundError, UnknownTaskTypeError
from marketplace_ingest.domain.interfaces.repositories.task_queue_repository import (
    TaskQueueRepository,
)
from marketplace_ingest.infrastructure.logging.logger import get_json_logger

logger = get_json_logger(__name__)


@dataclass(frozen=True, slots=True)
class EnqueueTaskRequest:
    """Producer-facing request; strings are validated into the closed vocabularies."""

    task_type: str
    scope_type: str = ScopeType.LISTING.value
    scope_id: str | None = None
    input: Mapping[str, Any] = field(default_factory=dict)
    priority: int = DEFAULT_PRIORITY
    max_attempts: int | None = None
    scheduled_for: datetime | None = None
    created_by: str = "system"


def build_new_task(req: EnqueueTaskRequest, *, default_max_attempts: int) -> NewTask:
    """Validate a request into a ``NewTask``.

    Raises:
        UnknownTaskTypeError: If ``task_type`` is not a known type.
        ValueError: If the scope type or attempt budget is invalid.
    """
    try:
        task_type = TaskType(req.task_type)
    except ValueError as exc:
        raise UnknownTaskTypeError(
            f"Unknown task type: {req.task_type}",
            details={"task_type": req.task_type, "known": [t.value for t in TaskType]},
        ) from exc
    return NewTask(
        task_type=task_type,
        scope=TaskScope(scope_type=ScopeType(req.scope_type), scope_id=req.scope_id),
        input=dict(req.input),
        priority=req.priority,
        max_attempts=req.max_attempts if req.max_attempts is not None else default_max_attempts,
        scheduled_for=req.scheduled_for,
        created_by=req.created_by,
    )


class EnqueueTask:
    """Producer operations over the task queue."""

    def __init__(
        self, *, uow_factory: UnitOfWorkFactory, default_max_attempts: int = DEFAULT_MAX_ATTEMPTS
    ) -> None:
        self._uow_factory = uow_factory
        self._default_max_attempts = default_max_attempts

    async def execute(self, req: EnqueueTaskRequest) -> Task:
        """Validate and persist a new PENDING task."""
        new = build_new_task(req, default_max_attempts=self._default_max_attempts)

        async def _enqueue(uow: UnitOfWork) -> Task:
            repo: TaskQueueRepository = uow.get_repository(TaskQueueRepository)
            return await repo.enqueue(new)

        task = await run_in_uow(self._uow_factory(), _enqueue)
        logger.info(
            "task.enqueued",
            extra={
                "extra": {
                    "task_id": str(task.id),
                    "task_type": task.task_type,
                    "scope_type": task.scope.scope_type.value,
                    "scope_id": task.scope.scope_id,
                    "priority": task.priority,
                }
            },
        )
        return task

    async def cancel(self, task_id: UUID) -> bool:
        """Cancel a PENDING or RUNNING task.

        Returns:
            bool: False when the task was already terminal.

        Raises:
            TaskNotFoundError: If the task does not exist.
        """

        async def _cancel(uow: UnitOfWork) -> bool:
            repo: TaskQueueRepository = uow.get_repository(TaskQueueRepository)
            if await repo.get(task_id) is None:
                raise TaskNotFoundError("Task not found", details={"task_id": str(task_id)})
            return await repo.cancel(task_id)

        cancelled = await run_in_uow(self._uow_factory(), _cancel)
        logger.info(
            "task.cancel", extra={"extra": {"task_id": str(task_id), "cancelled": cancelled}}
        )
        return cancelled

    async def stats(self) -> dict[TaskStatus, int]:
        """Return task counts for every status."""

        async def _stats(uow: UnitOfWork) -> dict[TaskStatus, int]:
            repo: TaskQueueRepository = uow.get_repository(TaskQueueRepository)
            return await repo.count_by_status()

        return await run_in_uow(self._uow_factory(), _stats)
