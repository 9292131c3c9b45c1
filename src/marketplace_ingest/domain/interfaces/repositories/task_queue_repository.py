# src/marketplace_ingest/domain/interfaces/repositories/task_queue_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Domain-facing interface for the durable task queue.

Contract:
    * ``claim_next`` must be safe under concurrent workers: a PENDING task is
      handed to at most one claimer (row-level locks skipped, not waited on).
    * Claiming increments ``attempts`` and stamps ``started_at``.
    * ``append_log`` and the log entry passed to ``mark_failed`` are appended
      to the existing log, never replacing it.
    * Implementations never commit; the caller owns the transaction.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol
from uuid import UUID

from marketplace_ingest.domain.entities.task import NewTask, Task, TaskScope
from marketplace_ingest.domain.enums.task import TaskStatus, TaskType


class TaskQueueRepository(Protocol):
    """Persistence contract for queued tasks."""

    async def enqueue(self, task: NewTask) -> Task:
        """Insert a PENDING task and return it."""
        raise NotImplementedError

    async def claim_next(self, batch_size: int) -> list[Task]:
        """Atomically claim up to ``batch_size`` due PENDING tasks.

        Tasks are ordered by priority (highest first) then ``scheduled_for``.
        Returned tasks are RUNNING with ``attempts`` already incremented.
        """
        raise NotImplementedError

    async def mark_succeeded(self, task_id: UUID, result: Mapping[str, Any]) -> bool:
        """Record a successful execution; False when the task left RUNNING."""
        raise NotImplementedError

    async def mark_failed(
        self,
        task: Task,
        *,
        error: str,
        log_entry: Mapping[str, Any],
        backoff_s: float,
        terminal: bool = False,
    ) -> TaskStatus:
        """Record a failed attempt.

        The task goes back to PENDING scheduled ``backoff_s`` in the future
        while attempts remain and ``terminal`` is False; otherwise FAILED.

        Returns:
            The status the task was left in.
        """
        raise NotImplementedError

    async def cancel(self, task_id: UUID) -> bool:
        """Cancel a PENDING or RUNNING task. Returns False when not cancellable."""
        raise NotImplementedError

    async def append_log(self, task_id: UUID, entry: Mapping[str, Any]) -> None:
        """Append one structured entry to the task log."""
        raise NotImplementedError

    async def get(self, task_id: UUID) -> Task | None:
        """Return a task by id."""
        raise NotImplementedError

    async def find_pending_for_scope(
        self, task_type: TaskType, scope: TaskScope
    ) -> Sequence[Task]:
        """Return PENDING tasks of a type for the same scope."""
        raise NotImplementedError

    async def count_by_status(self) -> dict[TaskStatus, int]:
        """Return task counts for every status (0 when absent)."""
        raise NotImplementedError
