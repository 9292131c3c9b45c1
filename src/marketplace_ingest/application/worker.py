# src/marketplace_ingest/application/worker.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Task worker: claim, dispatch, record.

Purpose:
    Poll the task queue, run each claimed task through the handler
    registered for its type and record the outcome.

Behavior:
    * The handler table must cover every ``TaskType``; an incomplete table
      is rejected at construction with ``HandlerRegistryError``.
    * Claims run in their own transaction so that ``SKIP LOCKED`` row locks
      are released before handlers start.
    * A task whose stored type is unknown is failed without retry.
    * A handler failure reschedules the task with exponential backoff while
      attempts remain; ``TaskHandlerInputError`` is terminal.
    * Every attempt appends one entry to the task's cumulative log.
    * Follow-ups declared by a successful handler are enqueued unless a
      PENDING task of the same type and scope already exists. A follow-up
      enqueue failure is logged and does not affect the finished task.

Layer:
    application
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable, Mapping
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from marketplace_ingest.application.uow import UnitOfWork, UnitOfWorkFactory, run_in_uow
from marketplace_ingest.application.use_cases.task_handlers import TaskHandler
from marketplace_ingest.domain.entities.task import NewTask, Task, TaskOutcome
from marketplace_ingest.domain.enums.task import TaskStatus, TaskType
from marketplace_ingest.domain.exceptions.base import DomainError
from marketplace_ingest.domain.exceptions.tasks import (
    HandlerRegistryError,
    TaskHandlerInputError,
    UnknownTaskTypeError,
)
from marketplace_ingest.domain.interfaces.repositories.task_queue_repository import (
    TaskQueueRepository,
)
from marketplace_ingest.domain.services.task_backoff import (
    DEFAULT_BACKOFF_BASE_S,
    DEFAULT_BACKOFF_CAP_S,
    compute_backoff,
)
from marketplace_ingest.infrastructure.logging.logger import get_json_logger, task_context
from marketplace_ingest.infrastructure.observability.metrics import (
    get_ingest_task_duration_seconds,
    get_ingest_tasks_total,
)

logger = get_json_logger(__name__)


@dataclass(frozen=True, slots=True)
class WorkerConfig:
    """Polling and retry parameters.

    Attributes:
        poll_interval_s: Idle wait between polls.
        batch_size: Maximum tasks claimed per poll.
        backoff_base_s: Backoff for the first failed attempt.
        backoff_cap_s: Upper bound on any backoff.
    """

    poll_interval_s: float = 5.0
    batch_size: int = 5
    backoff_base_s: float = DEFAULT_BACKOFF_BASE_S
    backoff_cap_s: float = DEFAULT_BACKOFF_CAP_S


def _count(task_type: str, outcome: str) -> None:
    with suppress(Exception):
        get_ingest_tasks_total().labels(task_type=task_type, outcome=outcome).inc()


class TaskWorker:
    """Cooperative single-process task worker."""

    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        handlers: Mapping[TaskType, TaskHandler],
        config: WorkerConfig | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the worker.

        Raises:
            HandlerRegistryError: If any ``TaskType`` has no handler.
        """
        missing = [t.value for t in TaskType if t not in handlers]
        if missing:
            raise HandlerRegistryError(
                "Handler table is incomplete", details={"missing": missing}
            )
        self._uow_factory = uow_factory
        self._handlers: dict[TaskType, TaskHandler] = dict(handlers)
        self._config = config or WorkerConfig()
        self._clock = clock
        self._rng = rng or random.Random()
        self._stop = asyncio.Event()

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Ask the loop to exit after the current batch."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        """Return True once ``stop()`` was called."""
        return self._stop.is_set()

    async def run_forever(self) -> None:
        """Poll until ``stop()`` is called.

        A poll that fails (for example a dropped database connection) is
        logged and retried on the next interval.
        """
        logger.info(
            "worker.started",
            extra={
                "extra": {
                    "poll_interval_s": self._config.poll_interval_s,
                    "batch_size": self._config.batch_size,
                }
            },
        )
        while not self._stop.is_set():
            try:
                processed = await self.run_once()
            except Exception:
                logger.exception("worker.poll.failed")
                processed = 0
            if processed < self._config.batch_size:
                with suppress(TimeoutError):
                    await asyncio.wait_for(self._stop.wait(), timeout=self._config.poll_interval_s)
        logger.info("worker.stopped")

    async def run_once(self) -> int:
        """Claim one batch and process it.

        Returns:
            int: Number of tasks processed.
        """

        async def _claim(uow: UnitOfWork) -> list[Task]:
            repo: TaskQueueRepository = uow.get_repository(TaskQueueRepository)
            return await repo.claim_next(self._config.batch_size)

        tasks = await run_in_uow(self._uow_factory(), _claim)
        for task in tasks:
            try:
                await self.process(task)
            except Exception:
                logger.exception(
                    "worker.task.record_failed",
                    extra={"extra": {"task_id": str(task.id), "task_type": task.task_type}},
                )
        return len(tasks)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def process(self, task: Task) -> None:
        """Run one claimed task and record its outcome."""
        with task_context(task_id=task.id):
            task_type = task.known_type
            if task_type is None:
                await self._fail(
                    task,
                    UnknownTaskTypeError(
                        f"Unknown task type: {task.task_type}",
                        details={"task_type": task.task_type},
                    ),
                    terminal=True,
                )
                return

            start = time.perf_counter()
            logger.info(
                "worker.task.started",
                extra={"extra": {"task_type": task.task_type, "attempt": task.attempts}},
            )
            try:
                outcome = await self._handlers[task_type](task)
            except Exception as exc:
                await self._fail(task, exc, terminal=isinstance(exc, TaskHandlerInputError))
            else:
                await self._succeed(task, outcome, duration_s=time.perf_counter() - start)
            finally:
                with suppress(Exception):
                    get_ingest_task_duration_seconds().labels(task_type=task.task_type).observe(
                        time.perf_counter() - start
                    )

    async def _succeed(self, task: Task, outcome: TaskOutcome, *, duration_s: float) -> None:
        entry = {
            "at": self._clock().isoformat(),
            "attempt": task.attempts,
            "event": "succeeded",
            "duration_ms": int(duration_s * 1000),
        }

        async def _record(uow: UnitOfWork) -> bool:
            repo: TaskQueueRepository = uow.get_repository(TaskQueueRepository)
            if not await repo.mark_succeeded(task.id, outcome.result):
                return False
            await repo.append_log(task.id, entry)
            return True

        if not await run_in_uow(self._uow_factory(), _record):
            # Cancelled while the handler ran; the cancel stands.
            _count(task.task_type, "cancelled")
            logger.info(
                "worker.task.cancelled_during_run",
                extra={"extra": {"task_type": task.task_type, "attempt": task.attempts}},
            )
            return
        _count(task.task_type, "succeeded")
        logger.info(
            "worker.task.succeeded",
            extra={
                "extra": {
                    "task_type": task.task_type,
                    "attempt": task.attempts,
                    "duration_ms": entry["duration_ms"],
                    "follow_ups": len(outcome.follow_ups),
                }
            },
        )
        for follow_up in outcome.follow_ups:
            await self._enqueue_follow_up(task, follow_up)

    async def _fail(self, task: Task, exc: Exception, *, terminal: bool) -> None:
        backoff_s = compute_backoff(
            task.attempts,
            base_s=self._config.backoff_base_s,
            cap_s=self._config.backoff_cap_s,
            rng=self._rng,
        )
        entry: dict[str, Any] = {
            "at": self._clock().isoformat(),
            "attempt": task.attempts,
            "event": "failed",
            "error": str(exc),
            "error_type": type(exc).__name__,
        }
        if isinstance(exc, DomainError):
            entry["code"] = exc.code

        async def _record(uow: UnitOfWork) -> TaskStatus:
            repo: TaskQueueRepository = uow.get_repository(TaskQueueRepository)
            return await repo.mark_failed(
                task, error=str(exc), log_entry=entry, backoff_s=backoff_s, terminal=terminal
            )

        status = await run_in_uow(self._uow_factory(), _record)
        if isinstance(exc, UnknownTaskTypeError):
            outcome = "unknown_type"
        elif status is TaskStatus.FAILED:
            outcome = "failed"
        else:
            outcome = "retried"
        _count(task.task_type, outcome)
        logger.error(
            "worker.task.failed",
            exc_info=exc,
            extra={
                "extra": {
                    "task_type": task.task_type,
                    "attempt": task.attempts,
                    "max_attempts": task.max_attempts,
                    "status": status.value,
                    "backoff_s": round(backoff_s, 3) if status is TaskStatus.PENDING else None,
                }
            },
        )

    async def _enqueue_follow_up(self, parent: Task, follow_up: NewTask) -> None:
        async def _enqueue(uow: UnitOfWork) -> bool:
            repo: TaskQueueRepository = uow.get_repository(TaskQueueRepository)
            if await repo.find_pending_for_scope(follow_up.task_type, follow_up.scope):
                return False
            await repo.enqueue(follow_up)
            return True

        try:
            created = await run_in_uow(self._uow_factory(), _enqueue)
        except Exception:
            logger.exception(
                "worker.follow_up.failed",
                extra={
                    "extra": {
                        "parent_task_id": str(parent.id),
                        "follow_up_type": follow_up.task_type.value,
                    }
                },
            )
            return
        logger.info(
            "worker.follow_up.enqueued" if created else "worker.follow_up.deduplicated",
            extra={
                "extra": {
                    "parent_task_id": str(parent.id),
                    "follow_up_type": follow_up.task_type.value,
                    "scope_type": follow_up.scope.scope_type.value,
                    "scope_id": follow_up.scope.scope_id,
                }
            },
        )
