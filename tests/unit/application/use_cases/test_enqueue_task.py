# tests/unit/application/use_cases/test_enqueue_task.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""EnqueueTask: validation, cancel and stats."""

from __future__ import annotations

from uuid import uuid4

import pytest

from fixtures.ingest_fakes import T0, InMemoryStore
from marketplace_ingest.application.use_cases.enqueue_task import (
    EnqueueTask,
    EnqueueTaskRequest,
    build_new_task,
)
from marketplace_ingest.domain.entities.task import TaskScope
from marketplace_ingest.domain.enums.task import ScopeType, TaskStatus, TaskType
from marketplace_ingest.domain.exceptions.tasks import TaskNotFoundError, UnknownTaskTypeError


def test_build_new_task_validates_vocabularies() -> None:
    new = build_new_task(
        EnqueueTaskRequest(
            task_type="SYNC_KEEPA_ASIN",
            scope_type="ASIN",
            scope_id="7",
            input={"asin": "B000000001"},
            priority=9,
        ),
        default_max_attempts=4,
    )

    assert new.task_type is TaskType.SYNC_KEEPA_ASIN
    assert new.scope == TaskScope(ScopeType.ASIN, "7")
    assert new.priority == 9
    assert new.max_attempts == 4


def test_unknown_type_lists_known_types() -> None:
    with pytest.raises(UnknownTaskTypeError) as exc:
        build_new_task(EnqueueTaskRequest(task_type="REFRESH_ALL"), default_max_attempts=3)

    assert "SYNC_KEEPA_ASIN" in exc.value.details["known"]


def test_invalid_scope_and_budget_raise_value_error() -> None:
    with pytest.raises(ValueError):
        build_new_task(
            EnqueueTaskRequest(task_type="SYNC_KEEPA_ASIN", scope_type="SELLER"),
            default_max_attempts=3,
        )
    with pytest.raises(ValueError):
        build_new_task(
            EnqueueTaskRequest(task_type="SYNC_KEEPA_ASIN", max_attempts=0),
            default_max_attempts=3,
        )


@pytest.mark.anyio
async def test_enqueue_cancel_and_stats(store: InMemoryStore, uow_factory) -> None:
    use_case = EnqueueTask(uow_factory=uow_factory, default_max_attempts=2)

    task = await use_case.execute(
        EnqueueTaskRequest(task_type="INGEST_ASIN_DATA", input={"asin": "B000000001"})
    )

    assert task.status is TaskStatus.PENDING
    assert task.max_attempts == 2
    assert task.scheduled_for == T0
    assert store.tasks[task.id].input == {"asin": "B000000001"}

    assert await use_case.cancel(task.id) is True
    assert await use_case.cancel(task.id) is False

    stats = await use_case.stats()
    assert stats[TaskStatus.CANCELLED] == 1
    assert stats[TaskStatus.PENDING] == 0
    assert set(stats) == set(TaskStatus)


@pytest.mark.anyio
async def test_cancel_unknown_task(uow_factory) -> None:
    with pytest.raises(TaskNotFoundError):
        await EnqueueTask(uow_factory=uow_factory).cancel(uuid4())
