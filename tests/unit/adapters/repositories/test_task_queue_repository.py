# tests/unit/adapters/repositories/test_task_queue_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""SqlAlchemyTaskQueueRepository statement shapes."""

from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any
from uuid import UUID, uuid4

import pytest

from fixtures.fake_session import FakeResult, FakeSession, compile_pg
from marketplace_ingest.adapters.repositories.task_queue_repository import (
    SqlAlchemyTaskQueueRepository,
)
from marketplace_ingest.domain.entities.task import Task, TaskScope
from marketplace_ingest.domain.enums.task import ScopeType, TaskStatus, TaskType

T0 = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


def _row(*, task_id: UUID | None = None, priority: int = 5, **overrides: Any) -> SimpleNamespace:
    values: dict[str, Any] = {
        "id": task_id or uuid4(),
        "task_type": TaskType.SYNC_KEEPA_ASIN.value,
        "scope_type": ScopeType.ASIN.value,
        "scope_id": "B000000001",
        "input": {"asin": "B000000001"},
        "status": TaskStatus.RUNNING.value,
        "priority": priority,
        "attempts": 1,
        "max_attempts": 3,
        "scheduled_for": T0,
        "started_at": T0,
        "finished_at": None,
        "result": None,
        "error_message": None,
        "log": [],
        "created_by": "system",
        "created_at": T0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _task(attempts: int, max_attempts: int = 3) -> Task:
    return Task(
        id=uuid4(),
        task_type=TaskType.SYNC_KEEPA_ASIN.value,
        scope=TaskScope(),
        input={},
        status=TaskStatus.RUNNING,
        priority=5,
        attempts=attempts,
        max_attempts=max_attempts,
        scheduled_for=T0,
    )


@pytest.mark.anyio
async def test_claim_selects_with_skip_locked_and_stops_when_empty() -> None:
    session = FakeSession(FakeResult([]))
    repo = SqlAlchemyTaskQueueRepository(session)  # type: ignore[arg-type]

    assert await repo.claim_next(5) == []

    (pick,) = session.statements
    sql, params = compile_pg(pick)
    assert "FOR UPDATE SKIP LOCKED" in sql
    assert "tasks.attempts < tasks.max_attempts" in sql
    assert "ORDER BY tasks.priority DESC, tasks.scheduled_for ASC" in sql
    assert "PENDING" in params.values()
    assert 5 in params.values()


@pytest.mark.anyio
async def test_claim_flips_picked_rows_to_running_in_priority_order() -> None:
    low, high = uuid4(), uuid4()
    session = FakeSession(
        FakeResult([low, high]),
        FakeResult([_row(task_id=low, priority=1), _row(task_id=high, priority=9)]),
    )
    repo = SqlAlchemyTaskQueueRepository(session)  # type: ignore[arg-type]

    tasks = await repo.claim_next(2)

    assert [t.id for t in tasks] == [high, low]
    assert tasks[0].scope == TaskScope(ScopeType.ASIN, "B000000001")
    sql, params = compile_pg(session.statements[1])
    assert sql.startswith("UPDATE tasks SET")
    assert "tasks.attempts +" in sql
    assert "tasks.attempts < tasks.max_attempts" in sql
    assert "RETURNING" in sql
    assert params["status"] == "RUNNING"
    assert "PENDING" in params.values()


@pytest.mark.anyio
async def test_claim_with_zero_batch_is_a_no_op() -> None:
    session = FakeSession()

    repo = SqlAlchemyTaskQueueRepository(session)  # type: ignore[arg-type]

    assert await repo.claim_next(0) == []
    assert session.statements == []


@pytest.mark.anyio
async def test_mark_succeeded_only_touches_running_rows() -> None:
    session = FakeSession(FakeResult([uuid4()]), FakeResult([]))
    repo = SqlAlchemyTaskQueueRepository(session)  # type: ignore[arg-type]

    assert await repo.mark_succeeded(uuid4(), {"ok": True}) is True
    assert await repo.mark_succeeded(uuid4(), {"ok": True}) is False

    sql, params = compile_pg(session.statements[0])
    assert params["status"] == "SUCCEEDED"
    assert "RUNNING" in params.values()
    assert "tasks.status =" in sql


@pytest.mark.anyio
async def test_mark_failed_reschedules_while_attempts_remain() -> None:
    session = FakeSession()
    repo = SqlAlchemyTaskQueueRepository(session)  # type: ignore[arg-type]

    status = await repo.mark_failed(
        _task(attempts=1), error="boom", log_entry={"attempt": 1}, backoff_s=30
    )

    assert status is TaskStatus.PENDING
    sql, params = compile_pg(session.statements[0])
    assert "scheduled_for" in params
    assert "finished_at" not in params
    assert "tasks.log ||" in sql


@pytest.mark.anyio
async def test_mark_failed_is_terminal_when_exhausted_or_forced() -> None:
    session = FakeSession()
    repo = SqlAlchemyTaskQueueRepository(session)  # type: ignore[arg-type]

    exhausted = await repo.mark_failed(
        _task(attempts=3), error="boom", log_entry={}, backoff_s=30
    )
    forced = await repo.mark_failed(
        _task(attempts=1), error="bad input", log_entry={}, backoff_s=30, terminal=True
    )

    assert exhausted is forced is TaskStatus.FAILED
    for stmt in session.statements:
        _, params = compile_pg(stmt)
        assert params["status"] == "FAILED"
        assert "finished_at" in params


@pytest.mark.anyio
async def test_cancel_reports_whether_a_row_changed() -> None:
    session = FakeSession(FakeResult([uuid4()]), FakeResult([]))
    repo = SqlAlchemyTaskQueueRepository(session)  # type: ignore[arg-type]

    assert await repo.cancel(uuid4()) is True
    assert await repo.cancel(uuid4()) is False


@pytest.mark.anyio
async def test_find_pending_matches_null_scope_id() -> None:
    session = FakeSession(FakeResult([]))
    repo = SqlAlchemyTaskQueueRepository(session)  # type: ignore[arg-type]

    await repo.find_pending_for_scope(TaskType.COMPUTE_FEATURES_ASIN, TaskScope())

    sql, _ = compile_pg(session.statements[0])
    assert "tasks.scope_id IS NULL" in sql


@pytest.mark.anyio
async def test_count_by_status_fills_missing_statuses() -> None:
    session = FakeSession(FakeResult([("PENDING", 4), ("FAILED", 1)]))
    repo = SqlAlchemyTaskQueueRepository(session)  # type: ignore[arg-type]

    counts = await repo.count_by_status()

    assert counts[TaskStatus.PENDING] == 4
    assert counts[TaskStatus.FAILED] == 1
    assert counts[TaskStatus.RUNNING] == 0
