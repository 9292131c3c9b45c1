# tests/unit/adapters/repositories/test_dq_issue_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
from __future__ import annotations

import pytest

from fixtures.fake_session import FakeResult, FakeSession, compile_pg
from marketplace_ingest.adapters.repositories.dq_issue_repository import (
    SqlAlchemyDQIssueRepository,
)
from marketplace_ingest.domain.enums.dq import AUTO_RESOLVABLE_TYPES


@pytest.mark.anyio
async def test_auto_resolve_targets_open_auto_resolvable_issues() -> None:
    session = FakeSession(FakeResult([1, 2]))
    repo = SqlAlchemyDQIssueRepository(session)  # type: ignore[arg-type]

    assert await repo.auto_resolve("B000000001", 1) == 2

    sql, params = compile_pg(session.statements[0])
    assert "dq_issues.issue_type IN" in sql
    assert params["status"] == "RESOLVED"
    assert "OPEN" in params.values()
    flat = [v for value in params.values() for v in (value if isinstance(value, list) else [value])]
    assert {t.value for t in AUTO_RESOLVABLE_TYPES} <= set(flat)


@pytest.mark.anyio
async def test_acknowledge_only_from_open() -> None:
    session = FakeSession(FakeResult([7]), FakeResult([]))
    repo = SqlAlchemyDQIssueRepository(session)  # type: ignore[arg-type]

    assert await repo.acknowledge(7, "ops@example.com") is True
    assert await repo.acknowledge(7, "ops@example.com") is False

    _, params = compile_pg(session.statements[0])
    assert params["status"] == "ACKNOWLEDGED"
    assert params["acknowledged_by"] == "ops@example.com"


@pytest.mark.anyio
async def test_counts_fold_rows_by_status_and_severity() -> None:
    session = FakeSession(
        FakeResult(
            [
                ("OPEN", "CRITICAL", 2),
                ("OPEN", "WARN", 3),
                ("RESOLVED", "CRITICAL", 5),
            ]
        )
    )
    repo = SqlAlchemyDQIssueRepository(session)  # type: ignore[arg-type]

    counts = await repo.counts()

    assert counts.by_status["OPEN"] == 5
    assert counts.by_status["RESOLVED"] == 5
    assert counts.by_status["IGNORED"] == 0
    assert counts.by_severity["CRITICAL"] == 2
    assert counts.open_critical == 2


@pytest.mark.anyio
async def test_bulk_create_of_nothing_executes_nothing() -> None:
    session = FakeSession()

    assert await SqlAlchemyDQIssueRepository(session).bulk_create([]) == 0  # type: ignore[arg-type]
    assert session.statements == []
