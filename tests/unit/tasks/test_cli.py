# tests/unit/tasks/test_cli.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""CLI commands wired to an in-memory runtime."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any
from uuid import uuid4

import pytest
from typer.testing import CliRunner

from fixtures.ingest_fakes import (
    T0,
    FakeKeepaGateway,
    FakeSpApiGateway,
    InMemoryStore,
    keepa_product,
    uow_factory_for,
)
from marketplace_ingest.config.settings import Settings
from marketplace_ingest.domain.entities.listing_record import ListingRecord
from marketplace_ingest.domain.entities.snapshot import CurrentState
from marketplace_ingest.domain.enums.task import TaskStatus, TaskType
from marketplace_ingest.tasks import cli

ASIN = "B000000001"
runner = CliRunner()


def _json_out(output: str) -> dict[str, Any]:
    for line in reversed(output.strip().splitlines()):
        if line.startswith("{"):
            return json.loads(line)
    raise AssertionError(f"no JSON line in output: {output!r}")


@pytest.fixture
def sources() -> dict[str, Any]:
    return {
        "keepa": FakeKeepaGateway({ASIN: keepa_product(ASIN)}),
        "sp_api": FakeSpApiGateway({ASIN: {"catalogItem": {"title": "Widget"}}}),
    }


@pytest.fixture
def wired(
    monkeypatch: pytest.MonkeyPatch, store: InMemoryStore, sources: dict[str, Any]
) -> InMemoryStore:
    settings = Settings(DATABASE_URL="postgresql+asyncpg://u:p@localhost:5432/ingest")

    @asynccontextmanager
    async def _runtime(*, with_sources: bool = True) -> AsyncIterator[cli.Runtime]:
        yield cli.Runtime(
            settings=settings,
            uow_factory=uow_factory_for(store),
            keepa=sources["keepa"] if with_sources else None,
            sp_api=sources["sp_api"] if with_sources else None,
        )

    monkeypatch.setattr(cli, "runtime", _runtime)
    return store


def test_enqueue_prints_task_and_persists_input(wired: InMemoryStore) -> None:
    result = runner.invoke(cli.app, ["task", "enqueue", "sync_keepa_asin", "--asin", ASIN])

    assert result.exit_code == 0, result.output
    out = _json_out(result.stdout)
    assert out["status"] == "PENDING"
    assert out["task_type"] == TaskType.SYNC_KEEPA_ASIN.value
    (task,) = wired.tasks.values()
    assert task.input == {"asin": ASIN, "marketplace_id": 1}
    assert task.created_by == "cli"
    assert task.max_attempts == 3


def test_enqueue_unknown_type_exits_2(wired: InMemoryStore) -> None:
    result = runner.invoke(cli.app, ["task", "enqueue", "REFRESH_ALL", "--asin", ASIN])

    assert result.exit_code == 2
    assert "INGEST_ASIN_DATA" in result.output
    assert wired.tasks == {}


def test_cancel_unknown_task_exits_1(wired: InMemoryStore) -> None:
    task_id = uuid4()

    result = runner.invoke(cli.app, ["task", "cancel", str(task_id)])

    assert result.exit_code == 1
    assert f"Task {task_id} not found" in result.output


def test_stats_lists_every_status(wired: InMemoryStore) -> None:
    runner.invoke(cli.app, ["task", "enqueue", "INGEST_ASIN_DATA", "--asin", ASIN])

    result = runner.invoke(cli.app, ["task", "stats"])

    assert result.exit_code == 0
    out = _json_out(result.stdout)
    assert set(out) == {s.value for s in TaskStatus}
    assert out["PENDING"] == 1


def test_enqueue_stale_targets_old_rows(wired: InMemoryStore) -> None:
    for asin, age in (("B000000001", timedelta(hours=2)), ("B000000002", timedelta(minutes=1))):
        wired.current[(asin, 1)] = CurrentState(
            asin=asin,
            marketplace_id=1,
            latest_snapshot_id=1,
            record=ListingRecord(),
            fingerprint="0" * 64,
            last_ingestion_run_id=uuid4(),
            last_snapshot_time=T0 - age,
        )

    result = runner.invoke(cli.app, ["task", "enqueue-stale"])

    assert result.exit_code == 0, result.output
    assert _json_out(result.stdout)["enqueued"] == 1
    (task,) = wired.tasks.values()
    assert task.task_type == TaskType.INGEST_ASIN_DATA.value
    assert task.scope.scope_id == "B000000001"


def test_worker_once_processes_a_batch(wired: InMemoryStore) -> None:
    runner.invoke(cli.app, ["task", "enqueue", "INGEST_ASIN_DATA", "--asin", ASIN])

    result = runner.invoke(cli.app, ["worker", "run", "--once"])

    assert result.exit_code == 0, result.output
    assert _json_out(result.stdout) == {"processed": 1}
    statuses = sorted(t.status.value for t in wired.tasks.values())
    assert statuses == ["PENDING", "SUCCEEDED"]


def test_cycle_succeeds_for_explicit_asin(wired: InMemoryStore) -> None:
    result = runner.invoke(cli.app, ["ingest", "cycle", "--asin", ASIN])

    assert result.exit_code == 0, result.output
    out = _json_out(result.stdout)
    assert out["status"] == "SUCCEEDED"
    assert out["succeeded"] == 1
    assert (ASIN, 1) in wired.current


def test_cycle_with_missing_item_exits_1(wired: InMemoryStore) -> None:
    result = runner.invoke(cli.app, ["ingest", "cycle", "--asin", "B000000009"])

    assert result.exit_code == 1
    out = _json_out(result.stdout)
    assert out["status"] == "PARTIAL"
    assert out["missing"] == ["B000000009"]


def test_cycle_skipped_when_locked(wired: InMemoryStore) -> None:
    wired.lock_held = True

    result = runner.invoke(cli.app, ["ingest", "cycle", "--asin", ASIN])

    assert result.exit_code == 0
    assert _json_out(result.stdout)["status"] == "SKIPPED_LOCKED"
    assert wired.runs == {}


def test_db_init_creates_schema(wired: InMemoryStore, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[bool] = []

    async def _create_schema() -> None:
        calls.append(True)

    monkeypatch.setattr(cli, "create_schema", _create_schema)

    result = runner.invoke(cli.app, ["db", "init"])

    assert result.exit_code == 0, result.output
    assert calls == [True]
