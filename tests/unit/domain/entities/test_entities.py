# tests/unit/domain/entities/test_entities.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Domain entity invariants."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from uuid import uuid4

import pytest

from marketplace_ingest.domain.entities.dq_issue import DQIssue
from marketplace_ingest.domain.entities.ingestion_run import IngestionCycleResult
from marketplace_ingest.domain.entities.listing_record import RECORD_FIELDS, ListingRecord
from marketplace_ingest.domain.entities.snapshot import CurrentState, FingerprintChange, Snapshot
from marketplace_ingest.domain.entities.task import NewTask, Task, TaskScope
from marketplace_ingest.domain.enums.dq import DQIssueType, DQSeverity
from marketplace_ingest.domain.enums.ingestion import IngestionRunStatus
from marketplace_ingest.domain.enums.task import TaskStatus, TaskType
from marketplace_ingest.domain.exceptions.ingestion import RecordSchemaError

NOW = datetime(2025, 1, 15, tzinfo=UTC)


def _task(task_type: str, attempts: int = 0, max_attempts: int = 3) -> Task:
    return Task(
        id=uuid4(),
        task_type=task_type,
        scope=TaskScope(),
        input={},
        status=TaskStatus.PENDING,
        priority=5,
        attempts=attempts,
        max_attempts=max_attempts,
        scheduled_for=NOW,
    )


def test_listing_record_rejects_unknown_fields() -> None:
    with pytest.raises(RecordSchemaError) as exc:
        ListingRecord.from_mapping({"title": "x", "colour": "red"})

    assert exc.value.details["unknown_fields"] == ["colour"]
    assert exc.value.code == "RECORD_SCHEMA_INVALID"


def test_listing_record_json_dict_renders_datetimes() -> None:
    record = ListingRecord.from_mapping({"keepa_last_update": NOW, "total_stock": 0})
    out = record.to_json_dict()

    assert out["keepa_last_update"] == NOW.isoformat()
    assert out["total_stock"] == 0
    assert set(out) == RECORD_FIELDS


def test_task_known_type_and_attempt_budget() -> None:
    assert _task("SYNC_KEEPA_ASIN").known_type is TaskType.SYNC_KEEPA_ASIN
    assert _task("LEGACY_THING").known_type is None
    assert _task("SYNC_KEEPA_ASIN", attempts=2).has_attempts_left
    assert not _task("SYNC_KEEPA_ASIN", attempts=3).has_attempts_left


def test_new_task_requires_positive_attempt_budget() -> None:
    with pytest.raises(ValueError):
        NewTask(task_type=TaskType.SYNC_KEEPA_ASIN, max_attempts=0)


def test_task_status_flags() -> None:
    assert TaskStatus.SUCCEEDED.is_terminal
    assert not TaskStatus.RUNNING.is_terminal
    assert TaskStatus.RUNNING.is_cancellable
    assert not TaskStatus.FAILED.is_cancellable


def test_current_state_requires_persisted_snapshot() -> None:
    snapshot = Snapshot(
        asin="B000000001",
        marketplace_id=1,
        ingestion_run_id=uuid4(),
        record=ListingRecord(title="x"),
        fingerprint="f" * 64,
        transform_version=1,
        snapshot_time=NOW,
    )
    with pytest.raises(ValueError):
        CurrentState.from_snapshot(snapshot)

    current = CurrentState.from_snapshot(replace(snapshot, id=9))
    assert current.latest_snapshot_id == 9
    assert current.last_snapshot_time == NOW
    assert current.last_ingestion_run_id == snapshot.ingestion_run_id


def test_dq_issue_for_snapshot() -> None:
    issue = DQIssue(
        asin="B000000001",
        marketplace_id=1,
        issue_type=DQIssueType.STALE_DATA,
        severity=DQSeverity.WARN,
        message="old",
    )
    assert issue.for_snapshot(4).snapshot_id == 4
    assert issue.snapshot_id is None


def test_fingerprint_change_and_cycle_result_flags() -> None:
    assert FingerprintChange(1, NOW, "a", None).changed
    assert not FingerprintChange(2, NOW, "a", "a").changed
    assert IngestionCycleResult(ingestion_run_id=None, status=None).skipped
    assert not IngestionCycleResult(uuid4(), IngestionRunStatus.SUCCEEDED).skipped
