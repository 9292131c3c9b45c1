# src/marketplace_ingest/domain/entities/dq_issue.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Data-quality issue entities.

Purpose:
    Represent issues emitted by the DQ rule engine and their operator-facing
    lifecycle (OPEN -> ACKNOWLEDGED -> RESOLVED | IGNORED).

Layer:
    domain/entities
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from uuid import UUID

from marketplace_ingest.domain.enums.dq import DQIssueType, DQSeverity, DQStatus

__all__ = ["DQIssue", "DQIssueCounts"]


@dataclass(frozen=True, slots=True)
class DQIssue:
    """A single detected data-quality problem for an item.

    Attributes:
        asin: Item identifier.
        marketplace_id: Internal marketplace id.
        issue_type: Kind of problem.
        severity: WARN or CRITICAL.
        message: Human-readable description.
        field_name: Field (or sentinel) the issue refers to.
        details: Structured context (value, expected, thresholds).
        status: Lifecycle state.
        ingestion_run_id: Run that detected the issue, if any.
        snapshot_id: Snapshot the issue was evaluated against, if any.
        asin_entity_id: Optional catalog entity reference.
        id: Storage id; None until persisted.
        detected_at: Detection time.
        acknowledged_at: Time an operator acknowledged the issue.
        acknowledged_by: Operator identifier.
        resolved_at: Resolution time.
        resolution_notes: Free-text resolution notes.
    """

    asin: str
    marketplace_id: int
    issue_type: DQIssueType
    severity: DQSeverity
    message: str
    field_name: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)
    status: DQStatus = DQStatus.OPEN
    ingestion_run_id: UUID | None = None
    snapshot_id: int | None = None
    asin_entity_id: int | None = None
    id: int | None = None
    detected_at: datetime | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None

    def for_snapshot(self, snapshot_id: int) -> DQIssue:
        """Return a copy attached to a persisted snapshot."""
        return replace(self, snapshot_id=snapshot_id)


@dataclass(frozen=True, slots=True)
class DQIssueCounts:
    """Aggregate issue counts for dashboards and CLI output."""

    by_status: Mapping[str, int]
    by_severity: Mapping[str, int]
    open_critical: int
