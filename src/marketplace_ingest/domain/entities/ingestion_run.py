# src/marketplace_ingest/domain/entities/ingestion_run.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Ingestion run entities."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from marketplace_ingest.domain.enums.ingestion import IngestionRunStatus, IngestionRunType

__all__ = ["IngestionRun", "IngestionCycleResult", "TransformResult"]


@dataclass(frozen=True, slots=True)
class IngestionRun:
    """Tracking row for one execution of the ingestion pipeline."""

    id: UUID
    run_type: IngestionRunType
    status: IngestionRunStatus
    item_count: int = 0
    items_succeeded: int = 0
    items_failed: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    error_details: Mapping[str, Any] | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class TransformResult:
    """Outcome of transforming and persisting one item.

    Attributes:
        asin: Item identifier.
        marketplace_id: Internal marketplace id.
        snapshot_id: Id of the appended snapshot.
        fingerprint: Fingerprint of the derived record.
        changed: True when the fingerprint differs from the previous snapshot.
        current_applied: False when the freshness guard discarded the write.
        dq_issue_count: Issues recorded for the item in this run.
        duration_ms: Wall time spent transforming and persisting.
    """

    asin: str
    marketplace_id: int
    snapshot_id: int
    fingerprint: str
    changed: bool
    current_applied: bool
    dq_issue_count: int
    duration_ms: int


@dataclass(frozen=True, slots=True)
class IngestionCycleResult:
    """Summary returned by a full ingestion cycle.

    ``ingestion_run_id`` and ``status`` are None when the cycle was skipped
    because another process held the ingestion lock.
    """

    ingestion_run_id: UUID | None
    status: IngestionRunStatus | None
    item_count: int = 0
    succeeded: int = 0
    failed: int = 0
    missing: Sequence[str] = ()
    skipped_identifiers: Sequence[str] = ()
    duration_ms: int = 0

    @property
    def skipped(self) -> bool:
        """Return True when the cycle did not run."""
        return self.ingestion_run_id is None
