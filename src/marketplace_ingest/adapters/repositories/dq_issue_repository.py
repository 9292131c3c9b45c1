# src/marketplace_ingest/adapters/repositories/dq_issue_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Data-quality issue repository (SQLAlchemy).

Purpose:
    Persist DQ issues and drive their lifecycle:
    OPEN -> ACKNOWLEDGED -> RESOLVED | IGNORED.

Layer:
    adapters/repositories
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import func, insert, select, update

from marketplace_ingest.adapters.repositories.base_repository import BaseRepository
from marketplace_ingest.domain.entities.dq_issue import DQIssue, DQIssueCounts
from marketplace_ingest.domain.enums.dq import (
    AUTO_RESOLVABLE_TYPES,
    DQIssueType,
    DQSeverity,
    DQStatus,
)
from marketplace_ingest.domain.interfaces.repositories.dq_issue_repository import (
    AUTO_RESOLVE_NOTES,
)
from marketplace_ingest.infrastructure.database.models.dq import DQIssueModel

_ACTIVE = (DQStatus.OPEN.value, DQStatus.ACKNOWLEDGED.value)


def _to_row(issue: DQIssue, now: Any) -> dict[str, Any]:
    return {
        "asin": issue.asin,
        "marketplace_id": issue.marketplace_id,
        "asin_entity_id": issue.asin_entity_id,
        "ingestion_run_id": issue.ingestion_run_id,
        "snapshot_id": issue.snapshot_id,
        "issue_type": issue.issue_type.value,
        "field_name": issue.field_name,
        "severity": issue.severity.value,
        "status": issue.status.value,
        "message": issue.message,
        "details": dict(issue.details),
        "detected_at": issue.detected_at or now,
        "created_at": now,
        "updated_at": now,
    }


def _to_entity(row: DQIssueModel) -> DQIssue:
    return DQIssue(
        id=row.id,
        asin=row.asin,
        marketplace_id=row.marketplace_id,
        asin_entity_id=row.asin_entity_id,
        ingestion_run_id=row.ingestion_run_id,
        snapshot_id=row.snapshot_id,
        issue_type=DQIssueType(row.issue_type),
        field_name=row.field_name,
        severity=DQSeverity(row.severity),
        status=DQStatus(row.status),
        message=row.message,
        details=row.details or {},
        detected_at=row.detected_at,
        acknowledged_at=row.acknowledged_at,
        acknowledged_by=row.acknowledged_by,
        resolved_at=row.resolved_at,
        resolution_notes=row.resolution_notes,
    )


class SqlAlchemyDQIssueRepository(BaseRepository[DQIssueModel]):
    """SQLAlchemy-backed DQ issue store."""

    _TABLE = "dq_issues"

    # ------------------------------------------------------------------ #
    # Writes                                                             #
    # ------------------------------------------------------------------ #

    async def create(self, issue: DQIssue) -> DQIssue:
        """Insert one issue."""
        stmt = insert(DQIssueModel).values(_to_row(issue, self.utc_now())).returning(DQIssueModel)
        async with self._observe("dq_create"):
            res = await self._session.execute(stmt)
            return _to_entity(res.scalars().one())

    async def bulk_create(self, issues: Sequence[DQIssue]) -> int:
        """Insert many issues in one statement."""
        if not issues:
            return 0
        now = self.utc_now()
        stmt = insert(DQIssueModel).values([_to_row(i, now) for i in issues])
        async with self._observe("dq_bulk_create"):
            await self._session.execute(stmt)
        return len(issues)

    async def _transition(
        self,
        operation: str,
        issue_id: int,
        from_statuses: Sequence[str],
        values: dict[str, Any],
    ) -> bool:
        stmt = (
            update(DQIssueModel)
            .where(DQIssueModel.id == issue_id, DQIssueModel.status.in_(list(from_statuses)))
            .values(**values, updated_at=self.utc_now())
            .returning(DQIssueModel.id)
            .execution_options(synchronize_session=False)
        )
        async with self._observe(operation):
            res = await self._session.execute(stmt)
            return res.scalar_one_or_none() is not None

    async def acknowledge(self, issue_id: int, acknowledged_by: str) -> bool:
        """OPEN -> ACKNOWLEDGED."""
        return await self._transition(
            "dq_acknowledge",
            issue_id,
            (DQStatus.OPEN.value,),
            {
                "status": DQStatus.ACKNOWLEDGED.value,
                "acknowledged_at": self.utc_now(),
                "acknowledged_by": acknowledged_by,
            },
        )

    async def resolve(self, issue_id: int, notes: str | None = None) -> bool:
        """OPEN/ACKNOWLEDGED -> RESOLVED."""
        return await self._transition(
            "dq_resolve",
            issue_id,
            _ACTIVE,
            {
                "status": DQStatus.RESOLVED.value,
                "resolved_at": self.utc_now(),
                "resolution_notes": notes,
            },
        )

    async def ignore(self, issue_id: int, notes: str | None = None) -> bool:
        """OPEN/ACKNOWLEDGED -> IGNORED."""
        return await self._transition(
            "dq_ignore",
            issue_id,
            _ACTIVE,
            {
                "status": DQStatus.IGNORED.value,
                "resolved_at": self.utc_now(),
                "resolution_notes": notes,
            },
        )

    async def auto_resolve(
        self,
        asin: str,
        marketplace_id: int,
        issue_types: Sequence[DQIssueType] | None = None,
    ) -> int:
        """Resolve OPEN auto-resolvable issues for an item."""
        types = [t.value for t in (issue_types or AUTO_RESOLVABLE_TYPES)]
        now = self.utc_now()
        stmt = (
            update(DQIssueModel)
            .where(
                DQIssueModel.asin == asin,
                DQIssueModel.marketplace_id == marketplace_id,
                DQIssueModel.status == DQStatus.OPEN.value,
                DQIssueModel.issue_type.in_(types),
            )
            .values(
                status=DQStatus.RESOLVED.value,
                resolved_at=now,
                resolution_notes=AUTO_RESOLVE_NOTES,
                updated_at=now,
            )
            .returning(DQIssueModel.id)
            .execution_options(synchronize_session=False)
        )
        async with self._observe("dq_auto_resolve"):
            res = await self._session.execute(stmt)
            return len(res.scalars().all())

    # ------------------------------------------------------------------ #
    # Reads                                                              #
    # ------------------------------------------------------------------ #

    async def open_for_item(self, asin: str, marketplace_id: int) -> list[DQIssue]:
        """Return active issues for an item, newest first."""
        stmt = self.order_by_latest(
            select(DQIssueModel).where(
                DQIssueModel.asin == asin,
                DQIssueModel.marketplace_id == marketplace_id,
                DQIssueModel.status.in_(list(_ACTIVE)),
            ),
            DQIssueModel.detected_at,
            DQIssueModel.id,
        )

        async def _run() -> list[DQIssue]:
            return [_to_entity(r) for r in await self.fetch_all(stmt)]

        return await self._read("dq_open_for_item", _run, [])

    async def counts(self) -> DQIssueCounts:
        """Return counts by status and by severity (active issues only)."""
        empty = DQIssueCounts(
            by_status={s.value: 0 for s in DQStatus},
            by_severity={s.value: 0 for s in DQSeverity},
            open_critical=0,
        )
        stmt = select(DQIssueModel.status, DQIssueModel.severity, func.count()).group_by(
            DQIssueModel.status, DQIssueModel.severity
        )

        async def _run() -> DQIssueCounts:
            by_status = dict(empty.by_status)
            by_severity = dict(empty.by_severity)
            open_critical = 0
            res = await self._session.execute(stmt)
            for status, severity, n in res.all():
                by_status[status] = by_status.get(status, 0) + int(n)
                if status in _ACTIVE:
                    by_severity[severity] = by_severity.get(severity, 0) + int(n)
                if status == DQStatus.OPEN.value and severity == DQSeverity.CRITICAL.value:
                    open_critical += int(n)
            return DQIssueCounts(
                by_status=by_status, by_severity=by_severity, open_critical=open_critical
            )

        return await self._read("dq_counts", _run, empty)

    async def for_run(self, ingestion_run_id: UUID) -> list[DQIssue]:
        """Return issues detected by a run."""
        stmt = (
            select(DQIssueModel)
            .where(DQIssueModel.ingestion_run_id == ingestion_run_id)
            .order_by(DQIssueModel.asin, DQIssueModel.id)
        )

        async def _run() -> list[DQIssue]:
            return [_to_entity(r) for r in await self.fetch_all(stmt)]

        return await self._read("dq_for_run", _run, [])
