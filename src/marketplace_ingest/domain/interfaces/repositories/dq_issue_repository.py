# src/marketplace_ingest/domain/interfaces/repositories/dq_issue_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Domain-facing interface for data-quality issues and their lifecycle."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol
from uuid import UUID

from marketplace_ingest.domain.entities.dq_issue import DQIssue, DQIssueCounts
from marketplace_ingest.domain.enums.dq import DQIssueType

AUTO_RESOLVE_NOTES = "Auto-resolved after successful data refresh"


class DQIssueRepository(Protocol):
    """Persistence contract for DQ issues.

    Lifecycle transitions only apply to issues in a compatible state; each
    transition method returns False when nothing changed.
    """

    async def create(self, issue: DQIssue) -> DQIssue:
        """Insert one issue."""
        raise NotImplementedError

    async def bulk_create(self, issues: Sequence[DQIssue]) -> int:
        """Insert many issues; returns the number inserted."""
        raise NotImplementedError

    async def open_for_item(self, asin: str, marketplace_id: int) -> list[DQIssue]:
        """Return OPEN and ACKNOWLEDGED issues for an item, newest first."""
        raise NotImplementedError

    async def acknowledge(self, issue_id: int, acknowledged_by: str) -> bool:
        """Move an OPEN issue to ACKNOWLEDGED."""
        raise NotImplementedError

    async def resolve(self, issue_id: int, notes: str | None = None) -> bool:
        """Move an OPEN or ACKNOWLEDGED issue to RESOLVED."""
        raise NotImplementedError

    async def ignore(self, issue_id: int, notes: str | None = None) -> bool:
        """Move an OPEN or ACKNOWLEDGED issue to IGNORED."""
        raise NotImplementedError

    async def auto_resolve(
        self,
        asin: str,
        marketplace_id: int,
        issue_types: Sequence[DQIssueType] | None = None,
    ) -> int:
        """Resolve OPEN issues of the auto-resolvable types for an item.

        Returns:
            Number of issues resolved.
        """
        raise NotImplementedError

    async def counts(self) -> DQIssueCounts:
        """Return issue counts by status and severity."""
        raise NotImplementedError

    async def for_run(self, ingestion_run_id: UUID) -> list[DQIssue]:
        """Return the issues detected by a run."""
        raise NotImplementedError
