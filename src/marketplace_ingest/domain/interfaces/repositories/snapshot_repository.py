# src/marketplace_ingest/domain/interfaces/repositories/snapshot_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Domain-facing interface for the append-only snapshot ledger."""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from marketplace_ingest.domain.entities.snapshot import FingerprintChange, PricePoint, Snapshot


class SnapshotRepository(Protocol):
    """Persistence contract for listing snapshots.

    Snapshots are never updated or deleted; ``append`` is a pure insert.
    """

    async def append(self, snapshot: Snapshot) -> Snapshot:
        """Insert a snapshot and return it with its id."""
        raise NotImplementedError

    async def latest(self, asin: str, marketplace_id: int) -> Snapshot | None:
        """Return the newest snapshot by ``snapshot_time``."""
        raise NotImplementedError

    async def get(self, snapshot_id: int) -> Snapshot | None:
        """Return a snapshot by id."""
        raise NotImplementedError

    async def history(self, asin: str, marketplace_id: int, limit: int = 30) -> list[Snapshot]:
        """Return snapshots newest first."""
        raise NotImplementedError

    async def by_fingerprint(self, fingerprint: str) -> list[Snapshot]:
        """Return every snapshot carrying the given fingerprint."""
        raise NotImplementedError

    async def for_run(self, ingestion_run_id: UUID) -> list[Snapshot]:
        """Return the snapshots appended by a run."""
        raise NotImplementedError

    async def count_for_run(self, ingestion_run_id: UUID) -> int:
        """Return the number of snapshots appended by a run."""
        raise NotImplementedError

    async def fingerprint_changes(
        self, asin: str, marketplace_id: int, limit: int = 30
    ) -> list[FingerprintChange]:
        """Return fingerprint history with the previous value alongside, newest first."""
        raise NotImplementedError

    async def price_history(
        self, asin: str, marketplace_id: int, days: int = 30
    ) -> list[PricePoint]:
        """Return price observations within the last ``days`` days, oldest first."""
        raise NotImplementedError
