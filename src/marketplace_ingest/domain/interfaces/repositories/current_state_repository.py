# src/marketplace_ingest/domain/interfaces/repositories/current_state_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Domain-facing interface for the current-state materializer.

Contract:
    ``upsert`` is guarded by freshness: a write whose ``last_snapshot_time``
    is older than the stored row is discarded (``applied=False``). Equal
    times are applied, so replaying the same snapshot is idempotent.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Protocol

from marketplace_ingest.domain.entities.raw_payload import ItemKey
from marketplace_ingest.domain.entities.snapshot import CurrentState, UpsertOutcome


class CurrentStateRepository(Protocol):
    """Persistence contract for the one-row-per-item current view."""

    async def upsert(self, current: CurrentState) -> UpsertOutcome:
        """Insert or freshness-guarded update of the current row."""
        raise NotImplementedError

    async def get(self, asin: str, marketplace_id: int) -> CurrentState | None:
        """Return the current row for an item."""
        raise NotImplementedError

    async def list_stale(self, max_age: timedelta, limit: int = 100) -> list[CurrentState]:
        """Return rows whose ``last_snapshot_time`` is older than ``max_age``, oldest first."""
        raise NotImplementedError

    async def list_tracked_items(self, marketplace_id: int | None = None) -> list[ItemKey]:
        """Return every item that has a current row."""
        raise NotImplementedError
