# src/marketplace_ingest/domain/interfaces/repositories/raw_payload_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Domain-facing interface for the raw landing store.

Payloads are append-only and keyed by (asin, marketplace_id, source,
ingestion_run_id). Landing the same key twice is a no-op, not an error.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol
from uuid import UUID

from marketplace_ingest.domain.entities.raw_payload import (
    ItemKey,
    RawPayload,
    RawPayloadBatchResult,
)
from marketplace_ingest.domain.enums.ingestion import PayloadSource


class RawPayloadRepository(Protocol):
    """Persistence contract for raw source payloads."""

    async def insert(self, payload: RawPayload) -> RawPayload | None:
        """Land one payload; returns None when the key already exists."""
        raise NotImplementedError

    async def bulk_insert(self, payloads: Sequence[RawPayload]) -> RawPayloadBatchResult:
        """Land many payloads in one statement, skipping duplicates."""
        raise NotImplementedError

    async def get_for_run_and_item(
        self, ingestion_run_id: UUID, asin: str, marketplace_id: int
    ) -> list[RawPayload]:
        """Return every payload landed for an item in a run."""
        raise NotImplementedError

    async def distinct_items_for_run(self, ingestion_run_id: UUID) -> list[ItemKey]:
        """Return the items that have at least one payload in a run."""
        raise NotImplementedError

    async def latest_for_item_and_source(
        self, asin: str, marketplace_id: int, source: PayloadSource
    ) -> RawPayload | None:
        """Return the most recently captured payload for an item and source."""
        raise NotImplementedError

    async def count_for_run(self, ingestion_run_id: UUID) -> int:
        """Return the number of payloads landed in a run."""
        raise NotImplementedError
