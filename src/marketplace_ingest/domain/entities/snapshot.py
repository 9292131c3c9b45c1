# src/marketplace_ingest/domain/entities/snapshot.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Snapshot ledger and current-state entities.

Purpose:
    Represent the append-only per-run history of an item and its single
    materialized "current" row.

Layer:
    domain/entities

Notes:
    - ``Snapshot.snapshot_time`` is the as-of time: the latest capture time of
      the payloads it was built from, not the time the transform ran.
    - ``CurrentState.last_snapshot_time`` is monotonically non-decreasing per
      item; the repository enforces this with a guarded upsert.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from marketplace_ingest.domain.entities.listing_record import ListingRecord

__all__ = [
    "Snapshot",
    "CurrentState",
    "UpsertOutcome",
    "FingerprintChange",
    "PricePoint",
]


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Append-only record of what was known about an item in one run."""

    asin: str
    marketplace_id: int
    ingestion_run_id: UUID
    record: ListingRecord
    fingerprint: str
    transform_version: int
    snapshot_time: datetime
    asin_entity_id: int | None = None
    amazon_raw: Mapping[str, Any] | None = None
    keepa_raw: Mapping[str, Any] | None = None
    id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class CurrentState:
    """Materialized latest state for one item."""

    asin: str
    marketplace_id: int
    latest_snapshot_id: int
    record: ListingRecord
    fingerprint: str
    last_ingestion_run_id: UUID
    last_snapshot_time: datetime
    asin_entity_id: int | None = None
    first_seen_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> CurrentState:
        """Build the current-state row a persisted snapshot implies.

        Raises:
            ValueError: If the snapshot has not been persisted yet.
        """
        if snapshot.id is None:
            raise ValueError("snapshot must be persisted before materializing")
        return cls(
            asin=snapshot.asin,
            marketplace_id=snapshot.marketplace_id,
            latest_snapshot_id=snapshot.id,
            record=snapshot.record,
            fingerprint=snapshot.fingerprint,
            last_ingestion_run_id=snapshot.ingestion_run_id,
            last_snapshot_time=snapshot.snapshot_time,
            asin_entity_id=snapshot.asin_entity_id,
        )


@dataclass(frozen=True, slots=True)
class UpsertOutcome:
    """Result of a guarded current-state upsert.

    Attributes:
        applied: False when the freshness guard discarded the write.
        inserted: True when a new row was created.
    """

    applied: bool
    inserted: bool = False


@dataclass(frozen=True, slots=True)
class FingerprintChange:
    """One step of an item's fingerprint history."""

    snapshot_id: int
    snapshot_time: datetime
    fingerprint: str
    previous_fingerprint: str | None

    @property
    def changed(self) -> bool:
        """Return True when this snapshot differs from its predecessor."""
        return self.previous_fingerprint is None or self.previous_fingerprint != self.fingerprint


@dataclass(frozen=True, slots=True)
class PricePoint:
    """Price observation taken from a snapshot."""

    snapshot_time: datetime
    price_inc_vat: float | None
    buy_box_price: float | None
    keepa_price_median_90d: int | None
