# src/marketplace_ingest/domain/entities/raw_payload.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Raw landing entities."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from marketplace_ingest.domain.enums.ingestion import PayloadSource

__all__ = ["ItemKey", "RawPayload", "RawPayloadBatchResult"]


@dataclass(frozen=True, slots=True)
class ItemKey:
    """Identity of a tracked catalog item (marketplace product id + marketplace)."""

    asin: str
    marketplace_id: int


@dataclass(frozen=True, slots=True)
class RawPayload:
    """Exact payload received from one source for one item in one run.

    Attributes:
        asin: Marketplace product identifier.
        marketplace_id: Internal marketplace id.
        source: Originating source.
        ingestion_run_id: Run that captured the payload.
        payload: Unmodified JSON body.
        captured_at: Time the payload was received.
        id: Storage id; None until persisted.
    """

    asin: str
    marketplace_id: int
    source: PayloadSource
    ingestion_run_id: UUID
    payload: Mapping[str, Any]
    captured_at: datetime
    id: int | None = None

    @property
    def item(self) -> ItemKey:
        """Return the item identity."""
        return ItemKey(asin=self.asin, marketplace_id=self.marketplace_id)


@dataclass(frozen=True, slots=True)
class RawPayloadBatchResult:
    """Counts from a batch landing call."""

    inserted: int
    skipped: int
