# src/marketplace_ingest/domain/entities/listing_record.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Canonical listing record.

Purpose:
    The common field set produced by flattening each external source,
    merging the two flattened records and computing derived fields. The same
    shape is persisted in snapshots and in the materialized current state.

Layer:
    domain/entities

Notes:
    - Every field is nullable; ``None`` means "unknown", never "zero".
    - Money fields are major currency units (e.g. 24.99); ``keepa_*`` price
      statistics are already integer minor units (pence).
    - ``from_mapping`` rejects unknown keys so that provider schema drift
      surfaces at the boundary instead of leaking into storage.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Any

from marketplace_ingest.domain.exceptions.ingestion import RecordSchemaError

__all__ = ["ListingRecord", "RECORD_FIELDS"]


@dataclass(frozen=True, slots=True)
class ListingRecord:
    """Flattened, merged or derived listing state for one item."""

    # Identity & catalogue
    title: str | None = None
    brand: str | None = None
    category_path: str | None = None

    # Pricing & buy box
    price_inc_vat: float | None = None
    price_ex_vat: float | None = None
    list_price: float | None = None
    buy_box_price: float | None = None
    buy_box_seller_id: str | None = None
    buy_box_is_fba: bool | None = None
    seller_count: int | None = None

    # Inventory & sales
    total_stock: int | None = None
    fulfillment_channel: str | None = None
    units_7d: int | None = None
    units_30d: int | None = None
    units_90d: int | None = None

    # Third-party market metrics (90-day window)
    keepa_has_data: bool | None = None
    keepa_last_update: datetime | None = None
    keepa_price_p25_90d: int | None = None
    keepa_price_median_90d: int | None = None
    keepa_price_p75_90d: int | None = None
    keepa_lowest_90d: int | None = None
    keepa_highest_90d: int | None = None
    keepa_sales_rank_latest: int | None = None
    keepa_new_offers: int | None = None
    keepa_used_offers: int | None = None
    price_volatility_score: float | None = None

    # Derived
    days_of_cover: float | None = None
    is_out_of_stock: bool | None = None
    is_buy_box_lost: bool | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ListingRecord:
        """Build a record from a mapping, rejecting unknown keys.

        Args:
            data: Field mapping; absent keys default to ``None``.

        Returns:
            ListingRecord: The record.

        Raises:
            RecordSchemaError: If ``data`` contains keys outside the schema.
        """
        unknown = sorted(set(data) - RECORD_FIELDS)
        if unknown:
            raise RecordSchemaError(
                "Listing record contains unknown fields.",
                details={"unknown_fields": unknown},
            )
        return cls(**dict(data))

    def as_dict(self) -> dict[str, Any]:
        """Return the record as a plain dict of Python values."""
        return asdict(self)

    def to_json_dict(self) -> dict[str, Any]:
        """Return a JSON-safe dict (datetimes rendered as ISO-8601)."""
        out = self.as_dict()
        for key, value in out.items():
            if isinstance(value, datetime):
                out[key] = value.isoformat()
        return out


RECORD_FIELDS: frozenset[str] = frozenset(f.name for f in fields(ListingRecord))
