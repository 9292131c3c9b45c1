# src/marketplace_ingest/infrastructure/database/models/listings.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Snapshot ledger and current-state models.

Purpose:
    ``asin_snapshot`` is the append-only history (one row per item per run);
    ``asin_current`` holds exactly one row per item pointing at the newest
    snapshot that passed the freshness guard.

Layer:
    infrastructure/database/models

Notes:
    Both tables share the listing column set via :class:`ListingColumnsMixin`.
    The mixin's attribute names match ``ListingRecord`` field names so the
    repositories can map between them by name.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from marketplace_ingest.infrastructure.database.models.base import (
    Base,
    JSONBType,
    ReprMixin,
    now_utc,
)

_MONEY = Numeric(12, 2)


class ListingColumnsMixin:
    """Listing fields shared by snapshots and the current view."""

    asin_entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    brand: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    price_inc_vat: Mapped[Decimal | None] = mapped_column(_MONEY, nullable=True)
    price_ex_vat: Mapped[Decimal | None] = mapped_column(_MONEY, nullable=True)
    list_price: Mapped[Decimal | None] = mapped_column(_MONEY, nullable=True)
    buy_box_price: Mapped[Decimal | None] = mapped_column(_MONEY, nullable=True)
    buy_box_seller_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    buy_box_is_fba: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    seller_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    total_stock: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fulfillment_channel: Mapped[str | None] = mapped_column(String(16), nullable=True)
    units_7d: Mapped[int | None] = mapped_column(Integer, nullable=True)
    units_30d: Mapped[int | None] = mapped_column(Integer, nullable=True)
    units_90d: Mapped[int | None] = mapped_column(Integer, nullable=True)

    keepa_has_data: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    keepa_last_update: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    keepa_price_p25_90d: Mapped[int | None] = mapped_column(Integer, nullable=True)
    keepa_price_median_90d: Mapped[int | None] = mapped_column(Integer, nullable=True)
    keepa_price_p75_90d: Mapped[int | None] = mapped_column(Integer, nullable=True)
    keepa_lowest_90d: Mapped[int | None] = mapped_column(Integer, nullable=True)
    keepa_highest_90d: Mapped[int | None] = mapped_column(Integer, nullable=True)
    keepa_sales_rank_latest: Mapped[int | None] = mapped_column(Integer, nullable=True)
    keepa_new_offers: Mapped[int | None] = mapped_column(Integer, nullable=True)
    keepa_used_offers: Mapped[int | None] = mapped_column(Integer, nullable=True)
    price_volatility_score: Mapped[Decimal | None] = mapped_column(Numeric(8, 4), nullable=True)

    days_of_cover: Mapped[Decimal | None] = mapped_column(_MONEY, nullable=True)
    is_out_of_stock: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    is_buy_box_lost: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    fingerprint_hash: Mapped[str] = mapped_column(String(64), nullable=False)


class SnapshotModel(ListingColumnsMixin, ReprMixin, Base):
    """Append-only per-run listing snapshot."""

    __tablename__ = "asin_snapshot"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    asin: Mapped[str] = mapped_column(String(20), nullable=False)
    marketplace_id: Mapped[int] = mapped_column(Integer, nullable=False)
    ingestion_run_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    amazon_raw: Mapped[dict[str, Any] | None] = mapped_column(JSONBType, nullable=True)
    keepa_raw: Mapped[dict[str, Any] | None] = mapped_column(JSONBType, nullable=True)
    transform_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    snapshot_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_asin_snapshot_item_time", "asin", "marketplace_id", "snapshot_time"),
        Index("ix_asin_snapshot_run", "ingestion_run_id"),
        Index("ix_asin_snapshot_fingerprint", "fingerprint_hash"),
    )


class CurrentStateModel(ListingColumnsMixin, ReprMixin, Base):
    """One row per item: the freshest accepted snapshot, materialized."""

    __tablename__ = "asin_current"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    asin: Mapped[str] = mapped_column(String(20), nullable=False)
    marketplace_id: Mapped[int] = mapped_column(Integer, nullable=False)
    latest_snapshot_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_ingestion_run_id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), nullable=False
    )
    last_snapshot_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("asin", "marketplace_id", name="uq_asin_current_item"),
        Index("ix_asin_current_last_snapshot_time", "last_snapshot_time"),
    )
