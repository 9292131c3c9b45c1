# src/marketplace_ingest/infrastructure/database/models/ingestion.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Ingestion run and raw landing models.

Purpose:
    Persist ingestion run tracking rows and the exact payloads received from
    each external source.

Layer:
    infrastructure/database/models

Notes:
    ``raw_payloads`` is append-only. The unique key
    (asin, marketplace_id, source, ingestion_run_id) makes re-landing the
    same payload in a retried task a no-op.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
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


class IngestionRunModel(ReprMixin, Base):
    """Tracking row for one ingestion pipeline execution."""

    __tablename__ = "ingestion_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    run_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="PENDING", server_default="PENDING"
    )
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    items_succeeded: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    items_failed: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details: Mapped[dict[str, Any] | None] = mapped_column(JSONBType, nullable=True)
    run_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONBType, nullable=False, default=dict, server_default=text("'{}'::jsonb")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','RUNNING','SUCCEEDED','PARTIAL','FAILED')",
            name="status_valid",
        ),
    )


class RawPayloadModel(ReprMixin, Base):
    """Exact payload received from one source for one item in one run."""

    __tablename__ = "raw_payloads"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    asin: Mapped[str] = mapped_column(String(20), nullable=False)
    marketplace_id: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    ingestion_run_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONBType, nullable=False)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "asin",
            "marketplace_id",
            "source",
            "ingestion_run_id",
            name="uq_raw_payloads_item_source_run",
        ),
        CheckConstraint("source IN ('keepa','sp_api')", name="source_valid"),
        Index("ix_raw_payloads_run", "ingestion_run_id"),
        Index("ix_raw_payloads_item_captured", "asin", "marketplace_id", "captured_at"),
    )
