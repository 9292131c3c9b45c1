# src/marketplace_ingest/infrastructure/database/models/dq.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Data-quality issue model."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, CheckConstraint, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from marketplace_ingest.infrastructure.database.models.base import (
    Base,
    JSONBType,
    ReprMixin,
    TimestampMixin,
    now_utc,
)


class DQIssueModel(TimestampMixin, ReprMixin, Base):
    """One detected data-quality problem and its lifecycle."""

    __tablename__ = "dq_issues"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    asin: Mapped[str] = mapped_column(String(20), nullable=False)
    marketplace_id: Mapped[int] = mapped_column(Integer, nullable=False)
    asin_entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ingestion_run_id: Mapped[uuid.UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), nullable=True
    )
    snapshot_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    issue_type: Mapped[str] = mapped_column(String(32), nullable=False)
    field_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="OPEN", server_default="OPEN"
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONBType, nullable=False, default=dict, server_default=text("'{}'::jsonb")
    )
    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    acknowledged_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    acknowledged_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("severity IN ('WARN','CRITICAL')", name="severity_valid"),
        CheckConstraint(
            "status IN ('OPEN','ACKNOWLEDGED','RESOLVED','IGNORED')", name="status_valid"
        ),
        Index("ix_dq_issues_item_status", "asin", "marketplace_id", "status"),
        Index("ix_dq_issues_run", "ingestion_run_id"),
    )
