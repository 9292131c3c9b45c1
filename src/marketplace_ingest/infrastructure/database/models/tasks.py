# src/marketplace_ingest/infrastructure/database/models/tasks.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Task queue model.

Purpose:
    Durable queue table claimed by workers with ``FOR UPDATE SKIP LOCKED``.

Layer:
    infrastructure/database/models

Notes:
    - ``task_type`` is a plain string so rows written by a newer producer
      load and fail cleanly instead of breaking the claim query.
    - ``log`` is a JSONB array that is only ever appended to.
    - The claim index matches the claim ordering
      (status, priority DESC, scheduled_for).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, Index, Integer, String, Text, text
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


class TaskModel(TimestampMixin, ReprMixin, Base):
    """Persistence model for queued tasks."""

    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    task_type: Mapped[str] = mapped_column(String(64), nullable=False)
    scope_type: Mapped[str] = mapped_column(
        String(16), nullable=False, default="LISTING", server_default="LISTING"
    )
    scope_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    input: Mapped[dict[str, Any]] = mapped_column(
        JSONBType, nullable=False, default=dict, server_default=text("'{}'::jsonb")
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="PENDING", server_default="PENDING"
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=5, server_default="5")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, server_default="3"
    )
    scheduled_for: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=now_utc
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONBType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    log: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONBType, nullable=False, default=list, server_default=text("'[]'::jsonb")
    )
    created_by: Mapped[str] = mapped_column(
        String(64), nullable=False, default="system", server_default="system"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','RUNNING','SUCCEEDED','FAILED','CANCELLED')",
            name="status_valid",
        ),
        CheckConstraint("max_attempts >= 1", name="max_attempts_positive"),
        CheckConstraint("attempts >= 0", name="attempts_non_negative"),
    )


Index(
    "ix_tasks_claim",
    TaskModel.status,
    TaskModel.priority.desc(),
    TaskModel.scheduled_for,
)
Index("ix_tasks_type_scope", TaskModel.task_type, TaskModel.scope_type, TaskModel.scope_id)
