# src/marketplace_ingest/infrastructure/database/models/base.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Declarative Base and shared persistence mixins.

This module defines:
    - A project-wide SQLAlchemy Declarative Base with deterministic naming
      conventions, so constraint names are stable across ``create_all`` runs
      and any later migration tooling.
    - Timestamp and repr mixins (UTC everywhere).
    - ``JSONBType`` and ``now_utc`` helpers shared by the models.

Notes:
    The target schema is selected per connection (``search_path``) by the
    session factory rather than baked into table definitions, so the models
    import without reading configuration.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import MetaData
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

__all__ = [
    "metadata",
    "Base",
    "JSONBType",
    "TimestampMixin",
    "ReprMixin",
    "now_utc",
]

#: Deterministic naming conventions for constraints and indexes.
NAMING_CONVENTIONS: dict[str, str] = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTIONS)

JSONBType = JSONB(none_as_null=True)


def now_utc() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative Base for all ORM models."""

    metadata = metadata


class TimestampMixin:
    """Mixin providing ``created_at`` and ``updated_at`` timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=now_utc,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=now_utc,
        onupdate=now_utc,
        server_default=func.now(),
    )


class ReprMixin:
    """Mixin providing a concise, column-based ``__repr__``."""

    def __repr__(self) -> str:
        """Return a short debug representation of the model."""
        cls = type(self)
        table = getattr(cls, "__table__", None)
        attrs: list[str] = []
        if table is not None:
            for column in table.columns:
                value = getattr(self, column.key, None)
                if isinstance(value, (str, int, float, bool, uuid.UUID)):
                    attrs.append(f"{column.key}={value!r}")
        return f"{cls.__name__}({', '.join(attrs)})"
