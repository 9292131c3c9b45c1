# src/marketplace_ingest/adapters/repositories/current_state_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Current-state materializer (SQLAlchemy).

Purpose:
    Maintain exactly one ``asin_current`` row per item, pointing at the
    freshest snapshot that has been written.

Layer:
    adapters/repositories

Design:
    One statement::

        INSERT ... ON CONFLICT (asin, marketplace_id) DO UPDATE SET ...
        WHERE asin_current.last_snapshot_time IS NULL
           OR excluded.last_snapshot_time >= asin_current.last_snapshot_time
        RETURNING (xmax = 0)

    No returned row means the freshness guard rejected the write. ``xmax = 0``
    distinguishes a fresh insert from an update. Descriptive text fields and
    ``asin_entity_id`` keep their stored value when the incoming one is NULL;
    every numeric and boolean field is written exactly as given.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from sqlalchemy import Boolean, func, literal_column, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from marketplace_ingest.adapters.repositories.base_repository import BaseRepository
from marketplace_ingest.adapters.repositories.listing_columns import (
    record_from_row,
    record_to_columns,
)
from marketplace_ingest.domain.entities.listing_record import RECORD_FIELDS
from marketplace_ingest.domain.entities.raw_payload import ItemKey
from marketplace_ingest.domain.entities.snapshot import CurrentState, UpsertOutcome
from marketplace_ingest.infrastructure.database.models.listings import CurrentStateModel

# Stored value survives a NULL from a newer snapshot.
COALESCED_FIELDS: frozenset[str] = frozenset({"asin_entity_id", "title", "brand", "category_path"})


def _to_entity(row: CurrentStateModel) -> CurrentState:
    return CurrentState(
        asin=row.asin,
        marketplace_id=row.marketplace_id,
        latest_snapshot_id=row.latest_snapshot_id,
        record=record_from_row(row),
        fingerprint=row.fingerprint_hash,
        last_ingestion_run_id=row.last_ingestion_run_id,
        last_snapshot_time=row.last_snapshot_time,
        asin_entity_id=row.asin_entity_id,
        first_seen_at=row.first_seen_at,
        updated_at=row.updated_at,
    )


class SqlAlchemyCurrentStateRepository(BaseRepository[CurrentStateModel]):
    """SQLAlchemy-backed current-state materializer."""

    _TABLE = "asin_current"

    def build_upsert(self, current: CurrentState) -> Any:
        """Return the guarded upsert statement for ``current``."""
        now = self.utc_now()
        values = record_to_columns(current.record)
        values.update(
            asin=current.asin,
            marketplace_id=current.marketplace_id,
            asin_entity_id=current.asin_entity_id,
            latest_snapshot_id=current.latest_snapshot_id,
            last_ingestion_run_id=current.last_ingestion_run_id,
            last_snapshot_time=current.last_snapshot_time,
            fingerprint_hash=current.fingerprint,
            first_seen_at=now,
            updated_at=now,
        )

        ins = pg_insert(CurrentStateModel).values(**values)
        excluded = ins.excluded
        table = CurrentStateModel.__table__

        set_: dict[str, Any] = {}
        for name in sorted(RECORD_FIELDS | {"asin_entity_id"}):
            if name in COALESCED_FIELDS:
                set_[name] = func.coalesce(excluded[name], table.c[name])
            else:
                set_[name] = excluded[name]
        for name in (
            "latest_snapshot_id",
            "last_ingestion_run_id",
            "last_snapshot_time",
            "fingerprint_hash",
            "updated_at",
        ):
            set_[name] = excluded[name]

        return ins.on_conflict_do_update(
            index_elements=["asin", "marketplace_id"],
            set_=set_,
            where=or_(
                table.c.last_snapshot_time.is_(None),
                excluded.last_snapshot_time >= table.c.last_snapshot_time,
            ),
        ).returning(literal_column("(xmax = 0)", type_=Boolean).label("inserted"))

    async def upsert(self, current: CurrentState) -> UpsertOutcome:
        """Apply the freshness-guarded upsert."""
        stmt = self.build_upsert(current)
        async with self._observe("current_upsert"):
            res = await self._session.execute(stmt)
            row = res.first()
        if row is None:
            return UpsertOutcome(applied=False, inserted=False)
        return UpsertOutcome(applied=True, inserted=bool(row[0]))

    async def get(self, asin: str, marketplace_id: int) -> CurrentState | None:
        """Return the current row for an item."""
        stmt = select(CurrentStateModel).where(
            CurrentStateModel.asin == asin, CurrentStateModel.marketplace_id == marketplace_id
        )

        async def _run() -> CurrentState | None:
            row = await self.fetch_optional(stmt)
            return _to_entity(row) if row is not None else None

        return await self._read("current_get", _run, None)

    async def list_stale(self, max_age: timedelta, limit: int = 100) -> list[CurrentState]:
        """Return rows not refreshed within ``max_age``, oldest first."""
        cutoff = self.utc_now() - max_age
        stmt = (
            select(CurrentStateModel)
            .where(CurrentStateModel.last_snapshot_time < cutoff)
            .order_by(CurrentStateModel.last_snapshot_time.asc(), CurrentStateModel.id.asc())
            .limit(limit)
        )

        async def _run() -> list[CurrentState]:
            return [_to_entity(r) for r in await self.fetch_all(stmt)]

        return await self._read("current_list_stale", _run, [])

    async def list_tracked_items(self, marketplace_id: int | None = None) -> list[ItemKey]:
        """Return every tracked item, ordered by ASIN."""
        stmt = select(CurrentStateModel.asin, CurrentStateModel.marketplace_id).order_by(
            CurrentStateModel.asin, CurrentStateModel.marketplace_id
        )
        if marketplace_id is not None:
            stmt = stmt.where(CurrentStateModel.marketplace_id == marketplace_id)

        async def _run() -> list[ItemKey]:
            res = await self._session.execute(stmt)
            return [ItemKey(asin=a, marketplace_id=m) for a, m in res.all()]

        return await self._read("current_list_tracked", _run, [])
