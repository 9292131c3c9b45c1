# src/marketplace_ingest/adapters/repositories/snapshot_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Snapshot ledger repository (SQLAlchemy).

Purpose:
    Append-only per-run listing history plus the read models built on it:
    latest, history, fingerprint lineage and price history.

Layer:
    adapters/repositories
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, insert, select

from marketplace_ingest.adapters.repositories.base_repository import BaseRepository
from marketplace_ingest.adapters.repositories.listing_columns import (
    record_from_row,
    record_to_columns,
)
from marketplace_ingest.domain.entities.snapshot import FingerprintChange, PricePoint, Snapshot
from marketplace_ingest.infrastructure.database.models.listings import SnapshotModel


def _to_entity(row: SnapshotModel) -> Snapshot:
    return Snapshot(
        id=row.id,
        asin=row.asin,
        marketplace_id=row.marketplace_id,
        ingestion_run_id=row.ingestion_run_id,
        record=record_from_row(row),
        fingerprint=row.fingerprint_hash,
        transform_version=row.transform_version,
        snapshot_time=row.snapshot_time,
        asin_entity_id=row.asin_entity_id,
        amazon_raw=row.amazon_raw,
        keepa_raw=row.keepa_raw,
        created_at=row.created_at,
    )


def _float(value: Any) -> float | None:
    return float(value) if value is not None else None


class SqlAlchemySnapshotRepository(BaseRepository[SnapshotModel]):
    """SQLAlchemy-backed snapshot ledger."""

    _TABLE = "asin_snapshot"

    async def append(self, snapshot: Snapshot) -> Snapshot:
        """Insert a snapshot; never updates an existing row."""
        values = record_to_columns(snapshot.record)
        values.update(
            asin=snapshot.asin,
            marketplace_id=snapshot.marketplace_id,
            ingestion_run_id=snapshot.ingestion_run_id,
            asin_entity_id=snapshot.asin_entity_id,
            fingerprint_hash=snapshot.fingerprint,
            transform_version=snapshot.transform_version,
            snapshot_time=snapshot.snapshot_time,
            amazon_raw=dict(snapshot.amazon_raw) if snapshot.amazon_raw is not None else None,
            keepa_raw=dict(snapshot.keepa_raw) if snapshot.keepa_raw is not None else None,
            created_at=self.utc_now(),
        )
        stmt = insert(SnapshotModel).values(**values).returning(SnapshotModel)
        async with self._observe("snapshot_append"):
            res = await self._session.execute(stmt)
            return _to_entity(res.scalars().one())

    async def latest(self, asin: str, marketplace_id: int) -> Snapshot | None:
        """Return the newest snapshot for an item."""
        stmt = self.order_by_latest(
            select(SnapshotModel).where(
                SnapshotModel.asin == asin, SnapshotModel.marketplace_id == marketplace_id
            ),
            SnapshotModel.snapshot_time,
            SnapshotModel.id,
        ).limit(1)

        async def _run() -> Snapshot | None:
            row = await self.fetch_optional(stmt)
            return _to_entity(row) if row is not None else None

        return await self._read("snapshot_latest", _run, None)

    async def get(self, snapshot_id: int) -> Snapshot | None:
        """Return a snapshot by id."""
        stmt = select(SnapshotModel).where(SnapshotModel.id == snapshot_id)

        async def _run() -> Snapshot | None:
            row = await self.fetch_optional(stmt)
            return _to_entity(row) if row is not None else None

        return await self._read("snapshot_get", _run, None)

    async def history(self, asin: str, marketplace_id: int, limit: int = 30) -> list[Snapshot]:
        """Return snapshots newest first."""
        stmt = self.order_by_latest(
            select(SnapshotModel).where(
                SnapshotModel.asin == asin, SnapshotModel.marketplace_id == marketplace_id
            ),
            SnapshotModel.snapshot_time,
            SnapshotModel.id,
        ).limit(limit)

        async def _run() -> list[Snapshot]:
            return [_to_entity(r) for r in await self.fetch_all(stmt)]

        return await self._read("snapshot_history", _run, [])

    async def by_fingerprint(self, fingerprint: str) -> list[Snapshot]:
        """Return snapshots carrying a fingerprint, newest first."""
        stmt = self.order_by_latest(
            select(SnapshotModel).where(SnapshotModel.fingerprint_hash == fingerprint),
            SnapshotModel.snapshot_time,
            SnapshotModel.id,
        )

        async def _run() -> list[Snapshot]:
            return [_to_entity(r) for r in await self.fetch_all(stmt)]

        return await self._read("snapshot_by_fingerprint", _run, [])

    async def for_run(self, ingestion_run_id: UUID) -> list[Snapshot]:
        """Return snapshots appended by a run."""
        stmt = (
            select(SnapshotModel)
            .where(SnapshotModel.ingestion_run_id == ingestion_run_id)
            .order_by(SnapshotModel.asin, SnapshotModel.marketplace_id, SnapshotModel.id)
        )

        async def _run() -> list[Snapshot]:
            return [_to_entity(r) for r in await self.fetch_all(stmt)]

        return await self._read("snapshot_for_run", _run, [])

    async def count_for_run(self, ingestion_run_id: UUID) -> int:
        """Return the number of snapshots appended by a run."""
        stmt = (
            select(func.count())
            .select_from(SnapshotModel)
            .where(SnapshotModel.ingestion_run_id == ingestion_run_id)
        )

        async def _run() -> int:
            res = await self._session.execute(stmt)
            return int(res.scalar_one())

        return await self._read("snapshot_count_for_run", _run, 0)

    async def fingerprint_changes(
        self, asin: str, marketplace_id: int, limit: int = 30
    ) -> list[FingerprintChange]:
        """Return fingerprint lineage, newest first, using ``LAG`` over time."""
        previous = (
            func.lag(SnapshotModel.fingerprint_hash)
            .over(order_by=(SnapshotModel.snapshot_time.asc(), SnapshotModel.id.asc()))
            .label("previous_fingerprint")
        )
        lineage = (
            select(
                SnapshotModel.id,
                SnapshotModel.snapshot_time,
                SnapshotModel.fingerprint_hash,
                previous,
            )
            .where(SnapshotModel.asin == asin, SnapshotModel.marketplace_id == marketplace_id)
            .subquery("lineage")
        )
        stmt = (
            select(lineage)
            .order_by(lineage.c.snapshot_time.desc(), lineage.c.id.desc())
            .limit(limit)
        )

        async def _run() -> list[FingerprintChange]:
            res = await self._session.execute(stmt)
            return [
                FingerprintChange(
                    snapshot_id=row.id,
                    snapshot_time=row.snapshot_time,
                    fingerprint=row.fingerprint_hash,
                    previous_fingerprint=row.previous_fingerprint,
                )
                for row in res.all()
            ]

        return await self._read("snapshot_fingerprint_changes", _run, [])

    async def price_history(
        self, asin: str, marketplace_id: int, days: int = 30
    ) -> list[PricePoint]:
        """Return price observations in the last ``days`` days, oldest first."""
        since = self.utc_now() - timedelta(days=days)
        stmt = (
            select(
                SnapshotModel.snapshot_time,
                SnapshotModel.price_inc_vat,
                SnapshotModel.buy_box_price,
                SnapshotModel.keepa_price_median_90d,
            )
            .where(
                SnapshotModel.asin == asin,
                SnapshotModel.marketplace_id == marketplace_id,
                SnapshotModel.snapshot_time >= since,
            )
            .order_by(SnapshotModel.snapshot_time.asc(), SnapshotModel.id.asc())
        )

        async def _run() -> list[PricePoint]:
            res = await self._session.execute(stmt)
            return [
                PricePoint(
                    snapshot_time=row.snapshot_time,
                    price_inc_vat=_float(row.price_inc_vat),
                    buy_box_price=_float(row.buy_box_price),
                    keepa_price_median_90d=row.keepa_price_median_90d,
                )
                for row in res.all()
            ]

        return await self._read("snapshot_price_history", _run, [])
