# src/marketplace_ingest/adapters/repositories/raw_payload_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Raw landing repository (SQLAlchemy).

Purpose:
    Append-only store of exact source payloads, idempotent per
    (asin, marketplace_id, source, ingestion_run_id).

Layer:
    adapters/repositories

Notes:
    Idempotency is enforced by the unique constraint and
    ``INSERT ... ON CONFLICT DO NOTHING``; a duplicate is reported, not
    raised.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from marketplace_ingest.adapters.repositories.base_repository import BaseRepository
from marketplace_ingest.domain.entities.raw_payload import (
    ItemKey,
    RawPayload,
    RawPayloadBatchResult,
)
from marketplace_ingest.domain.enums.ingestion import PayloadSource
from marketplace_ingest.infrastructure.database.models.ingestion import RawPayloadModel

_UNIQUE_KEY = ("asin", "marketplace_id", "source", "ingestion_run_id")


def _to_row(payload: RawPayload) -> dict[str, Any]:
    return {
        "asin": payload.asin,
        "marketplace_id": payload.marketplace_id,
        "source": payload.source.value,
        "ingestion_run_id": payload.ingestion_run_id,
        "payload": dict(payload.payload),
        "captured_at": payload.captured_at,
    }


def _to_entity(row: RawPayloadModel) -> RawPayload:
    return RawPayload(
        id=row.id,
        asin=row.asin,
        marketplace_id=row.marketplace_id,
        source=PayloadSource(row.source),
        ingestion_run_id=row.ingestion_run_id,
        payload=row.payload,
        captured_at=row.captured_at,
    )


class SqlAlchemyRawPayloadRepository(BaseRepository[RawPayloadModel]):
    """SQLAlchemy-backed raw landing store."""

    _TABLE = "raw_payloads"

    async def insert(self, payload: RawPayload) -> RawPayload | None:
        """Land one payload; None when the key already exists."""
        stmt = (
            pg_insert(RawPayloadModel)
            .values(_to_row(payload))
            .on_conflict_do_nothing(index_elements=list(_UNIQUE_KEY))
            .returning(RawPayloadModel)
        )
        async with self._observe("raw_insert"):
            res = await self._session.execute(stmt)
            row = res.scalars().first()
        return _to_entity(row) if row is not None else None

    async def bulk_insert(self, payloads: Sequence[RawPayload]) -> RawPayloadBatchResult:
        """Land many payloads in a single statement."""
        if not payloads:
            return RawPayloadBatchResult(inserted=0, skipped=0)
        stmt = (
            pg_insert(RawPayloadModel)
            .values([_to_row(p) for p in payloads])
            .on_conflict_do_nothing(index_elements=list(_UNIQUE_KEY))
            .returning(RawPayloadModel.id)
        )
        async with self._observe("raw_bulk_insert"):
            res = await self._session.execute(stmt)
            inserted = len(res.scalars().all())
        return RawPayloadBatchResult(inserted=inserted, skipped=len(payloads) - inserted)

    async def get_for_run_and_item(
        self, ingestion_run_id: UUID, asin: str, marketplace_id: int
    ) -> list[RawPayload]:
        """Return every payload for an item in a run."""
        stmt = (
            select(RawPayloadModel)
            .where(
                RawPayloadModel.ingestion_run_id == ingestion_run_id,
                RawPayloadModel.asin == asin,
                RawPayloadModel.marketplace_id == marketplace_id,
            )
            .order_by(RawPayloadModel.source.asc(), RawPayloadModel.id.asc())
        )

        async def _run() -> list[RawPayload]:
            return [_to_entity(r) for r in await self.fetch_all(stmt)]

        return await self._read("raw_get_for_run_and_item", _run, [])

    async def distinct_items_for_run(self, ingestion_run_id: UUID) -> list[ItemKey]:
        """Return items with at least one payload in a run."""
        stmt = (
            select(RawPayloadModel.asin, RawPayloadModel.marketplace_id)
            .where(RawPayloadModel.ingestion_run_id == ingestion_run_id)
            .distinct()
            .order_by(RawPayloadModel.asin, RawPayloadModel.marketplace_id)
        )

        async def _run() -> list[ItemKey]:
            res = await self._session.execute(stmt)
            return [ItemKey(asin=a, marketplace_id=m) for a, m in res.all()]

        return await self._read("raw_distinct_items", _run, [])

    async def latest_for_item_and_source(
        self, asin: str, marketplace_id: int, source: PayloadSource
    ) -> RawPayload | None:
        """Return the newest payload for an item and source."""
        stmt = self.order_by_latest(
            select(RawPayloadModel).where(
                RawPayloadModel.asin == asin,
                RawPayloadModel.marketplace_id == marketplace_id,
                RawPayloadModel.source == source.value,
            ),
            RawPayloadModel.captured_at,
            RawPayloadModel.id,
        ).limit(1)

        async def _run() -> RawPayload | None:
            row = await self.fetch_optional(stmt)
            return _to_entity(row) if row is not None else None

        return await self._read("raw_latest_for_item", _run, None)

    async def count_for_run(self, ingestion_run_id: UUID) -> int:
        """Return the number of payloads landed in a run."""
        stmt = (
            select(func.count())
            .select_from(RawPayloadModel)
            .where(RawPayloadModel.ingestion_run_id == ingestion_run_id)
        )

        async def _run() -> int:
            res = await self._session.execute(stmt)
            return int(res.scalar_one())

        return await self._read("raw_count_for_run", _run, 0)
