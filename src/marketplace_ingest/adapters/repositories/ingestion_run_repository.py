# src/marketplace_ingest/adapters/repositories/ingestion_run_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Ingestion run repository (SQLAlchemy).

Tracks pipeline executions and owns the session-level advisory lock that
keeps ingestion cycles from overlapping across processes. The lock belongs
to the database connection, so it must be released through the same
session that took it.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, insert, select, update

from marketplace_ingest.adapters.repositories.base_repository import BaseRepository
from marketplace_ingest.domain.entities.ingestion_run import IngestionRun
from marketplace_ingest.domain.enums.ingestion import IngestionRunStatus, IngestionRunType
from marketplace_ingest.infrastructure.database.models.ingestion import IngestionRunModel

INGESTION_LOCK_ID = 8675309

_UPDATABLE = frozenset(
    {
        "status",
        "item_count",
        "items_succeeded",
        "items_failed",
        "started_at",
        "completed_at",
        "duration_ms",
        "error_message",
        "error_details",
        "metadata",
    }
)


def _to_entity(row: IngestionRunModel) -> IngestionRun:
    return IngestionRun(
        id=row.id,
        run_type=IngestionRunType(row.run_type),
        status=IngestionRunStatus(row.status),
        item_count=row.item_count,
        items_succeeded=row.items_succeeded,
        items_failed=row.items_failed,
        started_at=row.started_at,
        completed_at=row.completed_at,
        duration_ms=row.duration_ms,
        error_message=row.error_message,
        error_details=row.error_details,
        metadata=row.run_metadata or {},
        created_at=row.created_at,
    )


class SqlAlchemyIngestionRunRepository(BaseRepository[IngestionRunModel]):
    """SQLAlchemy-backed ingestion run tracking."""

    _TABLE = "ingestion_runs"

    async def create(
        self, run_type: IngestionRunType, metadata: dict[str, Any] | None = None
    ) -> IngestionRun:
        """Insert a PENDING run."""
        stmt = (
            insert(IngestionRunModel)
            .values(
                id=uuid4(),
                run_type=run_type.value,
                status=IngestionRunStatus.PENDING.value,
                run_metadata=dict(metadata or {}),
                created_at=self.utc_now(),
            )
            .returning(IngestionRunModel)
        )
        async with self._observe("run_create"):
            res = await self._session.execute(stmt)
            return _to_entity(res.scalars().one())

    async def update(self, run_id: UUID, **changes: Any) -> IngestionRun | None:
        """Apply changes to a run.

        Raises:
            ValueError: If ``changes`` names a column that is not updatable.
        """
        unknown = sorted(set(changes) - _UPDATABLE)
        if unknown:
            raise ValueError(f"Unknown ingestion run fields: {unknown}")
        values: dict[str, Any] = {}
        for key, value in changes.items():
            if isinstance(value, IngestionRunStatus):
                value = value.value
            values["run_metadata" if key == "metadata" else key] = value
        stmt = (
            update(IngestionRunModel)
            .where(IngestionRunModel.id == run_id)
            .values(**values)
            .returning(IngestionRunModel)
            .execution_options(synchronize_session=False)
        )
        async with self._observe("run_update"):
            res = await self._session.execute(stmt)
            row = res.scalars().first()
        return _to_entity(row) if row is not None else None

    async def get(self, run_id: UUID) -> IngestionRun | None:
        """Return a run by id."""
        stmt = select(IngestionRunModel).where(IngestionRunModel.id == run_id)

        async def _run() -> IngestionRun | None:
            row = await self.fetch_optional(stmt)
            return _to_entity(row) if row is not None else None

        return await self._read("run_get", _run, None)

    async def try_acquire_lock(self) -> bool:
        """``pg_try_advisory_lock`` on the ingestion lock id."""
        async with self._observe("run_lock_acquire"):
            res = await self._session.execute(select(func.pg_try_advisory_lock(INGESTION_LOCK_ID)))
            return bool(res.scalar_one())

    async def release_lock(self) -> None:
        """``pg_advisory_unlock`` on the ingestion lock id."""
        async with self._observe("run_lock_release"):
            await self._session.execute(select(func.pg_advisory_unlock(INGESTION_LOCK_ID)))
