# src/marketplace_ingest/domain/interfaces/repositories/ingestion_run_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Domain-facing interface for ingestion run tracking."""

from __future__ import annotations

from typing import Any, Protocol
from uuid import UUID

from marketplace_ingest.domain.entities.ingestion_run import IngestionRun
from marketplace_ingest.domain.enums.ingestion import IngestionRunType


class IngestionRunRepository(Protocol):
    """Persistence contract for ingestion runs and the run-level lock."""

    async def create(
        self, run_type: IngestionRunType, metadata: dict[str, Any] | None = None
    ) -> IngestionRun:
        """Insert a PENDING run."""
        raise NotImplementedError

    async def update(self, run_id: UUID, **changes: Any) -> IngestionRun | None:
        """Apply column changes to a run and return the updated row."""
        raise NotImplementedError

    async def get(self, run_id: UUID) -> IngestionRun | None:
        """Return a run by id."""
        raise NotImplementedError

    async def try_acquire_lock(self) -> bool:
        """Try to take the cross-process ingestion lock without waiting."""
        raise NotImplementedError

    async def release_lock(self) -> None:
        """Release the ingestion lock taken by :meth:`try_acquire_lock`."""
        raise NotImplementedError
