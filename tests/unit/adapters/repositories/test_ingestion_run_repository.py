# tests/unit/adapters/repositories/test_ingestion_run_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
from __future__ import annotations

from uuid import uuid4

import pytest

from fixtures.fake_session import FakeResult, FakeSession, compile_pg
from marketplace_ingest.adapters.repositories.ingestion_run_repository import (
    INGESTION_LOCK_ID,
    SqlAlchemyIngestionRunRepository,
)
from marketplace_ingest.domain.enums.ingestion import IngestionRunStatus


@pytest.mark.anyio
async def test_lock_uses_session_level_advisory_lock() -> None:
    session = FakeSession(FakeResult([False]))
    repo = SqlAlchemyIngestionRunRepository(session)  # type: ignore[arg-type]

    assert await repo.try_acquire_lock() is False
    await repo.release_lock()

    acquire_sql, acquire_params = compile_pg(session.statements[0])
    release_sql, _ = compile_pg(session.statements[1])
    assert "pg_try_advisory_lock" in acquire_sql
    assert INGESTION_LOCK_ID in acquire_params.values()
    assert "pg_advisory_unlock" in release_sql


@pytest.mark.anyio
async def test_update_rejects_unknown_fields() -> None:
    session = FakeSession()
    repo = SqlAlchemyIngestionRunRepository(session)  # type: ignore[arg-type]

    with pytest.raises(ValueError, match="run_type"):
        await repo.update(uuid4(), run_type="FULL")
    assert session.statements == []


@pytest.mark.anyio
async def test_update_maps_metadata_and_enum_values() -> None:
    session = FakeSession(FakeResult([]))
    repo = SqlAlchemyIngestionRunRepository(session)  # type: ignore[arg-type]

    assert await repo.update(
        uuid4(), status=IngestionRunStatus.PARTIAL, metadata={"items": 3}
    ) is None

    _, params = compile_pg(session.statements[0])
    assert params["status"] == "PARTIAL"
    assert {"items": 3} in params.values()
