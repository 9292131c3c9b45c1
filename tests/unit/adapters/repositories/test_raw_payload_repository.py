# tests/unit/adapters/repositories/test_raw_payload_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from fixtures.fake_session import FakeResult, FakeSession, compile_pg
from marketplace_ingest.adapters.repositories.raw_payload_repository import (
    SqlAlchemyRawPayloadRepository,
)
from marketplace_ingest.domain.entities.raw_payload import RawPayload
from marketplace_ingest.domain.enums.ingestion import PayloadSource

RUN = uuid4()


def _payload(source: PayloadSource) -> RawPayload:
    return RawPayload(
        asin="B000000001",
        marketplace_id=1,
        source=source,
        ingestion_run_id=RUN,
        payload={"products": []},
        captured_at=datetime(2025, 1, 15, tzinfo=UTC),
    )


@pytest.mark.anyio
async def test_bulk_insert_ignores_existing_keys() -> None:
    session = FakeSession(FakeResult([1]))
    repo = SqlAlchemyRawPayloadRepository(session)  # type: ignore[arg-type]

    result = await repo.bulk_insert([_payload(PayloadSource.KEEPA), _payload(PayloadSource.SP_API)])

    assert (result.inserted, result.skipped) == (1, 1)
    sql, _ = compile_pg(session.statements[0])
    assert "ON CONFLICT (asin, marketplace_id, source, ingestion_run_id) DO NOTHING" in sql


@pytest.mark.anyio
async def test_bulk_insert_of_nothing_executes_nothing() -> None:
    session = FakeSession()

    result = await SqlAlchemyRawPayloadRepository(session).bulk_insert([])  # type: ignore[arg-type]

    assert (result.inserted, result.skipped) == (0, 0)
    assert session.statements == []


@pytest.mark.anyio
async def test_single_insert_reports_duplicate_as_none() -> None:
    session = FakeSession(FakeResult([]))
    repo = SqlAlchemyRawPayloadRepository(session)  # type: ignore[arg-type]

    assert await repo.insert(_payload(PayloadSource.KEEPA)) is None


@pytest.mark.anyio
async def test_latest_orders_newest_first_with_id_tiebreak() -> None:
    session = FakeSession(FakeResult([]))
    repo = SqlAlchemyRawPayloadRepository(session)  # type: ignore[arg-type]

    await repo.latest_for_item_and_source("B000000001", 1, PayloadSource.SP_API)

    sql, params = compile_pg(session.statements[0])
    assert "ORDER BY raw_payloads.captured_at DESC NULLS LAST, raw_payloads.id DESC" in sql
    assert "sp_api" in params.values()
