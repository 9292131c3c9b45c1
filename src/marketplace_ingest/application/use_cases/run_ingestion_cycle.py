# src/marketplace_ingest/application/use_cases/run_ingestion_cycle.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Use case: run one full ingestion cycle.

Steps:
    1. Take the process-wide ingestion lock; skip the cycle if another
       process holds it.
    2. Resolve targets (explicit identifiers or every tracked item) and open
       an ``IngestionRun``.
    3. Fetch Keepa in batches and SP-API per item, landing each payload
       idempotently as soon as it arrives.
    4. Record an ``API_ERROR`` issue for every targeted item that landed no
       payload at all.
    5. Transform and save each landed item.
    6. Close the run as SUCCEEDED, PARTIAL or FAILED.

Layer:
    application/use_cases
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from marketplace_ingest.application.uow import UnitOfWork, UnitOfWorkFactory, run_in_uow
from marketplace_ingest.application.use_cases.transform_and_save import (
    TransformAndSave,
    TransformRequest,
)
from marketplace_ingest.domain.entities.ingestion_run import IngestionCycleResult
from marketplace_ingest.domain.entities.raw_payload import RawPayload
from marketplace_ingest.domain.enums.ingestion import (
    IngestionRunStatus,
    IngestionRunType,
    PayloadSource,
)
from marketplace_ingest.domain.exceptions.base import DomainError
from marketplace_ingest.domain.exceptions.ingestion import ExternalSourceError
from marketplace_ingest.domain.interfaces.gateways.listing_source_gateways import (
    KeepaProductGateway,
    SpApiListingGateway,
)
from marketplace_ingest.domain.interfaces.repositories.current_state_repository import (
    CurrentStateRepository,
)
from marketplace_ingest.domain.interfaces.repositories.dq_issue_repository import (
    DQIssueRepository,
)
from marketplace_ingest.domain.interfaces.repositories.ingestion_run_repository import (
    IngestionRunRepository,
)
from marketplace_ingest.domain.interfaces.repositories.raw_payload_repository import (
    RawPayloadRepository,
)
from marketplace_ingest.domain.services.dq_engine import (
    missing_payload_issue,
    transform_failure_issue,
)
from marketplace_ingest.domain.services.identifiers import DEFAULT_MAX_ITEMS, normalize_asins
from marketplace_ingest.infrastructure.logging.logger import get_json_logger, task_context

logger = get_json_logger(__name__)


@dataclass(frozen=True, slots=True)
class IngestionCycleRequest:
    """Parameters of one cycle.

    Attributes:
        asins: Explicit identifiers (comma strings allowed). When None, every
            tracked item of ``marketplace_id`` is refreshed.
        marketplace_id: Internal marketplace id.
        max_items: Cap on the number of targeted items.
        run_type: Recorded run type.
        fill_missing_sources: Forwarded to transform; lets a single-source
            refresh reuse the other source's newest earlier payload.
        exclusive: Take the ingestion lock. Single-item refreshes run by the
            worker set this to False so they do not wait on a full cycle.
    """

    asins: Sequence[str] | str | None = None
    marketplace_id: int = 1
    max_items: int = DEFAULT_MAX_ITEMS
    run_type: IngestionRunType = IngestionRunType.FULL_REFRESH
    fill_missing_sources: bool = False
    exclusive: bool = True


class RunIngestionCycle:
    """Fetch, land, check and transform a set of catalog items."""

    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        transform: TransformAndSave,
        keepa: KeepaProductGateway | None = None,
        sp_api: SpApiListingGateway | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """Initialize the use case.

        Args:
            uow_factory: Creates a fresh UnitOfWork per transaction.
            transform: Per-item transform use case.
            keepa: Keepa gateway; None when Keepa is not configured.
            sp_api: SP-API gateway; None when SP-API is not configured.
            clock: Source of capture and run timestamps.
        """
        self._uow_factory = uow_factory
        self._transform = transform
        self._keepa = keepa
        self._sp_api = sp_api
        self._clock = clock

    async def execute(self, req: IngestionCycleRequest) -> IngestionCycleResult:
        """Run one cycle under the ingestion lock.

        Returns:
            IngestionCycleResult: Run summary; ``skipped`` when the lock was
            held elsewhere.

        Raises:
            Exception: Any unexpected failure, after the run is marked FAILED.
        """
        if not req.exclusive:
            return await self._run(req)

        # The advisory lock is session-scoped, so the lock session stays open
        # (and uncommitted) until the cycle finishes.
        async with self._uow_factory() as lock_uow:
            runs: IngestionRunRepository = lock_uow.get_repository(IngestionRunRepository)
            if not await runs.try_acquire_lock():
                logger.info(
                    "ingest.cycle.skipped",
                    extra={"extra": {"reason": "lock_held", "marketplace_id": req.marketplace_id}},
                )
                return IngestionCycleResult(ingestion_run_id=None, status=None)
            try:
                return await self._run(req)
            finally:
                await runs.release_lock()

    # ------------------------------------------------------------------
    # Cycle body
    # ------------------------------------------------------------------

    async def _run(self, req: IngestionCycleRequest) -> IngestionCycleResult:
        start = time.perf_counter()
        targets, skipped = await self._resolve_targets(req)

        async def _create(uow: UnitOfWork) -> UUID:
            runs: IngestionRunRepository = uow.get_repository(IngestionRunRepository)
            run = await runs.create(
                req.run_type,
                metadata={
                    "marketplace_id": req.marketplace_id,
                    "skipped_identifiers": list(skipped),
                    "keepa_enabled": self._keepa is not None,
                    "sp_api_enabled": self._sp_api is not None,
                },
            )
            await runs.update(
                run.id,
                status=IngestionRunStatus.RUNNING,
                started_at=self._clock(),
                item_count=len(targets),
            )
            return run.id

        run_id = await run_in_uow(self._uow_factory(), _create)

        with task_context(ingestion_run_id=run_id):
            logger.info(
                "ingest.cycle.started",
                extra={
                    "extra": {
                        "ingestion_run_id": str(run_id),
                        "item_count": len(targets),
                        "skipped_identifiers": len(skipped),
                    }
                },
            )
            try:
                return await self._process(req, run_id, targets, skipped, start)
            except Exception as exc:
                await self._mark_failed(run_id, exc, start)
                raise

    async def _process(
        self,
        req: IngestionCycleRequest,
        run_id: UUID,
        targets: Sequence[str],
        skipped: Sequence[str],
        start: float,
    ) -> IngestionCycleResult:
        mkt = req.marketplace_id
        if self._keepa is None:
            logger.warning("ingest.source.disabled", extra={"extra": {"source": "keepa"}})
        else:
            await self._fetch_keepa(self._keepa, run_id, targets, mkt)
        if self._sp_api is None:
            logger.warning("ingest.source.disabled", extra={"extra": {"source": "sp_api"}})
        else:
            await self._fetch_sp_api(self._sp_api, run_id, targets, mkt)

        async def _landed(uow: UnitOfWork) -> set[str]:
            raw: RawPayloadRepository = uow.get_repository(RawPayloadRepository)
            items = await raw.distinct_items_for_run(run_id)
            return {i.asin for i in items if i.marketplace_id == mkt}

        landed = await run_in_uow(self._uow_factory(), _landed)
        missing = [asin for asin in targets if asin not in landed]
        if missing:
            await self._record_missing(run_id, missing, mkt)

        succeeded = 0
        failed = len(missing)
        for asin in targets:
            if asin not in landed:
                continue
            try:
                await self._transform.execute(
                    TransformRequest(
                        asin=asin,
                        marketplace_id=mkt,
                        ingestion_run_id=run_id,
                        fill_missing_sources=req.fill_missing_sources,
                    )
                )
            except Exception as exc:  # noqa: BLE001
                failed += 1
                await self._record_transform_failure(run_id, asin, mkt, exc)
            else:
                succeeded += 1

        status = IngestionRunStatus.PARTIAL if failed else IngestionRunStatus.SUCCEEDED
        duration_ms = int((time.perf_counter() - start) * 1000)

        async def _close(uow: UnitOfWork) -> None:
            runs: IngestionRunRepository = uow.get_repository(IngestionRunRepository)
            await runs.update(
                run_id,
                status=status,
                completed_at=self._clock(),
                duration_ms=duration_ms,
                items_succeeded=succeeded,
                items_failed=failed,
            )

        await run_in_uow(self._uow_factory(), _close)
        logger.info(
            "ingest.cycle.completed",
            extra={
                "extra": {
                    "ingestion_run_id": str(run_id),
                    "status": status.value,
                    "succeeded": succeeded,
                    "failed": failed,
                    "missing": len(missing),
                    "duration_ms": duration_ms,
                }
            },
        )
        return IngestionCycleResult(
            ingestion_run_id=run_id,
            status=status,
            item_count=len(targets),
            succeeded=succeeded,
            failed=failed,
            missing=tuple(missing),
            skipped_identifiers=tuple(skipped),
            duration_ms=duration_ms,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _resolve_targets(
        self, req: IngestionCycleRequest
    ) -> tuple[tuple[str, ...], tuple[str, ...]]:
        if req.asins is not None:
            normalized = normalize_asins(req.asins, max_items=req.max_items)
        else:

            async def _tracked(uow: UnitOfWork) -> list[str]:
                current: CurrentStateRepository = uow.get_repository(CurrentStateRepository)
                return [i.asin for i in await current.list_tracked_items(req.marketplace_id)]

            normalized = normalize_asins(
                await run_in_uow(self._uow_factory(), _tracked), max_items=req.max_items
            )
        if normalized.truncated:
            logger.warning(
                "ingest.targets.truncated",
                extra={"extra": {"dropped": len(normalized.truncated), "max": req.max_items}},
            )
        return normalized.valid, normalized.skipped

    async def _land(self, payloads: Sequence[RawPayload]) -> None:
        if not payloads:
            return

        async def _insert(uow: UnitOfWork) -> None:
            raw: RawPayloadRepository = uow.get_repository(RawPayloadRepository)
            result = await raw.bulk_insert(payloads)
            logger.info(
                "ingest.payloads.landed",
                extra={
                    "extra": {
                        "source": payloads[0].source.value,
                        "inserted": result.inserted,
                        "skipped": result.skipped,
                    }
                },
            )

        await run_in_uow(self._uow_factory(), _insert)

    async def _fetch_keepa(
        self, gateway: KeepaProductGateway, run_id: UUID, targets: Sequence[str], mkt: int
    ) -> None:
        size = max(1, gateway.batch_size)
        for offset in range(0, len(targets), size):
            batch = list(targets[offset : offset + size])
            try:
                products = await gateway.fetch_products(batch)
            except ExternalSourceError as exc:
                logger.warning(
                    "ingest.keepa.batch_failed",
                    extra={"extra": {"asins": batch, "code": exc.code, "error": str(exc)}},
                )
                continue
            captured_at = self._clock()
            await self._land(
                [
                    RawPayload(
                        asin=asin,
                        marketplace_id=mkt,
                        source=PayloadSource.KEEPA,
                        ingestion_run_id=run_id,
                        payload=products[asin],
                        captured_at=captured_at,
                    )
                    for asin in batch
                    if asin in products
                ]
            )

    async def _fetch_sp_api(
        self, gateway: SpApiListingGateway, run_id: UUID, targets: Sequence[str], mkt: int
    ) -> None:
        for asin in targets:
            try:
                payload = await gateway.fetch_item(asin)
            except ExternalSourceError as exc:
                logger.warning(
                    "ingest.sp_api.item_failed",
                    extra={"extra": {"asin": asin, "code": exc.code, "error": str(exc)}},
                )
                continue
            if payload is None:
                continue
            await self._land(
                [
                    RawPayload(
                        asin=asin,
                        marketplace_id=mkt,
                        source=PayloadSource.SP_API,
                        ingestion_run_id=run_id,
                        payload=payload,
                        captured_at=self._clock(),
                    )
                ]
            )

    async def _record_missing(self, run_id: UUID, missing: Sequence[str], mkt: int) -> None:
        detected_at = self._clock()

        async def _create(uow: UnitOfWork) -> int:
            dq: DQIssueRepository = uow.get_repository(DQIssueRepository)
            return await dq.bulk_create(
                [
                    missing_payload_issue(
                        asin=asin,
                        marketplace_id=mkt,
                        ingestion_run_id=run_id,
                        detected_at=detected_at,
                    )
                    for asin in missing
                ]
            )

        await run_in_uow(self._uow_factory(), _create)
        logger.warning(
            "ingest.items.missing",
            extra={"extra": {"count": len(missing), "asins": list(missing)}},
        )

    async def _record_transform_failure(
        self, run_id: UUID, asin: str, mkt: int, exc: Exception
    ) -> None:
        issue = transform_failure_issue(
            asin=asin,
            marketplace_id=mkt,
            ingestion_run_id=run_id,
            error=exc,
            detected_at=self._clock(),
        )

        async def _create(uow: UnitOfWork) -> None:
            dq: DQIssueRepository = uow.get_repository(DQIssueRepository)
            await dq.bulk_create([issue])

        await run_in_uow(self._uow_factory(), _create)
        logger.warning(
            "ingest.item.failed",
            extra={"extra": {"asin": asin, **issue.details}},
        )

    async def _mark_failed(self, run_id: UUID, exc: Exception, start: float) -> None:
        details: dict[str, Any] = {"type": type(exc).__name__}
        if isinstance(exc, DomainError):
            details.update({"code": exc.code, **dict(exc.details or {})})

        async def _fail(uow: UnitOfWork) -> None:
            runs: IngestionRunRepository = uow.get_repository(IngestionRunRepository)
            await runs.update(
                run_id,
                status=IngestionRunStatus.FAILED,
                completed_at=self._clock(),
                duration_ms=int((time.perf_counter() - start) * 1000),
                error_message=str(exc),
                error_details=details,
            )

        await run_in_uow(self._uow_factory(), _fail)
        logger.exception(
            "ingest.cycle.failed",
            extra={"extra": {"ingestion_run_id": str(run_id), **details}},
        )
