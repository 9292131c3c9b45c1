# src/marketplace_ingest/application/use_cases/transform_and_save.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Use case: transform one item's landed payloads and persist the result.

Pipeline (pure, then one transaction):
    1. Pick the Keepa and SP-API payloads landed for the item in the run
       (optionally falling back to the newest earlier payload of a source the
       run did not fetch).
    2. ``snapshot_time`` = latest ``captured_at`` among the payloads used.
    3. Flatten each source, merge by field precedence, derive fields.
    4. Fingerprint the derived record and run DQ checks, both evaluated
       against ``snapshot_time`` rather than the wall clock.
    5. In one transaction: append the snapshot, persist its DQ issues,
       upsert the current state (freshness-guarded), auto-resolve OPEN
       stale/API issues for the item.

Layer:
    application/use_cases
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from marketplace_ingest.application.uow import UnitOfWork, UnitOfWorkFactory
from marketplace_ingest.domain.entities.dq_issue import DQIssue
from marketplace_ingest.domain.entities.ingestion_run import TransformResult
from marketplace_ingest.domain.entities.raw_payload import RawPayload
from marketplace_ingest.domain.entities.snapshot import CurrentState, Snapshot
from marketplace_ingest.domain.enums.dq import AUTO_RESOLVABLE_TYPES
from marketplace_ingest.domain.enums.ingestion import PayloadSource
from marketplace_ingest.domain.exceptions.ingestion import IngestionError
from marketplace_ingest.domain.interfaces.repositories.current_state_repository import (
    CurrentStateRepository,
)
from marketplace_ingest.domain.interfaces.repositories.dq_issue_repository import (
    DQIssueRepository,
)
from marketplace_ingest.domain.interfaces.repositories.raw_payload_repository import (
    RawPayloadRepository,
)
from marketplace_ingest.domain.interfaces.repositories.snapshot_repository import (
    SnapshotRepository,
)
from marketplace_ingest.domain.services.dq_engine import DQConfig, run_checks
from marketplace_ingest.domain.services.fingerprint import generate_fingerprint, has_changed
from marketplace_ingest.domain.services.merge_engine import (
    TRANSFORM_VERSION,
    derive_fields,
    flatten_keepa,
    flatten_sp_api,
    merge_records,
)
from marketplace_ingest.infrastructure.logging.logger import get_json_logger
from marketplace_ingest.infrastructure.observability.metrics import get_dq_issues_total

logger = get_json_logger(__name__)


@dataclass(frozen=True, slots=True)
class TransformRequest:
    """Identify the item and run to transform.

    Attributes:
        asin: Item identifier.
        marketplace_id: Internal marketplace id.
        ingestion_run_id: Run whose payloads are transformed.
        fill_missing_sources: When True, a source with no payload in this run
            is filled with that source's newest earlier payload.
        asin_entity_id: Optional catalog entity reference carried through.
    """

    asin: str
    marketplace_id: int
    ingestion_run_id: UUID
    fill_missing_sources: bool = False
    asin_entity_id: int | None = None


def _pick(payloads: Sequence[RawPayload], source: PayloadSource) -> RawPayload | None:
    matching = [p for p in payloads if p.source == source]
    if not matching:
        return None
    return max(matching, key=lambda p: p.captured_at)


class TransformAndSave:
    """Transform one item's payloads into a snapshot and current state."""

    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        our_seller_id: str | None = None,
        dq_config: DQConfig | None = None,
    ) -> None:
        """Initialize the use case.

        Args:
            uow_factory: Creates a fresh UnitOfWork per execution.
            our_seller_id: Our seller id, for buy-box-lost detection.
            dq_config: Optional DQ thresholds.
        """
        self._uow_factory = uow_factory
        self._our_seller_id = our_seller_id
        self._dq_config = dq_config

    async def execute(self, req: TransformRequest) -> TransformResult:
        """Transform and persist one item.

        Raises:
            IngestionError: If no payload is available for the item.
        """
        start = time.perf_counter()

        async with self._uow_factory() as uow:
            raw_repo: RawPayloadRepository = uow.get_repository(RawPayloadRepository)
            payloads = await raw_repo.get_for_run_and_item(
                req.ingestion_run_id, req.asin, req.marketplace_id
            )
            keepa = _pick(payloads, PayloadSource.KEEPA)
            sp_api = _pick(payloads, PayloadSource.SP_API)
            if req.fill_missing_sources:
                if keepa is None:
                    keepa = await raw_repo.latest_for_item_and_source(
                        req.asin, req.marketplace_id, PayloadSource.KEEPA
                    )
                if sp_api is None:
                    sp_api = await raw_repo.latest_for_item_and_source(
                        req.asin, req.marketplace_id, PayloadSource.SP_API
                    )

            used = [p for p in (keepa, sp_api) if p is not None]
            if not used:
                raise IngestionError(
                    "No raw payloads available for item.",
                    details={
                        "asin": req.asin,
                        "marketplace_id": req.marketplace_id,
                        "ingestion_run_id": str(req.ingestion_run_id),
                    },
                )

            snapshot_time = max(p.captured_at for p in used)
            snapshot = self._build_snapshot(req, keepa, sp_api, snapshot_time)
            issues = run_checks(
                snapshot.record,
                asin=req.asin,
                marketplace_id=req.marketplace_id,
                ingestion_run_id=req.ingestion_run_id,
                as_of=snapshot_time,
                config=self._dq_config,
            )

            result = await self._persist(uow, snapshot, issues)

        duration_ms = int((time.perf_counter() - start) * 1000)
        for issue in issues:
            with suppress(Exception):
                get_dq_issues_total().labels(
                    issue_type=issue.issue_type.value, severity=issue.severity.value
                ).inc()

        logger.info(
            "transform.item.saved",
            extra={
                "extra": {
                    "asin": req.asin,
                    "marketplace_id": req.marketplace_id,
                    "snapshot_id": result.snapshot_id,
                    "changed": result.changed,
                    "current_applied": result.current_applied,
                    "dq_issues": len(issues),
                }
            },
        )
        return TransformResult(
            asin=req.asin,
            marketplace_id=req.marketplace_id,
            snapshot_id=result.snapshot_id,
            fingerprint=result.fingerprint,
            changed=result.changed,
            current_applied=result.current_applied,
            dq_issue_count=len(issues),
            duration_ms=duration_ms,
        )

    def _build_snapshot(
        self,
        req: TransformRequest,
        keepa: RawPayload | None,
        sp_api: RawPayload | None,
        snapshot_time: datetime,
    ) -> Snapshot:
        keepa_fields = flatten_keepa(keepa.payload if keepa else None, as_of=snapshot_time)
        sp_fields = flatten_sp_api(sp_api.payload if sp_api else None)
        record = derive_fields(
            merge_records(keepa_fields, sp_fields), our_seller_id=self._our_seller_id
        )
        fingerprint = generate_fingerprint(
            {**record.as_dict(), "asin": req.asin, "marketplace_id": req.marketplace_id}
        )
        return Snapshot(
            asin=req.asin,
            marketplace_id=req.marketplace_id,
            ingestion_run_id=req.ingestion_run_id,
            record=record,
            fingerprint=fingerprint,
            transform_version=TRANSFORM_VERSION,
            snapshot_time=snapshot_time.astimezone(UTC),
            asin_entity_id=req.asin_entity_id,
            amazon_raw=sp_api.payload if sp_api else None,
            keepa_raw=keepa.payload if keepa else None,
        )

    async def _persist(
        self, uow: UnitOfWork, snapshot: Snapshot, issues: Sequence[DQIssue]
    ) -> TransformResult:
        snapshots: SnapshotRepository = uow.get_repository(SnapshotRepository)
        current_repo: CurrentStateRepository = uow.get_repository(CurrentStateRepository)
        dq_repo: DQIssueRepository = uow.get_repository(DQIssueRepository)

        previous = await snapshots.latest(snapshot.asin, snapshot.marketplace_id)
        try:
            saved = await snapshots.append(snapshot)
            if saved.id is None:
                raise IngestionError("Snapshot insert returned no id.")
            # Older stale/API issues close before this run's findings are recorded.
            await dq_repo.auto_resolve(
                snapshot.asin, snapshot.marketplace_id, list(AUTO_RESOLVABLE_TYPES)
            )
            await dq_repo.bulk_create([i.for_snapshot(saved.id) for i in issues])
            outcome = await current_repo.upsert(CurrentState.from_snapshot(saved))
        except Exception:
            await uow.rollback()
            raise
        await uow.commit()

        if not outcome.applied:
            logger.info(
                "transform.current.stale_write_skipped",
                extra={
                    "extra": {
                        "asin": snapshot.asin,
                        "marketplace_id": snapshot.marketplace_id,
                        "snapshot_id": saved.id,
                    }
                },
            )
        return TransformResult(
            asin=saved.asin,
            marketplace_id=saved.marketplace_id,
            snapshot_id=saved.id,
            fingerprint=saved.fingerprint,
            changed=has_changed(previous.fingerprint if previous else None, saved.fingerprint),
            current_applied=outcome.applied,
            dq_issue_count=len(issues),
            duration_ms=0,
        )
