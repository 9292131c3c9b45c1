# src/marketplace_ingest/application/use_cases/task_handlers.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Task handlers: one coroutine per ``TaskType``.

Synopsis:
    Sync tasks refresh a single item through the ingestion cycle (without
    the cycle lock) from the sources their type names, then declare a
    feature-recompute follow-up for the task's scope. Feature tasks call the
    ``FeatureComputer`` port.

Input contract:
    Every handler reads ``asin`` (required) and ``marketplace_id``
    (optional, defaults to the configured marketplace) from ``task.input``.
    A missing or malformed identifier raises ``TaskHandlerInputError``.

Layer:
    application/use_cases
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from marketplace_ingest.application.uow import UnitOfWorkFactory
from marketplace_ingest.application.use_cases.run_ingestion_cycle import (
    IngestionCycleRequest,
    RunIngestionCycle,
)
from marketplace_ingest.application.use_cases.transform_and_save import TransformAndSave
from marketplace_ingest.domain.entities.task import (
    FOLLOW_UP_PRIORITY,
    NewTask,
    Task,
    TaskOutcome,
    TaskScope,
)
from marketplace_ingest.domain.enums.ingestion import IngestionRunType, PayloadSource
from marketplace_ingest.domain.enums.task import FEATURE_TASK_FOR_SCOPE, TaskType
from marketplace_ingest.domain.exceptions.ingestion import IngestionError
from marketplace_ingest.domain.exceptions.tasks import TaskHandlerInputError
from marketplace_ingest.domain.interfaces.gateways.feature_computer import FeatureComputer
from marketplace_ingest.domain.interfaces.gateways.listing_source_gateways import (
    KeepaProductGateway,
    SpApiListingGateway,
)
from marketplace_ingest.domain.services.identifiers import normalize_asins
from marketplace_ingest.infrastructure.logging.logger import get_json_logger

__all__ = ["TaskHandler", "SYNC_SOURCES", "TaskHandlers", "require_item", "feature_follow_up"]

logger = get_json_logger(__name__)

TaskHandler = Callable[[Task], Awaitable[TaskOutcome]]

SYNC_SOURCES: dict[TaskType, frozenset[PayloadSource]] = {
    TaskType.INGEST_ASIN_DATA: frozenset({PayloadSource.KEEPA, PayloadSource.SP_API}),
    TaskType.SYNC_KEEPA_ASIN: frozenset({PayloadSource.KEEPA}),
    TaskType.SYNC_AMAZON_CATALOG: frozenset({PayloadSource.SP_API}),
    TaskType.SYNC_AMAZON_OFFER: frozenset({PayloadSource.SP_API}),
    TaskType.SYNC_AMAZON_SALES: frozenset({PayloadSource.SP_API}),
}


def require_item(task: Task, *, default_marketplace_id: int) -> tuple[str, int]:
    """Return ``(asin, marketplace_id)`` from a task's input.

    Raises:
        TaskHandlerInputError: If the identifier is missing or malformed.
    """
    raw = task.input.get("asin")
    if not raw:
        raise TaskHandlerInputError(
            f"asin is required for {task.task_type}", details={"task_id": str(task.id)}
        )
    normalized = normalize_asins(str(raw), max_items=1)
    if not normalized.valid:
        raise TaskHandlerInputError(
            f"Invalid asin for {task.task_type}: {raw}", details={"task_id": str(task.id)}
        )
    try:
        marketplace_id = int(task.input.get("marketplace_id", default_marketplace_id))
    except (TypeError, ValueError) as exc:
        raise TaskHandlerInputError(
            "marketplace_id must be an integer",
            details={"task_id": str(task.id), "marketplace_id": task.input.get("marketplace_id")},
        ) from exc
    return normalized.valid[0], marketplace_id


def feature_follow_up(
    task: Task, *, asin: str, marketplace_id: int, triggered_at: datetime
) -> NewTask:
    """Build the feature-recompute task a successful sync declares.

    A scope without an id is narrowed to the ASIN so that follow-ups for
    different items are not deduplicated against each other.
    """
    scope = task.scope
    if scope.scope_id is None:
        scope = TaskScope(scope_type=scope.scope_type, scope_id=asin)
    return NewTask(
        task_type=FEATURE_TASK_FOR_SCOPE[scope.scope_type],
        scope=scope,
        input={
            "trigger": task.task_type,
            "triggered_at": triggered_at.isoformat(),
            "asin": asin,
            "marketplace_id": marketplace_id,
        },
        priority=FOLLOW_UP_PRIORITY,
        created_by="worker",
    )


class TaskHandlers:
    """Handler table wired to the ingestion use cases and the feature port."""

    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        transform: TransformAndSave,
        feature_computer: FeatureComputer,
        keepa: KeepaProductGateway | None = None,
        sp_api: SpApiListingGateway | None = None,
        default_marketplace_id: int = 1,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._uow_factory = uow_factory
        self._transform = transform
        self._feature_computer = feature_computer
        self._keepa = keepa
        self._sp_api = sp_api
        self._default_marketplace_id = default_marketplace_id
        self._clock = clock

    def registry(self) -> dict[TaskType, TaskHandler]:
        """Return the complete ``TaskType -> handler`` table."""
        table: dict[TaskType, TaskHandler] = {t: self.sync for t in SYNC_SOURCES}
        table[TaskType.COMPUTE_FEATURES_ASIN] = self.compute_features
        table[TaskType.COMPUTE_FEATURES_LISTING] = self.compute_features
        return table

    async def sync(self, task: Task) -> TaskOutcome:
        """Refresh one item from the sources the task type names.

        Raises:
            TaskHandlerInputError: On a missing or malformed identifier.
            IngestionError: When the item could not be refreshed.
        """
        task_type = TaskType(task.task_type)
        asin, marketplace_id = require_item(
            task, default_marketplace_id=self._default_marketplace_id
        )
        sources = SYNC_SOURCES[task_type]
        keepa = self._keepa if PayloadSource.KEEPA in sources else None
        sp_api = self._sp_api if PayloadSource.SP_API in sources else None

        if keepa is None and sp_api is None:
            logger.warning(
                "task.sync.sources_unconfigured",
                extra={
                    "extra": {
                        "task_type": task.task_type,
                        "asin": asin,
                        "sources": sorted(s.value for s in sources),
                    }
                },
            )
            return TaskOutcome(result={"skipped": True, "reason": "sources_not_configured"})

        cycle = RunIngestionCycle(
            uow_factory=self._uow_factory,
            transform=self._transform,
            keepa=keepa,
            sp_api=sp_api,
            clock=self._clock,
        )
        summary = await cycle.execute(
            IngestionCycleRequest(
                asins=[asin],
                marketplace_id=marketplace_id,
                max_items=1,
                run_type=IngestionRunType.SINGLE_ITEM,
                fill_missing_sources=len(sources) == 1,
                exclusive=False,
            )
        )
        if summary.failed or not summary.succeeded:
            raise IngestionError(
                f"Refresh of {asin} did not produce a snapshot",
                details={
                    "asin": asin,
                    "marketplace_id": marketplace_id,
                    "ingestion_run_id": str(summary.ingestion_run_id),
                    "missing": list(summary.missing),
                },
            )

        result: dict[str, Any] = {
            "asin": asin,
            "marketplace_id": marketplace_id,
            "ingestion_run_id": str(summary.ingestion_run_id),
            "status": summary.status.value if summary.status else None,
            "sources": sorted(s.value for s in sources),
        }
        follow_up = feature_follow_up(
            task, asin=asin, marketplace_id=marketplace_id, triggered_at=self._clock()
        )
        return TaskOutcome(result=result, follow_ups=(follow_up,))

    async def compute_features(self, task: Task) -> TaskOutcome:
        """Recompute features for the task's item."""
        asin, marketplace_id = require_item(
            task, default_marketplace_id=self._default_marketplace_id
        )
        summary = await self._feature_computer.compute(
            task.scope, {**task.input, "asin": asin, "marketplace_id": marketplace_id}
        )
        return TaskOutcome(result=summary)
