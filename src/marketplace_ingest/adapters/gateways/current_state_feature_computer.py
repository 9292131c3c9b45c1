# src/marketplace_ingest/adapters/gateways/current_state_feature_computer.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Feature computer backed by the current-state table.

Summarizes the item's materialized state into the handful of signals the
downstream pricing features consume. Heavier feature engineering belongs to
the downstream system; this adapter keeps the follow-up task meaningful when
that system is not wired in.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from marketplace_ingest.application.uow import UnitOfWork, UnitOfWorkFactory, run_in_uow
from marketplace_ingest.domain.entities.snapshot import CurrentState
from marketplace_ingest.domain.entities.task import TaskScope
from marketplace_ingest.domain.interfaces.repositories.current_state_repository import (
    CurrentStateRepository,
)


def summarize(current: CurrentState) -> dict[str, Any]:
    """Return the feature summary for one current-state row."""
    record = current.record
    spread = None
    if record.keepa_price_p25_90d is not None and record.keepa_price_p75_90d is not None:
        spread = record.keepa_price_p75_90d - record.keepa_price_p25_90d
    return {
        "asin": current.asin,
        "marketplace_id": current.marketplace_id,
        "snapshot_id": current.latest_snapshot_id,
        "snapshot_time": current.last_snapshot_time.isoformat(),
        "price_inc_vat": record.price_inc_vat,
        "buy_box_price": record.buy_box_price,
        "price_iqr_90d": spread,
        "price_volatility_score": record.price_volatility_score,
        "days_of_cover": record.days_of_cover,
        "is_out_of_stock": record.is_out_of_stock,
        "is_buy_box_lost": record.is_buy_box_lost,
    }


class CurrentStateFeatureComputer:
    """``FeatureComputer`` reading ``asin_current`` through a UnitOfWork."""

    def __init__(self, *, uow_factory: UnitOfWorkFactory, default_marketplace_id: int = 1) -> None:
        self._uow_factory = uow_factory
        self._default_marketplace_id = default_marketplace_id

    async def compute(self, scope: TaskScope, task_input: Mapping[str, Any]) -> dict[str, Any]:
        """Summarize the scoped item; ``{"found": False}`` when it is not materialized."""
        asin = str(task_input["asin"])
        marketplace_id = int(task_input.get("marketplace_id", self._default_marketplace_id))

        async def _load(uow: UnitOfWork) -> CurrentState | None:
            repo: CurrentStateRepository = uow.get_repository(CurrentStateRepository)
            return await repo.get(asin, marketplace_id)

        current = await run_in_uow(self._uow_factory(), _load)
        if current is None:
            return {
                "found": False,
                "asin": asin,
                "marketplace_id": marketplace_id,
                "scope_type": scope.scope_type.value,
            }
        return {"found": True, "scope_type": scope.scope_type.value, **summarize(current)}
