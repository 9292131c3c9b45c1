# src/marketplace_ingest/domain/services/dq_engine.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Listing data-quality rule engine.

Purpose:
    Inspect a derived :class:`ListingRecord` and emit typed
    :class:`DQIssue` objects. Bad upstream data never halts ingestion, so the
    engine is total: it never raises for any input record.

Layer:
    domain/services

Notes:
    - Rules are small, explainable and evaluated in a fixed order so the
      output is deterministic for a given record and ``as_of``.
    - Staleness is measured against the injected ``as_of`` rather than the
      wall clock.
    - Auto-resolution of prior issues is a persistence concern and lives in
      the DQ issue repository; the pipeline triggers it after a clean write.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from marketplace_ingest.domain.entities.dq_issue import DQIssue
from marketplace_ingest.domain.entities.listing_record import ListingRecord
from marketplace_ingest.domain.enums.dq import DQIssueType, DQSeverity
from marketplace_ingest.domain.exceptions.base import DomainError

__all__ = [
    "DQConfig",
    "run_checks",
    "missing_payload_issue",
    "transform_failure_issue",
    "KEEPA_DATA_FIELD",
    "RAW_PAYLOAD_FIELD",
]

# Sentinel field names for issues that are not about a single record field.
KEEPA_DATA_FIELD = "keepa_data"
RAW_PAYLOAD_FIELD = "raw_payload"


@dataclass(frozen=True, slots=True)
class DQConfig:
    """Thresholds for the listing DQ rules.

    Attributes:
        required_fields: Fields that must be present and non-empty.
        max_keepa_age_hours: Age beyond which market data is stale.
        volatility_threshold: Coefficient of variation considered abnormal.
    """

    required_fields: Sequence[str] = ("title",)
    max_keepa_age_hours: int = 72
    volatility_threshold: float = 0.5


_DEFAULT_CONFIG = DQConfig()


def _issue(
    *,
    asin: str,
    marketplace_id: int,
    ingestion_run_id: UUID | None,
    issue_type: DQIssueType,
    severity: DQSeverity,
    field_name: str,
    message: str,
    details: dict[str, Any],
    detected_at: datetime,
) -> DQIssue:
    return DQIssue(
        asin=asin,
        marketplace_id=marketplace_id,
        ingestion_run_id=ingestion_run_id,
        issue_type=issue_type,
        severity=severity,
        field_name=field_name,
        message=message,
        details=details,
        detected_at=detected_at,
    )


def _evaluate(
    record: ListingRecord,
    *,
    asin: str,
    marketplace_id: int,
    ingestion_run_id: UUID | None,
    as_of: datetime,
    config: DQConfig,
) -> list[DQIssue]:
    issues: list[DQIssue] = []

    def add(
        issue_type: DQIssueType,
        severity: DQSeverity,
        field_name: str,
        message: str,
        details: dict[str, Any],
    ) -> None:
        issues.append(
            _issue(
                asin=asin,
                marketplace_id=marketplace_id,
                ingestion_run_id=ingestion_run_id,
                issue_type=issue_type,
                severity=severity,
                field_name=field_name,
                message=message,
                details=details,
                detected_at=as_of,
            )
        )

    for name in config.required_fields:
        value = getattr(record, name, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            add(
                DQIssueType.MISSING_FIELD,
                DQSeverity.WARN,
                name,
                f"Required field '{name}' is missing",
                {"field": name, "value": value},
            )

    if record.total_stock is not None and record.total_stock < 0:
        add(
            DQIssueType.INVALID_VALUE,
            DQSeverity.CRITICAL,
            "total_stock",
            "Stock cannot be negative",
            {"field": "total_stock", "value": record.total_stock, "expected": ">= 0"},
        )

    if record.price_inc_vat is not None and record.price_inc_vat <= 0:
        add(
            DQIssueType.INVALID_VALUE,
            DQSeverity.WARN,
            "price_inc_vat",
            "Price should be positive",
            {"field": "price_inc_vat", "value": record.price_inc_vat, "expected": "> 0"},
        )

    if record.seller_count is not None and record.seller_count < 0:
        add(
            DQIssueType.INVALID_VALUE,
            DQSeverity.WARN,
            "seller_count",
            "Seller count cannot be negative",
            {"field": "seller_count", "value": record.seller_count, "expected": ">= 0"},
        )

    if record.keepa_has_data and record.keepa_last_update is not None:
        age_hours = (as_of - record.keepa_last_update).total_seconds() / 3600
        if age_hours > config.max_keepa_age_hours:
            add(
                DQIssueType.STALE_DATA,
                DQSeverity.WARN,
                "keepa_last_update",
                f"Keepa data is older than {config.max_keepa_age_hours} hours",
                {
                    "field": "keepa_last_update",
                    "value": record.keepa_last_update.isoformat(),
                    "age_hours": int(math.floor(age_hours + 0.5)),
                    "max_age_hours": config.max_keepa_age_hours,
                },
            )

    if not record.keepa_has_data:
        add(
            DQIssueType.MISSING_FIELD,
            DQSeverity.WARN,
            KEEPA_DATA_FIELD,
            "No Keepa data available for this ASIN",
            {"keepa_has_data": False},
        )

    volatility = record.price_volatility_score
    if volatility is not None and volatility > config.volatility_threshold:
        add(
            DQIssueType.OUT_OF_RANGE,
            DQSeverity.WARN,
            "price_volatility_score",
            f"High price volatility detected (>{int(config.volatility_threshold * 100)}%)",
            {
                "field": "price_volatility_score",
                "value": volatility,
                "threshold": config.volatility_threshold,
            },
        )

    return issues


def run_checks(
    record: ListingRecord,
    *,
    asin: str,
    marketplace_id: int,
    ingestion_run_id: UUID | None,
    as_of: datetime,
    config: DQConfig | None = None,
) -> list[DQIssue]:
    """Evaluate every DQ rule against a derived record.

    Args:
        record: Derived listing record.
        asin: Item identifier.
        marketplace_id: Internal marketplace id.
        ingestion_run_id: Run that produced the record, if any.
        as_of: Reference time for staleness; also used as ``detected_at``.
        config: Optional thresholds; defaults apply when omitted.

    Returns:
        list[DQIssue]: Zero or more OPEN issues. An unexpected evaluation
        failure is reported as a single CRITICAL ``TRANSFORM_ERROR`` issue.
    """
    try:
        return _evaluate(
            record,
            asin=asin,
            marketplace_id=marketplace_id,
            ingestion_run_id=ingestion_run_id,
            as_of=as_of,
            config=config or _DEFAULT_CONFIG,
        )
    except Exception as exc:  # noqa: BLE001
        return [
            _issue(
                asin=asin,
                marketplace_id=marketplace_id,
                ingestion_run_id=ingestion_run_id,
                issue_type=DQIssueType.TRANSFORM_ERROR,
                severity=DQSeverity.CRITICAL,
                field_name="record",
                message="Data-quality evaluation failed",
                details={"error_type": type(exc).__name__, "error": str(exc)},
                detected_at=as_of,
            )
        ]


def missing_payload_issue(
    *,
    asin: str,
    marketplace_id: int,
    ingestion_run_id: UUID,
    detected_at: datetime,
) -> DQIssue:
    """Build the issue recorded for an item a run targeted but never landed.

    Args:
        asin: Item identifier.
        marketplace_id: Internal marketplace id.
        ingestion_run_id: Run that targeted the item.
        detected_at: Detection time.

    Returns:
        DQIssue: CRITICAL ``API_ERROR`` issue on the ``raw_payload`` sentinel.
    """
    return _issue(
        asin=asin,
        marketplace_id=marketplace_id,
        ingestion_run_id=ingestion_run_id,
        issue_type=DQIssueType.API_ERROR,
        severity=DQSeverity.CRITICAL,
        field_name=RAW_PAYLOAD_FIELD,
        message=(
            "ASIN was targeted for ingestion but no raw payloads were received from any source"
        ),
        details={"targeted": True, "keepa_received": False, "spapi_received": False},
        detected_at=detected_at,
    )


def transform_failure_issue(
    *,
    asin: str,
    marketplace_id: int,
    ingestion_run_id: UUID | None,
    error: BaseException,
    detected_at: datetime,
) -> DQIssue:
    """Build the issue recorded for an item whose transform raised."""
    details: dict[str, Any] = {"error_type": type(error).__name__, "error": str(error)}
    if isinstance(error, DomainError):
        details["code"] = error.code
    return _issue(
        asin=asin,
        marketplace_id=marketplace_id,
        ingestion_run_id=ingestion_run_id,
        issue_type=DQIssueType.TRANSFORM_ERROR,
        severity=DQSeverity.CRITICAL,
        field_name="record",
        message="Transform failed for this item",
        details=details,
        detected_at=detected_at,
    )
