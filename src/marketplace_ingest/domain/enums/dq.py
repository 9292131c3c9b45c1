# src/marketplace_ingest/domain/enums/dq.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Data-quality enumerations."""

from __future__ import annotations

from enum import Enum


class DQIssueType(str, Enum):
    """Kind of data-quality problem detected on an item."""

    MISSING_FIELD = "MISSING_FIELD"
    INVALID_VALUE = "INVALID_VALUE"
    STALE_DATA = "STALE_DATA"
    INCONSISTENT_DATA = "INCONSISTENT_DATA"
    TRANSFORM_ERROR = "TRANSFORM_ERROR"
    API_ERROR = "API_ERROR"
    DUPLICATE_DATA = "DUPLICATE_DATA"
    OUT_OF_RANGE = "OUT_OF_RANGE"


class DQSeverity(str, Enum):
    """Severity of a data-quality issue."""

    WARN = "WARN"
    CRITICAL = "CRITICAL"


class DQStatus(str, Enum):
    """Operator-facing lifecycle of a data-quality issue."""

    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"
    IGNORED = "IGNORED"


# Issue kinds that a clean refresh of the same item clears automatically.
AUTO_RESOLVABLE_TYPES: tuple[DQIssueType, ...] = (
    DQIssueType.STALE_DATA,
    DQIssueType.API_ERROR,
)
