# src/marketplace_ingest/domain/enums/task.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Task queue enumerations.

Purpose:
    Closed vocabularies for task types, lifecycle states and scope kinds.
    Values are the strings persisted in the task table.

Layer:
    domain
"""

from __future__ import annotations

from enum import Enum


class TaskStatus(str, Enum):
    """Lifecycle state of a queued task."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        """Return True for states that never transition again."""
        return self in _TERMINAL

    @property
    def is_cancellable(self) -> bool:
        """Return True for states from which cancellation is allowed."""
        return self in (TaskStatus.PENDING, TaskStatus.RUNNING)


_TERMINAL = frozenset({TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELLED})


class TaskType(str, Enum):
    """Closed set of task types the worker can dispatch."""

    # ------------------------------------------------------------------ #
    # Ingestion                                                          #
    # ------------------------------------------------------------------ #
    INGEST_ASIN_DATA = "INGEST_ASIN_DATA"
    SYNC_KEEPA_ASIN = "SYNC_KEEPA_ASIN"
    SYNC_AMAZON_CATALOG = "SYNC_AMAZON_CATALOG"
    SYNC_AMAZON_OFFER = "SYNC_AMAZON_OFFER"
    SYNC_AMAZON_SALES = "SYNC_AMAZON_SALES"

    # ------------------------------------------------------------------ #
    # Downstream follow-ups                                              #
    # ------------------------------------------------------------------ #
    COMPUTE_FEATURES_ASIN = "COMPUTE_FEATURES_ASIN"
    COMPUTE_FEATURES_LISTING = "COMPUTE_FEATURES_LISTING"


class ScopeType(str, Enum):
    """Kind of entity a task operates on."""

    LISTING = "LISTING"
    ASIN = "ASIN"


FEATURE_TASK_FOR_SCOPE: dict[ScopeType, TaskType] = {
    ScopeType.ASIN: TaskType.COMPUTE_FEATURES_ASIN,
    ScopeType.LISTING: TaskType.COMPUTE_FEATURES_LISTING,
}
