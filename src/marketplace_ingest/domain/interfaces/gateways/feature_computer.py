# src/marketplace_ingest/domain/interfaces/gateways/feature_computer.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Feature computation port.

Feature recomputation is owned by a downstream system; the worker only
triggers it for the item or listing a sync task refreshed.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from marketplace_ingest.domain.entities.task import TaskScope


class FeatureComputer(Protocol):
    """Recompute derived features for one scope."""

    async def compute(self, scope: TaskScope, task_input: Mapping[str, Any]) -> dict[str, Any]:
        """Recompute features and return a JSON-serializable summary."""
        raise NotImplementedError
