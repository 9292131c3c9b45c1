# src/marketplace_ingest/domain/entities/task.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Task queue entities.

Purpose:
    Storage-agnostic representations of queued tasks, new-task requests and
    handler outcomes used by the worker and the task queue repository.

Layer:
    domain/entities

Notes:
    - ``Task.task_type`` keeps the raw persisted string so that a row written
      by a newer producer (unknown type) can still be loaded and failed
      terminally instead of crashing the claim loop.
    - ``Task.log`` is cumulative; entries are appended, never replaced.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from marketplace_ingest.domain.enums.task import ScopeType, TaskStatus, TaskType

__all__ = [
    "TaskScope",
    "Task",
    "NewTask",
    "TaskOutcome",
    "DEFAULT_PRIORITY",
    "FOLLOW_UP_PRIORITY",
    "DEFAULT_MAX_ATTEMPTS",
]

DEFAULT_PRIORITY = 5
FOLLOW_UP_PRIORITY = 3
DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True, slots=True)
class TaskScope:
    """Entity a task operates on.

    Attributes:
        scope_type: Entity kind (listing or ASIN).
        scope_id: Optional entity identifier (listing id, ASIN entity id).
    """

    scope_type: ScopeType = ScopeType.LISTING
    scope_id: str | None = None


@dataclass(frozen=True, slots=True)
class Task:
    """A persisted queue unit.

    Attributes:
        id: Task identifier.
        task_type: Raw type string as stored.
        scope: Entity scope.
        input: Opaque structured input payload.
        status: Lifecycle state.
        priority: Higher runs sooner.
        attempts: Number of claims so far.
        max_attempts: Claim budget; reaching it makes a failure terminal.
        scheduled_for: Earliest time the task may be claimed.
        started_at: Time of the most recent claim.
        finished_at: Time the task reached a terminal state.
        result: Handler result payload on success.
        error_message: Last failure message.
        log: Cumulative structured log entries.
        created_by: Producer identifier.
        created_at: Creation time.
    """

    id: UUID
    task_type: str
    scope: TaskScope
    input: Mapping[str, Any]
    status: TaskStatus
    priority: int
    attempts: int
    max_attempts: int
    scheduled_for: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: Mapping[str, Any] | None = None
    error_message: str | None = None
    log: tuple[Mapping[str, Any], ...] = ()
    created_by: str = "system"
    created_at: datetime | None = None

    @property
    def known_type(self) -> TaskType | None:
        """Return the typed task type, or None when the string is unknown."""
        try:
            return TaskType(self.task_type)
        except ValueError:
            return None

    @property
    def has_attempts_left(self) -> bool:
        """Return True while another claim is permitted."""
        return self.attempts < self.max_attempts


@dataclass(frozen=True, slots=True)
class NewTask:
    """Request to enqueue a task."""

    task_type: TaskType
    scope: TaskScope = field(default_factory=TaskScope)
    input: Mapping[str, Any] = field(default_factory=dict)
    priority: int = DEFAULT_PRIORITY
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    scheduled_for: datetime | None = None
    created_by: str = "system"

    def __post_init__(self) -> None:
        """Validate the attempt budget."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Result of a successful handler execution.

    Attributes:
        result: Payload persisted on the task.
        follow_ups: Tasks to enqueue after success, deduplicated by the worker
            against PENDING tasks of the same type and scope.
    """

    result: Mapping[str, Any] = field(default_factory=dict)
    follow_ups: tuple[NewTask, ...] = ()
