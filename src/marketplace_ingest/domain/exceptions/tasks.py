# src/marketplace_ingest/domain/exceptions/tasks.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Task queue exceptions.

Layer:
    domain/exceptions
"""

from __future__ import annotations

from marketplace_ingest.domain.exceptions.base import DomainError


class TaskError(DomainError):
    """Base class for task queue and worker failures."""

    code = "TASK_ERROR"


class TaskNotFoundError(TaskError):
    """Requested task id does not exist."""

    code = "TASK_NOT_FOUND"


class UnknownTaskTypeError(TaskError):
    """A claimed task carries a type with no handler.

    This is terminal for the task: the worker fails it without scheduling a
    retry because no later attempt can succeed.
    """

    code = "UNKNOWN_TASK_TYPE"


class HandlerRegistryError(TaskError):
    """The worker's handler table does not cover every task type."""

    code = "HANDLER_REGISTRY_INCOMPLETE"


class TaskHandlerInputError(TaskError):
    """A task's input payload is missing or malformed for its handler.

    Retrying cannot fix bad input, so the worker treats this as terminal.
    """

    code = "TASK_INPUT_INVALID"
