# src/marketplace_ingest/infrastructure/logging/logger.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Structured JSON logging utilities.

This module exposes an idempotent root configurator and a per-module logger
factory that produce JSON logs suitable for ingestion by log pipelines.

Features:
    * Stable keys: ``ts``, ``level``, ``logger``, ``message``.
    * Automatic enrichment with ``task_id`` and ``ingestion_run_id`` via
      contextvars, so every line emitted while a worker executes a task or a
      pipeline processes a run carries its correlation ids.
    * Non-JSON values in extras (UUIDs, datetimes, Decimals) are rendered
      with ``str``.

Typical usage:
    configure_root_logging()
    log = get_json_logger(__name__)
    log.info("worker.task.succeeded", extra={"extra": {"task_type": "..."}})
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

__all__ = [
    "configure_root_logging",
    "get_json_logger",
    "set_task_context",
    "task_context",
    "get_task_id",
    "get_ingestion_run_id",
]

# Per-execution correlation context (task-local via contextvars).
_TASK_ID_CTX: ContextVar[str | None] = ContextVar("mi_task_id", default=None)
_INGESTION_RUN_ID_CTX: ContextVar[str | None] = ContextVar("mi_ingestion_run_id", default=None)


def set_task_context(
    *, task_id: object | None = None, ingestion_run_id: object | None = None
) -> None:
    """Set correlation identifiers on the current context.

    Args:
        task_id: Queue task id being executed, if any.
        ingestion_run_id: Ingestion run being processed, if any.

    Notes:
        Additive: passing only one argument leaves the other unchanged.
    """
    if task_id is not None:
        _TASK_ID_CTX.set(str(task_id))
    if ingestion_run_id is not None:
        _INGESTION_RUN_ID_CTX.set(str(ingestion_run_id))


@contextmanager
def task_context(
    *, task_id: object | None = None, ingestion_run_id: object | None = None
) -> Iterator[None]:
    """Bind correlation identifiers for the duration of a block."""
    task_token = _TASK_ID_CTX.set(str(task_id)) if task_id is not None else None
    run_token = (
        _INGESTION_RUN_ID_CTX.set(str(ingestion_run_id)) if ingestion_run_id is not None else None
    )
    try:
        yield
    finally:
        if run_token is not None:
            _INGESTION_RUN_ID_CTX.reset(run_token)
        if task_token is not None:
            _TASK_ID_CTX.reset(task_token)


def get_task_id() -> str | None:
    """Return the current task id from contextvars, if any."""
    return _TASK_ID_CTX.get(None)


def get_ingestion_run_id() -> str | None:
    """Return the current ingestion run id from contextvars, if any."""
    return _INGESTION_RUN_ID_CTX.get(None)


class _JsonFormatter(logging.Formatter):
    """JSON log formatter emitting stable keys and optional extras."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON object.

        Args:
            record: Logging record.

        Returns:
            JSON-encoded log line.
        """
        ts = datetime.now(tz=UTC).isoformat()
        payload: dict[str, Any] = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Correlation ids: prefer record attribute, then contextvar.
        tid = getattr(record, "task_id", None) or _TASK_ID_CTX.get(None)
        if tid:
            payload["task_id"] = str(tid)
        rid = getattr(record, "ingestion_run_id", None) or _INGESTION_RUN_ID_CTX.get(None)
        if rid:
            payload["ingestion_run_id"] = str(rid)

        # Exceptions: guard against None in exc_info tuple.
        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            if exc_type is not None:
                payload["exc_type"] = exc_type.__name__
            if exc_value is not None:
                payload["exc_message"] = str(exc_value)

        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def configure_root_logging(level: str | int | None = None) -> None:
    """Initialize the root logger with a JSON stream handler (idempotent).

    Args:
        level: Logging level or level name. If ``None``, use env ``LOG_LEVEL`` or ``INFO``.
    """
    root = logging.getLogger()

    env_level = os.getenv("LOG_LEVEL")
    resolved: int | str = (
        level if level is not None else (env_level.upper() if env_level else "INFO")
    )
    root.setLevel(resolved)

    if root.handlers:
        # Already configured; avoid duplicate handlers.
        return

    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter())
    root.addHandler(handler)


def get_json_logger(name: str) -> logging.Logger:
    """Return a module-specific logger backed by the JSON root handler.

    This does *not* implicitly configure the root logger. Call
    :func:`configure_root_logging` once at startup for global defaults.

    Args:
        name: Logger name, typically ``__name__`` of the caller.

    Returns:
        Configured logger.
    """
    logger = logging.getLogger(name)
    logger.propagate = True
    return logger
