# src/marketplace_ingest/adapters/repositories/base_repository.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""
BaseRepository: shared mechanics for the ingestion repositories.

Purpose:
    * Deterministic ordering helpers (NULLS LAST + PK tie-breakers).
    * Safe fetch helpers (one, optional, all).
    * Per-operation latency/error metrics.
    * Missing-table detection so read paths on a fresh database return empty
      results instead of failing.
    * UTC timestamp helper for audit fields.

Layer: adapters / repositories

Notes:
    * No business logic, no domain decisions.
    * Repositories never commit; use cases own transactions.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager, suppress
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import Select, nulls_last
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_ingest.infrastructure.logging.logger import get_json_logger
from marketplace_ingest.infrastructure.observability.metrics import (
    get_db_errors_total,
    get_db_operation_duration_seconds,
)

TModel = TypeVar("TModel")
TResult = TypeVar("TResult")

_UNDEFINED_TABLE_SQLSTATE = "42P01"

logger = get_json_logger(__name__)


def is_missing_table(exc: BaseException) -> bool:
    """Return True when ``exc`` reports an undefined table/relation."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == _UNDEFINED_TABLE_SQLSTATE:
        return True
    text = str(orig) if orig is not None else str(exc)
    return "UndefinedTable" in type(orig).__name__ or (
        "relation" in text and "does not exist" in text
    )


class BaseRepository(Generic[TModel]):  # noqa: UP046
    """Base class for all ingestion repositories."""

    _TABLE: str = "unknown"

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the repository.

        Args:
            session: Async SQLAlchemy session bound to the target database.
        """
        self._session: AsyncSession = session

    # ------------------------------------------------------------------
    # Timestamp utilities
    # ------------------------------------------------------------------

    @staticmethod
    def utc_now() -> datetime:
        """Return current UTC time with timezone info."""
        return datetime.now(UTC)

    # ------------------------------------------------------------------
    # Deterministic ordering utilities
    # ------------------------------------------------------------------

    @staticmethod
    def order_by_latest(
        stmt: Select[Any],
        timestamp_col: Any,
        pk_col: Any,
    ) -> Select[Any]:
        """Apply deterministic latest-first ordering.

        The resulting query orders by:

            timestamp DESC NULLS LAST, pk DESC
        """
        return stmt.order_by(
            nulls_last(timestamp_col.desc()),
            pk_col.desc(),
        )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _observe(self, operation: str) -> AsyncIterator[None]:
        """Record latency and errors for one repository operation."""
        start = time.perf_counter()
        try:
            yield
        except Exception as exc:
            with suppress(Exception):
                get_db_errors_total().labels(
                    operation=operation,
                    table=self._TABLE,
                    reason=type(exc).__name__,
                ).inc()
            raise
        finally:
            with suppress(Exception):
                get_db_operation_duration_seconds().labels(
                    operation=operation,
                    table=self._TABLE,
                ).observe(time.perf_counter() - start)

    async def _read(
        self,
        operation: str,
        fn: Callable[[], Awaitable[TResult]],
        empty: TResult,
    ) -> TResult:
        """Run a read, mapping a missing table to ``empty``.

        Any other storage error propagates.
        """
        try:
            async with self._observe(operation):
                return await fn()
        except DBAPIError as exc:
            if not is_missing_table(exc):
                raise
            logger.warning(
                "db.table_missing",
                extra={"extra": {"table": self._TABLE, "operation": operation}},
            )
            return empty

    # ------------------------------------------------------------------
    # Fetch helpers
    # ------------------------------------------------------------------

    async def fetch_optional(self, stmt: Select[Any]) -> TModel | None:
        """Execute a statement and return zero or one row."""
        res = await self._session.execute(stmt)
        return res.scalars().first()

    async def fetch_all(self, stmt: Select[Any]) -> list[TModel]:
        """Execute a statement and return all rows as a list."""
        res = await self._session.execute(stmt)
        return list(res.scalars().all())
