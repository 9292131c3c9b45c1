# src/marketplace_ingest/infrastructure/database/session.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Async SQLAlchemy engine/session factory.

This module owns the process-global async SQLAlchemy engine and
``async_sessionmaker``, plus a context manager that yields an
``AsyncSession``.

Lifecycle:
    * Call ``init_engine_and_sessionmaker(settings)`` at process startup.
    * Use ``get_db_session()`` in CLI commands and the worker.
    * Call ``dispose_engine()`` during shutdown.
    * ``create_schema()`` provisions every table from model metadata.

Notes:
    * No business logic here; repositories/use cases consume the session.
    * ``pool_pre_ping=True`` helps surface dead connections before use.
    * When ``DB_SCHEMA`` is set it is applied as the connection search_path.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from typing import Any

from sqlalchemy.exc import IllegalStateChangeError, InvalidRequestError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from marketplace_ingest.config.settings import Settings, get_settings
from marketplace_ingest.infrastructure.database.models import (  # noqa: F401  (register tables)
    dq,
    ingestion,
    listings,
    tasks,
)
from marketplace_ingest.infrastructure.database.models.base import metadata

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None


def init_engine_and_sessionmaker(settings: Settings) -> None:
    """Initialize the global async engine and sessionmaker.

    Args:
        settings: Application settings providing ``database_url``.

    Raises:
        ValueError: If ``database_url`` is empty.
    """
    global _engine, _sessionmaker

    if not settings.database_url:
        raise ValueError("database_url must be configured")
    if _engine is not None:
        # Already initialized (idempotent).
        return

    connect_args: dict[str, Any] = {}
    if settings.db_schema:
        connect_args["server_settings"] = {"search_path": settings.db_schema}

    _engine = create_async_engine(
        url=settings.database_url,
        pool_pre_ping=True,
        echo=settings.db_echo,
        connect_args=connect_args,
    )
    _sessionmaker = async_sessionmaker(bind=_engine, expire_on_commit=False, class_=AsyncSession)


async def dispose_engine() -> None:
    """Dispose the global engine at shutdown."""
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _sessionmaker = None


def get_engine() -> AsyncEngine:
    """Return the initialized engine.

    Raises:
        RuntimeError: If the engine is not yet initialized.
    """
    if _engine is None:
        raise RuntimeError("DB engine not initialized (call init_engine_and_sessionmaker)")
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Return the initialized async sessionmaker.

    Raises:
        RuntimeError: If the sessionmaker is not yet initialized.
    """
    if _sessionmaker is None:
        raise RuntimeError("DB sessionmaker not initialized (call init_engine_and_sessionmaker)")
    return _sessionmaker


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a new ``AsyncSession``.

    Yields:
        AsyncSession: A non-expiring SQLAlchemy async session.

    Notes:
        Rolls back any open transaction and closes the session on exit.
    """
    if _sessionmaker is None:
        init_engine_and_sessionmaker(get_settings())

    session = get_sessionmaker()()
    try:
        yield session
    finally:
        try:
            tx = session.get_transaction()
            if tx and tx.is_active:
                await session.rollback()
        except InvalidRequestError:
            # Session was still provisioning a connection.
            pass

        with suppress(InvalidRequestError, IllegalStateChangeError):
            await session.close()


async def create_schema() -> None:
    """Create every ingestion table that does not exist yet."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
