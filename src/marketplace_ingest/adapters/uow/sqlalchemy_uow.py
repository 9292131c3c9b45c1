# src/marketplace_ingest/adapters/uow/sqlalchemy_uow.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""SQLAlchemy-backed Unit of Work implementation.

Purpose:
    Provide a concrete implementation of the application-layer UnitOfWork
    protocol using SQLAlchemy's AsyncSession. This UoW coordinates the task
    queue, landing, snapshot, current-state, DQ and run repositories within a
    single transactional scope.

Layer:
    adapters/uow
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from types import TracebackType
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_ingest.adapters.repositories.current_state_repository import (
    SqlAlchemyCurrentStateRepository,
)
from marketplace_ingest.adapters.repositories.dq_issue_repository import (
    SqlAlchemyDQIssueRepository,
)
from marketplace_ingest.adapters.repositories.ingestion_run_repository import (
    SqlAlchemyIngestionRunRepository,
)
from marketplace_ingest.adapters.repositories.raw_payload_repository import (
    SqlAlchemyRawPayloadRepository,
)
from marketplace_ingest.adapters.repositories.snapshot_repository import (
    SqlAlchemySnapshotRepository,
)
from marketplace_ingest.adapters.repositories.task_queue_repository import (
    SqlAlchemyTaskQueueRepository,
)
from marketplace_ingest.application.uow import UnitOfWork
from marketplace_ingest.domain.interfaces.repositories.current_state_repository import (
    CurrentStateRepository,
)
from marketplace_ingest.domain.interfaces.repositories.dq_issue_repository import (
    DQIssueRepository,
)
from marketplace_ingest.domain.interfaces.repositories.ingestion_run_repository import (
    IngestionRunRepository,
)
from marketplace_ingest.domain.interfaces.repositories.raw_payload_repository import (
    RawPayloadRepository,
)
from marketplace_ingest.domain.interfaces.repositories.snapshot_repository import (
    SnapshotRepository,
)
from marketplace_ingest.domain.interfaces.repositories.task_queue_repository import (
    TaskQueueRepository,
)

DEFAULT_REPO_FACTORIES: dict[type[Any], Callable[[AsyncSession], Any]] = {
    TaskQueueRepository: lambda s: SqlAlchemyTaskQueueRepository(session=s),
    RawPayloadRepository: lambda s: SqlAlchemyRawPayloadRepository(session=s),
    SnapshotRepository: lambda s: SqlAlchemySnapshotRepository(session=s),
    CurrentStateRepository: lambda s: SqlAlchemyCurrentStateRepository(session=s),
    DQIssueRepository: lambda s: SqlAlchemyDQIssueRepository(session=s),
    IngestionRunRepository: lambda s: SqlAlchemyIngestionRunRepository(session=s),
}


class SqlAlchemyUnitOfWork(UnitOfWork):
    """SQLAlchemy-based UnitOfWork implementation.

    Coordinates a single AsyncSession and a set of repositories within a
    transactional context. Intended to be used via::

        async with SqlAlchemyUnitOfWork(session_factory) as uow:
            repo = uow.get_repository(TaskQueueRepository)
            ...
            await uow.commit()

    The instance can be re-entered sequentially; each entry opens a fresh
    session.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repo_factories: Mapping[type[Any], Callable[[AsyncSession], Any]] | None = None,
    ) -> None:
        """Initialize the UnitOfWork.

        Args:
            session_factory: Factory producing AsyncSession instances.
            repo_factories: Optional overrides keyed by repository protocol.
        """
        self._session_factory = session_factory
        self._session: AsyncSession | None = None
        self._repo_factories: dict[type[Any], Callable[[AsyncSession], Any]] = {
            **DEFAULT_REPO_FACTORIES,
            **(dict(repo_factories) if repo_factories is not None else {}),
        }
        self._repos: dict[type[Any], Any] = {}
        self._committed = False
        self._rolled_back = False

    # ------------------------------------------------------------------
    # Async context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SqlAlchemyUnitOfWork:
        """Enter the UnitOfWork context and open a new AsyncSession.

        Raises:
            RuntimeError: If a session is already active (nested usage).
        """
        if self._session is not None:
            raise RuntimeError("UnitOfWork is already active; nested usage is not supported.")

        self._session = self._session_factory()
        self._committed = False
        self._rolled_back = False
        self._repos.clear()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool | None:
        """Exit the UnitOfWork context.

        Rolls back when an exception escaped and nothing was committed, then
        closes the session. Uncommitted work without an exception is also
        discarded by the close.
        """
        try:
            if exc_type is not None and not self._rolled_back:
                await self.rollback()
        finally:
            if self._session is not None:
                await self._session.close()
                self._session = None
            self._repos.clear()
        return None

    # ------------------------------------------------------------------
    # Transaction control
    # ------------------------------------------------------------------

    async def commit(self) -> None:
        """Commit the current transaction.

        Raises:
            RuntimeError: If called without an active session.
        """
        if self._session is None:
            raise RuntimeError("Cannot commit: UnitOfWork has no active session.")

        if self._committed or self._rolled_back:
            return

        await self._session.commit()
        self._committed = True

    async def rollback(self) -> None:
        """Roll back the current transaction if active."""
        if self._session is None:
            return

        if self._rolled_back or self._committed:
            return

        await self._session.rollback()
        self._rolled_back = True

    # ------------------------------------------------------------------
    # Repository resolution
    # ------------------------------------------------------------------

    def get_repository(self, repo_type: type[Any]) -> Any:
        """Return a repository bound to the active session.

        Raises:
            RuntimeError: If called outside of an active UnitOfWork context.
            KeyError: If no factory is registered for ``repo_type``.
        """
        if self._session is None:
            raise RuntimeError(
                "get_repository() called outside of an active UnitOfWork scope. "
                "Use 'async with uow:' before requesting repositories.",
            )

        if repo_type in self._repos:
            return self._repos[repo_type]

        try:
            factory = self._repo_factories[repo_type]
        except KeyError as exc:
            raise KeyError(
                f"No repository factory registered for type {repo_type!r}.",
            ) from exc

        repo = factory(self._session)
        self._repos[repo_type] = repo
        return repo
