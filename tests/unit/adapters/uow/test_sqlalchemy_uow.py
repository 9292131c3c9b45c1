# tests/unit/adapters/uow/test_sqlalchemy_uow.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""SqlAlchemyUnitOfWork lifecycle against a fake AsyncSession."""

from __future__ import annotations

from typing import Any

import pytest

from marketplace_ingest.adapters.repositories.task_queue_repository import (
    SqlAlchemyTaskQueueRepository,
)
from marketplace_ingest.adapters.uow.sqlalchemy_uow import SqlAlchemyUnitOfWork
from marketplace_ingest.application.uow import run_in_uow
from marketplace_ingest.domain.interfaces.repositories.snapshot_repository import (
    SnapshotRepository,
)
from marketplace_ingest.domain.interfaces.repositories.task_queue_repository import (
    TaskQueueRepository,
)


class _FakeAsyncSession:
    def __init__(self) -> None:
        self.committed = False
        self.rolled_back = False
        self.closed = False

    async def commit(self) -> None:
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True

    async def close(self) -> None:
        self.closed = True


class _SessionFactory:
    def __init__(self) -> None:
        self.sessions: list[_FakeAsyncSession] = []

    def __call__(self) -> _FakeAsyncSession:
        session = _FakeAsyncSession()
        self.sessions.append(session)
        return session


def _uow(factory: _SessionFactory, **kwargs: Any) -> SqlAlchemyUnitOfWork:
    return SqlAlchemyUnitOfWork(factory, **kwargs)  # type: ignore[arg-type]


@pytest.mark.anyio
async def test_run_in_uow_commits_and_closes() -> None:
    factory = _SessionFactory()

    async def _work(uow: Any) -> str:
        repo = uow.get_repository(TaskQueueRepository)
        assert isinstance(repo, SqlAlchemyTaskQueueRepository)
        assert uow.get_repository(TaskQueueRepository) is repo
        return "done"

    assert await run_in_uow(_uow(factory), _work) == "done"

    (session,) = factory.sessions
    assert session.committed and session.closed
    assert not session.rolled_back


@pytest.mark.anyio
async def test_run_in_uow_rolls_back_and_reraises() -> None:
    factory = _SessionFactory()

    async def _work(uow: Any) -> None:
        raise LookupError("missing row")

    with pytest.raises(LookupError):
        await run_in_uow(_uow(factory), _work)

    (session,) = factory.sessions
    assert session.rolled_back and session.closed
    assert not session.committed


@pytest.mark.anyio
async def test_uncommitted_scope_is_discarded_on_close() -> None:
    factory = _SessionFactory()

    async with _uow(factory):
        pass

    (session,) = factory.sessions
    assert session.closed
    assert not session.committed and not session.rolled_back


@pytest.mark.anyio
async def test_nested_entry_and_out_of_scope_use_are_rejected() -> None:
    factory = _SessionFactory()
    uow = _uow(factory)

    with pytest.raises(RuntimeError):
        uow.get_repository(TaskQueueRepository)
    with pytest.raises(RuntimeError):
        await uow.commit()

    async with uow:
        with pytest.raises(RuntimeError):
            await uow.__aenter__()

    async with uow:
        pass
    assert len(factory.sessions) == 2


@pytest.mark.anyio
async def test_repo_factory_overrides_and_unknown_types() -> None:
    sentinel = object()
    uow = _uow(_SessionFactory(), repo_factories={SnapshotRepository: lambda s: sentinel})

    async with uow:
        assert uow.get_repository(SnapshotRepository) is sentinel
        with pytest.raises(KeyError):
            uow.get_repository(dict)
