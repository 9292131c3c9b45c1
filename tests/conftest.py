# tests/conftest.py
from __future__ import annotations

import pytest

from fixtures.ingest_fakes import InMemoryStore, uow_factory_for


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Force pytest-anyio to use asyncio (not trio)."""
    return "asyncio"


@pytest.fixture
def store() -> InMemoryStore:
    """Fresh in-memory tables shared by every fake UnitOfWork in a test."""
    return InMemoryStore()


@pytest.fixture
def uow_factory(store: InMemoryStore):
    """UnitOfWork factory bound to the test's ``store``."""
    return uow_factory_for(store)
