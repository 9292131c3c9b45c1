# tests/fixtures/fake_session.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Statement-recording async session for repository tests."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy.dialects import postgresql


class _FakeScalars:
    def __init__(self, rows: Sequence[Any]) -> None:
        self._rows = list(rows)

    def first(self) -> Any:
        return self._rows[0] if self._rows else None

    def one(self) -> Any:
        assert len(self._rows) == 1
        return self._rows[0]

    def all(self) -> list[Any]:
        return list(self._rows)


class FakeResult:
    """Just enough of ``sqlalchemy.engine.Result`` for the repositories."""

    def __init__(self, rows: Sequence[Any] = ()) -> None:
        self._rows = list(rows)

    def scalars(self) -> _FakeScalars:
        return _FakeScalars(self._rows)

    def first(self) -> Any:
        return self._rows[0] if self._rows else None

    def all(self) -> list[Any]:
        return list(self._rows)

    def scalar_one(self) -> Any:
        assert len(self._rows) == 1
        return self._rows[0]

    def scalar_one_or_none(self) -> Any:
        return self._rows[0] if self._rows else None


class FakeSession:
    """Records executed statements and replays queued results in order."""

    def __init__(self, *results: FakeResult | Exception) -> None:
        self._results = list(results)
        self.statements: list[Any] = []

    async def execute(self, stmt: Any) -> FakeResult:
        self.statements.append(stmt)
        if not self._results:
            return FakeResult()
        nxt = self._results.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def compile_pg(stmt: Any) -> tuple[str, dict[str, Any]]:
    """Compile against the PostgreSQL dialect; return (sql, params)."""
    compiled = stmt.compile(dialect=postgresql.dialect())
    return " ".join(str(compiled).split()), dict(compiled.params)
