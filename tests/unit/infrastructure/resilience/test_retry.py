# tests/unit/infrastructure/resilience/test_retry.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""retry_async behavior with an injected sleep."""

from __future__ import annotations

import pytest

from marketplace_ingest.infrastructure.resilience.retry import RetryPolicy, retry_async


class _Sleeps:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.mark.anyio
async def test_retries_transient_errors_until_success() -> None:
    attempts = {"n": 0}
    sleep = _Sleeps()

    async def _fn() -> str:
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise ConnectionError("reset")
        return "ok"

    result = await retry_async(
        _fn,
        policy=RetryPolicy(total=3, base=0.5, cap=10, jitter=False),
        retry_on=lambda exc: isinstance(exc, ConnectionError),
        sleep=sleep,
    )

    assert result == "ok"
    assert sleep.calls == [0.5, 1.0]


@pytest.mark.anyio
async def test_non_retryable_error_propagates_immediately() -> None:
    sleep = _Sleeps()

    async def _fn() -> str:
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await retry_async(
            _fn,
            policy=RetryPolicy(total=3, base=0.5, cap=10),
            retry_on=lambda exc: isinstance(exc, ConnectionError),
            sleep=sleep,
        )

    assert sleep.calls == []


@pytest.mark.anyio
async def test_budget_exhaustion_raises_last_error() -> None:
    sleep = _Sleeps()

    async def _fn() -> str:
        raise ConnectionError("still down")

    with pytest.raises(ConnectionError, match="still down"):
        await retry_async(
            _fn,
            policy=RetryPolicy(total=2, base=1, cap=1.5),
            retry_on=lambda exc: True,
            sleep=sleep,
        )

    assert len(sleep.calls) == 2
    assert all(0 <= s <= 1.5 for s in sleep.calls)
