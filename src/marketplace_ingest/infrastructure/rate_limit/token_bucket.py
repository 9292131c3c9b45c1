# src/marketplace_ingest/infrastructure/rate_limit/token_bucket.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Token-bucket rate limiting for external data sources.

Purpose:
    Keep each external source within its provider quota and react to
    provider "too many requests" signals. One bucket is constructed per
    source per process and passed explicitly to the gateway that uses it.

Layer:
    infrastructure/rate_limit

Design:
    * Clock, sleep and randomness are injected so behavior is reproducible
      in tests.
    * Provider-issued retry hints always win over the internally computed
      wait.
    * Throttle handling is parameterized by :class:`ThrottlePolicy`; the
      two source factories differ only in capacity, refill rate, starting
      balance and policy.
    * The balance may go negative when concurrent callers acquire after the
      same wait; later callers then wait longer, which keeps the long-run
      rate within quota.
"""

from __future__ import annotations

import asyncio
import math
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from marketplace_ingest.infrastructure.logging.logger import get_json_logger

__all__ = [
    "RateLimitDecision",
    "ThrottlePolicy",
    "TokenBucket",
    "KEEPA_THROTTLE_POLICY",
    "SP_API_THROTTLE_POLICY",
    "keepa_token_bucket",
    "sp_api_token_bucket",
]

logger = get_json_logger(__name__)


class _Random(Protocol):
    def random(self) -> float: ...


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    """What to do after a provider throttle signal.

    Attributes:
        wait_s: Seconds to wait before the next request.
        should_retry: False once the consecutive-throttle budget is spent.
    """

    wait_s: float
    should_retry: bool


@dataclass(frozen=True, slots=True)
class ThrottlePolicy:
    """Reaction to provider throttle signals.

    Attributes:
        max_consecutive: Retries allowed while throttles keep arriving.
        jitter_ratio: Upper bound of the proportional jitter added to waits.
        full_refill_s: Fallback wait when the provider gives no hint. When
            None, the fallback is the time to refill half the bucket.
        consecutive_step_s: Extra wait per consecutive throttle after the
            first (full-refill strategy only).
        consecutive_step_cap_s: Cap on the accumulated extra wait.
    """

    max_consecutive: int
    jitter_ratio: float
    full_refill_s: float | None = None
    consecutive_step_s: float = 0.0
    consecutive_step_cap_s: float = 0.0


KEEPA_THROTTLE_POLICY = ThrottlePolicy(
    max_consecutive=3,
    jitter_ratio=0.03,
    full_refill_s=65.0,
    consecutive_step_s=30.0,
    consecutive_step_cap_s=60.0,
)

SP_API_THROTTLE_POLICY = ThrottlePolicy(max_consecutive=5, jitter_ratio=0.10)


class TokenBucket:
    """Token bucket with provider-throttle handling.

    Args:
        name: Bucket name used in logs and metrics.
        capacity: Maximum tokens held.
        refill_rate: Tokens added per second.
        initial_tokens: Starting balance; defaults to ``capacity``.
        policy: Throttle reaction policy.
        clock: Monotonic clock in seconds.
        sleep: Awaitable sleep in seconds.
        rng: Source of jitter.
    """

    def __init__(
        self,
        *,
        name: str,
        capacity: float,
        refill_rate: float,
        initial_tokens: float | None = None,
        policy: ThrottlePolicy = SP_API_THROTTLE_POLICY,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: _Random | None = None,
    ) -> None:
        if capacity <= 0 or refill_rate <= 0:
            raise ValueError("capacity and refill_rate must be positive")
        self.name = name
        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self.policy = policy
        self._clock = clock
        self._sleep = sleep
        self._rng: _Random = rng or random.Random()
        self._tokens = float(capacity if initial_tokens is None else initial_tokens)
        self._last_refill = clock()
        self.consecutive_throttles = 0
        self.total_requests = 0
        self.throttled_requests = 0
        self.total_wait_s = 0.0

    # ------------------------------------------------------------------
    # Balance
    # ------------------------------------------------------------------

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    @property
    def tokens(self) -> float:
        """Return the current balance after refilling."""
        self._refill()
        return self._tokens

    def wait_time(self, count: float = 1) -> float:
        """Return seconds until ``count`` tokens are available (0 if now)."""
        self._refill()
        if self._tokens >= count:
            return 0.0
        return (count - self._tokens) / self.refill_rate

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def try_acquire(self, count: float = 1) -> bool:
        """Take ``count`` tokens if available, without waiting."""
        self._refill()
        if self._tokens >= count:
            self._tokens -= count
            self.total_requests += 1
            return True
        return False

    async def acquire(self, count: float = 1, *, max_wait_s: float = 60.0) -> bool:
        """Take ``count`` tokens, waiting up to ``max_wait_s`` for them.

        Returns:
            bool: False when the required wait exceeds ``max_wait_s``; the
            balance is left untouched in that case.
        """
        if self.try_acquire(count):
            return True

        wait_s = self.wait_time(count)
        if wait_s > max_wait_s:
            return False

        self.throttled_requests += 1
        await self._sleep(math.ceil(wait_s))
        self._refill()
        self._tokens -= count
        self.total_requests += 1
        self.total_wait_s += math.ceil(wait_s)
        return True

    async def wait_for_tokens(self, count: float = 1) -> float:
        """Wait until ``count`` tokens are available without taking them.

        Returns:
            float: Seconds waited.
        """
        wait_s = self.wait_time(count)
        if wait_s <= 0:
            return 0.0
        logger.info(
            "rate_limit.wait",
            extra={
                "extra": {"bucket": self.name, "wait_s": round(wait_s, 3), "tokens_needed": count}
            },
        )
        await self._sleep(wait_s)
        self._refill()
        self.total_wait_s += wait_s
        return wait_s

    # ------------------------------------------------------------------
    # Provider feedback
    # ------------------------------------------------------------------

    def sync_remaining(self, tokens_remaining: float | None) -> None:
        """Adopt the provider-reported balance and clear the throttle streak."""
        if tokens_remaining is None:
            return
        self._tokens = min(float(tokens_remaining), self.capacity)
        self._last_refill = self._clock()
        self.consecutive_throttles = 0

    def reset_throttle_count(self) -> None:
        """Clear the consecutive-throttle streak after a successful call."""
        self.consecutive_throttles = 0

    def handle_rate_limited(
        self,
        *,
        retry_after_s: float | None = None,
        tokens_remaining: float | None = None,
    ) -> RateLimitDecision:
        """React to a provider throttle response.

        The local balance is demonstrably wrong after a throttle, so it is
        drained to zero regardless of ``tokens_remaining``.

        Args:
            retry_after_s: Provider ``Retry-After`` hint in seconds.
            tokens_remaining: Provider-reported balance (logged only).

        Returns:
            RateLimitDecision: Wait and whether another retry is allowed.
        """
        self.consecutive_throttles += 1
        self._tokens = 0.0
        self._last_refill = self._clock()

        policy = self.policy
        if retry_after_s is not None and retry_after_s > 0:
            wait_s = float(retry_after_s)
        elif policy.full_refill_s is not None:
            extra = min(
                (self.consecutive_throttles - 1) * policy.consecutive_step_s,
                policy.consecutive_step_cap_s,
            )
            wait_s = policy.full_refill_s + extra
        else:
            wait_s = (self.capacity / 2) / self.refill_rate

        wait_s += wait_s * policy.jitter_ratio * self._rng.random()
        should_retry = self.consecutive_throttles <= policy.max_consecutive

        logger.warning(
            "rate_limit.throttled",
            extra={
                "extra": {
                    "bucket": self.name,
                    "consecutive": self.consecutive_throttles,
                    "wait_s": round(wait_s, 3),
                    "should_retry": should_retry,
                    "retry_after_s": retry_after_s,
                    "tokens_remaining": tokens_remaining,
                }
            },
        )
        return RateLimitDecision(wait_s=wait_s, should_retry=should_retry)

    async def backoff(self, decision: RateLimitDecision) -> None:
        """Sleep for a throttle decision's wait using the injected sleep."""
        self.throttled_requests += 1
        self.total_wait_s += decision.wait_s
        await self._sleep(decision.wait_s)
        self._refill()


def keepa_token_bucket(**overrides: object) -> TokenBucket:
    """Return a bucket sized for Keepa's 20 tokens/minute plan, starting empty."""
    params: dict[str, object] = {
        "name": "keepa",
        "capacity": 20,
        "refill_rate": 20 / 60,
        "initial_tokens": 0,
        "policy": KEEPA_THROTTLE_POLICY,
    }
    params.update(overrides)
    return TokenBucket(**params)  # type: ignore[arg-type]


def sp_api_token_bucket(**overrides: object) -> TokenBucket:
    """Return a bucket for SP-API: burst 20, 5 requests/second, starting at 10."""
    params: dict[str, object] = {
        "name": "sp_api",
        "capacity": 20,
        "refill_rate": 5,
        "initial_tokens": 10,
        "policy": SP_API_THROTTLE_POLICY,
    }
    params.update(overrides)
    return TokenBucket(**params)  # type: ignore[arg-type]
