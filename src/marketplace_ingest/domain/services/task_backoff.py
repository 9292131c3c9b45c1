# src/marketplace_ingest/domain/services/task_backoff.py
# Copyright (c)
# SPDX-License-Identifier: MIT
"""Retry backoff for failed tasks.

Exponential growth with multiplicative jitter in ``[0.5, 1.5)`` so that a
burst of failures against a rate-limited provider does not retry in lockstep.
"""

from __future__ import annotations

import random
from typing import Protocol

__all__ = ["DEFAULT_BACKOFF_BASE_S", "DEFAULT_BACKOFF_CAP_S", "compute_backoff"]

DEFAULT_BACKOFF_BASE_S = 30.0
DEFAULT_BACKOFF_CAP_S = 3600.0


class _Uniform(Protocol):
    def uniform(self, a: float, b: float) -> float: ...


def compute_backoff(
    attempt: int,
    *,
    base_s: float = DEFAULT_BACKOFF_BASE_S,
    cap_s: float = DEFAULT_BACKOFF_CAP_S,
    rng: _Uniform | None = None,
) -> float:
    """Return the delay in seconds before retrying after ``attempt`` failures.

    Args:
        attempt: 1-based attempt number that just failed.
        base_s: Delay for the first attempt before jitter.
        cap_s: Upper bound for the returned delay.
        rng: Source of jitter; defaults to the ``random`` module.

    Returns:
        float: ``min(cap, base * 2**(attempt-1)) * uniform(0.5, 1.5)``,
        never above ``cap_s``.
    """
    exponent = max(attempt, 1) - 1
    raw = min(cap_s, base_s * (2**exponent))
    jitter = (rng or random).uniform(0.5, 1.5)
    return min(cap_s, raw * jitter)
