"""Exponential retry delay with additive jitter."""
from __future__ import annotations

import random
from typing import Optional

from identity_sync.config import BACKOFF_POLICY


def compute_retry_delay_seconds(
    attempts: int,
    *,
    base: Optional[float] = None,
    factor: Optional[float] = None,
    max_seconds: Optional[float] = None,
    jitter_seconds: Optional[float] = None,
) -> float:
    """Delay before the next attempt of a task that has failed ``attempts`` times.

    ``min(max_seconds, base * factor**attempts) + uniform(0, jitter_seconds)``.
    The capped part never decreases as ``attempts`` grows.
    """
    if attempts < 0:
        attempts = 0
    base = float(base if base is not None else BACKOFF_POLICY["base_seconds"])
    factor = float(factor if factor is not None else BACKOFF_POLICY["factor"])
    max_seconds = float(max_seconds if max_seconds is not None else BACKOFF_POLICY["max_seconds"])
    jitter_seconds = float(jitter_seconds if jitter_seconds is not None else BACKOFF_POLICY["jitter_seconds"])

    # factor**attempts overflows float for very large counts; the cap wins anyway.
    try:
        delay = base * (factor ** attempts)
    except OverflowError:
        delay = max_seconds
    delay = min(delay, max_seconds)
    if jitter_seconds > 0:
        delay += random.uniform(0.0, jitter_seconds)
    return max(delay, 0.0)


__all__ = ["compute_retry_delay_seconds"]
