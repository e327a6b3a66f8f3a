"""Capped exponential backoff with optional jitter.

All delays are in milliseconds. Jitter keeps the capped delay as its
midpoint, so a jittered value may exceed ``max_delay`` by up to
``jitter_percent * max_delay``.
"""

from __future__ import annotations

import math
import random


def calculate_backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    """Return ``min(base_delay * 2**attempt, max_delay)``.

    >>> calculate_backoff(0, 1000, 30000)
    1000
    >>> calculate_backoff(10, 1000, 30000)
    30000
    """
    return min(base_delay * 2**attempt, max_delay)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def add_jitter(delay: float, jitter_percent: float) -> int:
    """Randomize *delay* by up to +/- ``jitter_percent`` and round to whole ms.

    Halves round up, so ``add_jitter(2.5, 0) == 3``. ``jitter_percent=0``
    only rounds.
    """
    if jitter_percent == 0:
        return _round_half_up(delay)
    jitter = delay * jitter_percent * random.uniform(-1.0, 1.0)
    return _round_half_up(delay + jitter)


def calculate_backoff_with_jitter(
    attempt: int,
    base_delay: float,
    max_delay: float,
    jitter_percent: float = 0.25,
) -> int:
    """Cap the exponential delay first, then apply jitter around it."""
    return add_jitter(calculate_backoff(attempt, base_delay, max_delay), jitter_percent)
