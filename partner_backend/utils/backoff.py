"""Exponential backoff with jitter for side-effect task retries."""
from __future__ import annotations

import random
from typing import Optional

from partner_backend.config import BACKOFF_POLICY


def compute_backoff_seconds(attempt: int, *, base: Optional[float] = None, factor: Optional[float] = None, max_seconds: Optional[float] = None, jitter_pct: Optional[float] = None) -> float:
    """Delay before retry number ``attempt`` (1-based), capped and jittered."""
    attempt = max(attempt, 1)
    base = float(base if base is not None else BACKOFF_POLICY["base_seconds"])
    factor = float(factor if factor is not None else BACKOFF_POLICY["factor"])
    max_seconds = float(max_seconds if max_seconds is not None else BACKOFF_POLICY["max_seconds"])
    jitter_pct = float(jitter_pct if jitter_pct is not None else BACKOFF_POLICY["jitter_pct"])

    delay = min(base * (factor ** (attempt - 1)), max_seconds)
    if jitter_pct > 0:
        spread = delay * jitter_pct
        delay = random.uniform(delay - spread, delay + spread)
    return max(delay, 0.0)


def attempts_exhausted(attempt: int, max_attempts: Optional[int] = None) -> bool:
    """True once ``attempt`` tries have used up the retry budget."""
    limit = int(max_attempts if max_attempts is not None else BACKOFF_POLICY["max_attempts"])
    return attempt >= limit


__all__ = ["compute_backoff_seconds", "attempts_exhausted"]
