"""Exponential backoff with jitter, shared by navigation and in-page retries."""

from __future__ import annotations

import random
import time
from email.utils import parsedate_to_datetime

from theme_runner.models.config import BackoffConfig

DEFAULT_CAP_SECONDS = 60.0


class BackoffPolicy:
    """``base * 2**(attempt-1) + uniform(0, jitter)``, capped.

    ``rng`` can be any object with a ``uniform(a, b)`` method; pass a seeded
    ``random.Random`` (or a stub) to make delays reproducible.
    """

    def __init__(
        self,
        base: float,
        jitter: float,
        cap: float = DEFAULT_CAP_SECONDS,
        rng: random.Random | None = None,
    ):
        self.base = base
        self.jitter = jitter
        self.cap = cap
        self.rng = rng or random.Random()

    @classmethod
    def from_config(cls, cfg: BackoffConfig, rng: random.Random | None = None) -> "BackoffPolicy":
        return cls(base=cfg.base, jitter=cfg.jitter, cap=cfg.cap, rng=rng)

    def delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        if retry_after is not None and retry_after > 0:
            return min(self.cap, float(retry_after))
        computed = self.base * (2 ** (attempt - 1)) + self.rng.uniform(0, self.jitter)
        return min(self.cap, computed)

    def expected_delay(self, attempt: int) -> float:
        """Mean of ``delay(attempt)`` without drawing any jitter."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        return min(self.cap, self.base * (2 ** (attempt - 1)) + self.jitter / 2)


def rate_limit_policy(rng: random.Random | None = None) -> BackoffPolicy:
    """Policy for explicit HTTP 429 responses."""
    return BackoffPolicy(base=1.0, jitter=1.0, cap=DEFAULT_CAP_SECONDS, rng=rng)


def transient_policy(rng: random.Random | None = None) -> BackoffPolicy:
    """Policy for timeouts, resets and other generic navigation errors."""
    return BackoffPolicy(base=0.5, jitter=0.25, cap=DEFAULT_CAP_SECONDS, rng=rng)


def parse_retry_after(value: str | int | float | None) -> float | None:
    """Parse a Retry-After header value into seconds.

    Accepts delta-seconds or an HTTP-date. Returns None when the value is
    missing, unparseable, or not in the future.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    text = str(value).strip()
    if not text:
        return None
    try:
        seconds = float(text)
        return seconds if seconds > 0 else None
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    seconds = when.timestamp() - time.time()
    return seconds if seconds > 0 else None
