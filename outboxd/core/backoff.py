"""Exponential backoff for failed outbox events."""

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from outboxd.core.event import ensure_utc, utcnow


@dataclass
class BackoffPolicy:
    """Computes when a failed event becomes eligible again.

    ``delay = 2 ** retry_count * base_seconds``, so with the default base of 60
    the waits are 2, 4, 8 and 16 minutes for retry counts 1 to 4.

    Jitter multiplies the delay by a uniform factor in ``[1, 1 + jitter)``.
    With ``jitter < 1`` the next step's minimum (``2 * delay``) is still above
    this step's maximum, so delays keep growing strictly with the retry count.
    ``max_delay_seconds`` caps the delay; once the cap is reached growth stops.
    """

    base_seconds: float = 60.0
    jitter: float = 0.0
    max_delay_seconds: float | None = None
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self) -> None:
        if self.base_seconds <= 0:
            raise ValueError(f"base_seconds must be positive, got {self.base_seconds}")
        if not 0.0 <= self.jitter < 1.0:
            raise ValueError(f"jitter must be in [0, 1), got {self.jitter}")
        if self.max_delay_seconds is not None and self.max_delay_seconds <= 0:
            raise ValueError(
                f"max_delay_seconds must be positive, got {self.max_delay_seconds}"
            )

    def delay(self, retry_count: int) -> float:
        """Return the delay in seconds before the next attempt."""
        if retry_count < 0:
            raise ValueError(f"retry_count must be >= 0, got {retry_count}")
        seconds = (2**retry_count) * self.base_seconds
        if self.jitter:
            seconds *= 1.0 + self.rng.random() * self.jitter
        if self.max_delay_seconds is not None:
            seconds = min(seconds, self.max_delay_seconds)
        return seconds

    def next_attempt_at(self, retry_count: int, now: datetime | None = None) -> datetime:
        """Return the earliest time the event may be claimed again."""
        base = ensure_utc(now) if now is not None else utcnow()
        return base + timedelta(seconds=self.delay(retry_count))
