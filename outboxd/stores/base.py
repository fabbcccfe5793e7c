"""Event store protocol for the outbox table.

ALL persistence lives in stores, not in the Dispatcher. The Dispatcher keeps
no event state between invocations; it only claims rows and records outcomes.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from outboxd.core.event import EventStatus, OutboxEvent


@runtime_checkable
class EventStore(Protocol):
    """Protocol defining the durable outbox table.

    Stores are responsible for:
    - Accepting new pending events from producers (add)
    - Atomically claiming due events for one worker (claim_due)
    - Recording outcomes, fenced on the claiming worker (mark_*, reschedule, release)
    - Handing stuck claims back to pending (release_stale)

    Outcome writes return False when the row is no longer ``processing`` for
    ``worker_id``; they never resurrect a terminal event.
    """

    async def add(self, event: OutboxEvent) -> None:
        """Insert a new event row."""
        ...

    async def get(self, event_id: str) -> OutboxEvent | None:
        """Return the current snapshot of an event, or None if unknown."""
        ...

    async def select_due(self, limit: int, now: datetime) -> list[OutboxEvent]:
        """Read up to ``limit`` due pending events, earliest ``scheduled_at`` first.

        Pure read, no state change.
        """
        ...

    async def claim_due(self, limit: int, now: datetime, worker_id: str) -> list[OutboxEvent]:
        """Select due pending events and flip them to ``processing`` in one step.

        Each returned event is stamped with ``processed_at=now`` and
        ``claimed_by=worker_id``. Under concurrent callers an event is returned
        to at most one of them.
        """
        ...

    async def mark_completed(self, event_id: str, worker_id: str) -> bool:
        """processing -> completed."""
        ...

    async def reschedule(
        self,
        event_id: str,
        worker_id: str,
        retry_count: int,
        scheduled_at: datetime,
        error_message: str,
    ) -> bool:
        """processing -> pending, recording the failed attempt."""
        ...

    async def mark_failed(
        self, event_id: str, worker_id: str, retry_count: int, error_message: str
    ) -> bool:
        """processing -> failed (terminal)."""
        ...

    async def release(self, event_id: str, worker_id: str) -> bool:
        """processing -> pending without counting an attempt."""
        ...

    async def release_stale(self, older_than: datetime) -> int:
        """Move processing events claimed before ``older_than`` back to pending.

        Returns:
            Number of events released.
        """
        ...

    async def count_by_status(self) -> dict[str, int]:
        """Return the number of events per status value."""
        ...

    async def list_by_status(self, status: EventStatus, limit: int = 100) -> list[OutboxEvent]:
        """Return events in ``status``, oldest ``created_at`` first."""
        ...

    async def close(self) -> None:
        """Release connections held by the store."""
        ...


def due_order_key(event: OutboxEvent) -> tuple:
    """Deterministic claim order: scheduled_at, then created_at, then id."""
    return (event.scheduled_at, event.created_at, event.id)
