"""In-memory event store guarded by an asyncio.Lock."""

import asyncio
from datetime import datetime

from outboxd.core.errors import DuplicateEventError
from outboxd.core.event import EventStatus, OutboxEvent, ensure_utc
from outboxd.stores.base import due_order_key


class InMemoryEventStore:
    """Dict-backed outbox table.

    Suitable for development and testing. It provides no durability
    guarantees: events are lost if the process terminates. Claims and
    transitions run under a single lock, which makes claim-and-mark atomic
    for every coroutine sharing this instance.
    """

    def __init__(self) -> None:
        self._events: dict[str, OutboxEvent] = {}
        self._lock = asyncio.Lock()

    async def add(self, event: OutboxEvent) -> None:
        """Insert a new event.

        Raises:
            DuplicateEventError: If an event with the same id exists.
        """
        async with self._lock:
            if event.id in self._events:
                raise DuplicateEventError(f"Event {event.id} already exists")
            self._events[event.id] = event

    async def get(self, event_id: str) -> OutboxEvent | None:
        return self._events.get(event_id)

    async def select_due(self, limit: int, now: datetime) -> list[OutboxEvent]:
        now = ensure_utc(now)
        due = [e for e in self._events.values() if e.is_due(now)]
        due.sort(key=due_order_key)
        return due[:limit]

    async def claim_due(self, limit: int, now: datetime, worker_id: str) -> list[OutboxEvent]:
        now = ensure_utc(now)
        async with self._lock:
            due = [e for e in self._events.values() if e.is_due(now)]
            due.sort(key=due_order_key)
            claimed = []
            for event in due[:limit]:
                updated = event.model_copy(
                    update={
                        "status": EventStatus.PROCESSING,
                        "processed_at": now,
                        "claimed_by": worker_id,
                    }
                )
                self._events[event.id] = updated
                claimed.append(updated)
            return claimed

    async def _transition(self, event_id: str, worker_id: str, **changes) -> bool:
        async with self._lock:
            event = self._events.get(event_id)
            if (
                event is None
                or event.status != EventStatus.PROCESSING
                or event.claimed_by != worker_id
            ):
                return False
            self._events[event_id] = event.model_copy(update=changes)
            return True

    async def mark_completed(self, event_id: str, worker_id: str) -> bool:
        return await self._transition(
            event_id, worker_id, status=EventStatus.COMPLETED, claimed_by=None
        )

    async def reschedule(
        self,
        event_id: str,
        worker_id: str,
        retry_count: int,
        scheduled_at: datetime,
        error_message: str,
    ) -> bool:
        return await self._transition(
            event_id,
            worker_id,
            status=EventStatus.PENDING,
            retry_count=retry_count,
            scheduled_at=ensure_utc(scheduled_at),
            error_message=error_message,
            claimed_by=None,
        )

    async def mark_failed(
        self, event_id: str, worker_id: str, retry_count: int, error_message: str
    ) -> bool:
        return await self._transition(
            event_id,
            worker_id,
            status=EventStatus.FAILED,
            retry_count=retry_count,
            error_message=error_message,
            claimed_by=None,
        )

    async def release(self, event_id: str, worker_id: str) -> bool:
        return await self._transition(
            event_id, worker_id, status=EventStatus.PENDING, claimed_by=None
        )

    async def release_stale(self, older_than: datetime) -> int:
        older_than = ensure_utc(older_than)
        released = 0
        async with self._lock:
            for event_id, event in list(self._events.items()):
                if (
                    event.status == EventStatus.PROCESSING
                    and event.processed_at is not None
                    and event.processed_at < older_than
                ):
                    self._events[event_id] = event.model_copy(
                        update={"status": EventStatus.PENDING, "claimed_by": None}
                    )
                    released += 1
        return released

    async def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in EventStatus}
        for event in self._events.values():
            counts[event.status.value] += 1
        return counts

    async def list_by_status(self, status: EventStatus, limit: int = 100) -> list[OutboxEvent]:
        matching = [e for e in self._events.values() if e.status == status]
        matching.sort(key=lambda e: (e.created_at, e.id))
        return matching[:limit]

    async def close(self) -> None:
        """No connections to release."""

    def __len__(self) -> int:
        return len(self._events)
