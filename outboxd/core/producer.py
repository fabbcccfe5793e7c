"""Producer side of the outbox: recording events for later delivery."""

from datetime import datetime, timedelta
from typing import Any

from outboxd.core.config import DispatcherConfig
from outboxd.core.event import EventStatus, OutboxEvent, ensure_utc, utcnow
from outboxd.stores.base import EventStore


class Outbox:
    """Writes pending events that the dispatcher will deliver.

    Example:
        outbox = Outbox(store)
        await outbox.publish("Payment.Succeeded", {"payment_id": "p-1"})
        await outbox.publish("Payment.Reminder", {...}, delay=timedelta(days=3))
    """

    def __init__(self, store: EventStore, config: DispatcherConfig | None = None) -> None:
        self.store = store
        self.config = config or DispatcherConfig()

    async def publish(
        self,
        event_type: str,
        payload: dict[str, Any] | None = None,
        *,
        delay: timedelta | None = None,
        scheduled_at: datetime | None = None,
        max_retries: int | None = None,
    ) -> OutboxEvent:
        """Insert a pending event.

        Args:
            event_type: Handler discriminator, e.g. "Lease.TenantSigned".
            payload: Handler-specific data.
            delay: Deliver no earlier than now + delay.
            scheduled_at: Deliver no earlier than this time. Exclusive with delay.
            max_retries: Failed attempts allowed; defaults to the configured ceiling.

        Returns:
            The stored event.
        """
        if delay is not None and scheduled_at is not None:
            raise ValueError("pass either delay or scheduled_at, not both")
        now = utcnow()
        if delay is not None:
            scheduled_at = now + delay
        event = OutboxEvent(
            event_type=event_type,
            payload=payload or {},
            status=EventStatus.PENDING,
            scheduled_at=ensure_utc(scheduled_at) if scheduled_at is not None else now,
            retry_count=0,
            max_retries=max_retries if max_retries is not None else self.config.default_max_retries,
            created_at=now,
        )
        await self.store.add(event)
        return event
