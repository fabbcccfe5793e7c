"""Rental demo application entrypoint.

Seeds an in-memory outbox with the events a rental-management app records
(payments, lease signatures, reminders, legislation changes) and runs one
dispatch pass over them:

    Payment.Succeeded   -> tenant notification
    Payment.Received    -> owner notification
    Lease.TenantSigned  -> owner notification + email
    Payment.Reminder    -> tenant notification + email
    Legislation.Updated -> fan-out to every affected user
    Inspection.Scheduled (no handler) -> completed as a no-op

Usage:
    python -m outboxd.apps.rental.main
"""

import asyncio
import json

from outboxd.apps.rental.handlers import (
    LeaseActivated,
    LeaseTenantSigned,
    LegislationUpdated,
    Mailer,
    NotificationCenter,
    PaymentOverdueAlert,
    PaymentReceived,
    PaymentReminder,
    PaymentSucceeded,
)
from outboxd.core.config import DispatcherConfig
from outboxd.core.dispatcher import Dispatcher, DispatchSummary
from outboxd.core.producer import Outbox
from outboxd.core.registry import HandlerRegistry
from outboxd.stores.inmemory import InMemoryEventStore

SAMPLE_EVENTS = [
    (
        "Payment.Succeeded",
        {
            "tenant_id": "tenant-1",
            "payment_id": "pay-100",
            "invoice_id": "inv-42",
            "amount": 850,
            "period": "2026-10",
            "property_address": "12 rue des Lilas",
        },
    ),
    (
        "Payment.Received",
        {
            "owner_id": "owner-1",
            "payment_id": "pay-100",
            "invoice_id": "inv-42",
            "tenant_name": "Alice",
            "amount": 850,
            "period": "2026-10",
        },
    ),
    (
        "Lease.TenantSigned",
        {
            "lease_id": "lease-7",
            "owner_user_id": "owner-1",
            "tenant_name": "Alice",
            "property_address": "12 rue des Lilas",
        },
    ),
    (
        "Payment.Reminder",
        {
            "tenant_id": "tenant-2",
            "invoice_id": "inv-43",
            "amount_due": 720,
            "period": "2026-10",
            "property_address": "3 avenue Foch",
            "days_overdue": 5,
            "reminder_level": 1,
        },
    ),
    (
        "Legislation.Updated",
        {
            "version": "2026.3",
            "title": "Rent cap update",
            "affected_user_ids": ["owner-1", "tenant-1", "tenant-2"],
        },
    ),
    ("Inspection.Scheduled", {"inspection_id": "edl-9"}),
]


def build_registry(
    center: NotificationCenter | None = None, mailer: Mailer | None = None
) -> HandlerRegistry:
    """Registry wiring every rental handler to one notification center and mailer."""
    center = center or NotificationCenter()
    mailer = mailer or Mailer()
    return HandlerRegistry(
        [
            PaymentSucceeded(center),
            PaymentReceived(center),
            PaymentReminder(center, mailer),
            PaymentOverdueAlert(center, mailer),
            LeaseTenantSigned(center, mailer),
            LeaseActivated(center),
            LegislationUpdated(center),
        ]
    )


async def run_demo(
    center: NotificationCenter | None = None,
    mailer: Mailer | None = None,
    config: DispatcherConfig | None = None,
) -> tuple[DispatchSummary, NotificationCenter, Mailer]:
    """Seed the sample events and run one dispatch pass.

    Returns:
        A tuple of (DispatchSummary, NotificationCenter, Mailer) so callers
        can inspect what was delivered.
    """
    center = center or NotificationCenter()
    mailer = mailer or Mailer()
    config = config or DispatcherConfig(json_logs=False)
    store = InMemoryEventStore()
    outbox = Outbox(store, config)
    for event_type, payload in SAMPLE_EVENTS:
        await outbox.publish(event_type, payload)

    dispatcher = Dispatcher(store, build_registry(center, mailer), config=config)
    summary = await dispatcher.run_once()
    return summary, center, mailer


def main() -> None:
    """Main entry point for the rental demo."""
    summary, center, mailer = asyncio.run(run_demo())
    print(json.dumps(summary.to_dict(), indent=2))
    print(f"{len(center.notifications)} notifications, {len(mailer.sent)} emails delivered")


if __name__ == "__main__":
    main()
