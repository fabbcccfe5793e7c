"""Rental demo handlers."""

from outboxd.apps.rental.handlers.leases import LeaseActivated, LeaseTenantSigned
from outboxd.apps.rental.handlers.legislation import LegislationUpdated
from outboxd.apps.rental.handlers.notifications import (
    Email,
    Mailer,
    Notification,
    NotificationCenter,
    NotificationHandler,
)
from outboxd.apps.rental.handlers.payments import (
    PaymentOverdueAlert,
    PaymentReceived,
    PaymentReminder,
    PaymentSucceeded,
)

__all__ = [
    "Email",
    "LeaseActivated",
    "LeaseTenantSigned",
    "LegislationUpdated",
    "Mailer",
    "Notification",
    "NotificationCenter",
    "NotificationHandler",
    "PaymentOverdueAlert",
    "PaymentReceived",
    "PaymentReminder",
    "PaymentSucceeded",
]
