"""Payment handlers: confirmations, reminders and overdue alerts."""

from typing import Any

from outboxd.apps.rental.handlers.notifications import Email, Notification, NotificationHandler


class PaymentSucceeded(NotificationHandler):
    """Tells the tenant their payment went through."""

    handles = ["Payment.Succeeded"]
    required_fields = ("tenant_id", "payment_id")

    def build(self, payload: dict[str, Any]) -> list[Notification]:
        where = payload.get("property_address") or "your rent"
        return [
            Notification(
                user_id=payload["tenant_id"],
                type="payment_succeeded",
                title="Payment confirmed",
                body=f"Your payment of {payload.get('amount')} for {where} "
                f"({payload.get('period')}) was confirmed. Your receipt is available.",
                metadata={
                    "payment_id": payload["payment_id"],
                    "invoice_id": payload.get("invoice_id"),
                },
            )
        ]


class PaymentReceived(NotificationHandler):
    """Tells the owner a tenant paid."""

    handles = ["Payment.Received"]
    required_fields = ("owner_id", "payment_id")

    def build(self, payload: dict[str, Any]) -> list[Notification]:
        tenant = payload.get("tenant_name") or "Your tenant"
        where = payload.get("property_address") or "the property"
        return [
            Notification(
                user_id=payload["owner_id"],
                type="payment_received",
                title="Payment received",
                body=f"{tenant} paid {payload.get('amount')} for {where} "
                f"({payload.get('period')}).",
                metadata={
                    "payment_id": payload["payment_id"],
                    "invoice_id": payload.get("invoice_id"),
                },
            )
        ]


class PaymentReminder(NotificationHandler):
    """Reminds the tenant of an unpaid invoice, in-app and by email."""

    handles = ["Payment.Reminder"]
    required_fields = ("tenant_id", "invoice_id")

    def _body(self, payload: dict[str, Any]) -> str:
        return (
            f"Your rent of {payload.get('amount_due')} for {payload.get('property_address')} "
            f"({payload.get('period')}) is unpaid ({payload.get('days_overdue', 0)} days)."
        )

    def build(self, payload: dict[str, Any]) -> list[Notification]:
        return [
            Notification(
                user_id=payload["tenant_id"],
                type="payment_reminder",
                title=payload.get("reminder_subject") or "Payment reminder",
                body=self._body(payload),
                metadata={
                    "invoice_id": payload["invoice_id"],
                    "level": payload.get("reminder_level"),
                    "days_overdue": payload.get("days_overdue"),
                },
            )
        ]

    def emails(self, payload: dict[str, Any]) -> list[Email]:
        return [
            Email(
                to_user_id=payload["tenant_id"],
                subject=payload.get("reminder_subject") or "Payment reminder",
                body=self._body(payload),
                cta_url=f"/tenant/invoices/{payload['invoice_id']}",
            )
        ]


class PaymentOverdueAlert(NotificationHandler):
    """Alerts the owner about a critically overdue invoice."""

    handles = ["Payment.OverdueAlert"]
    required_fields = ("owner_id", "invoice_id")

    def _body(self, payload: dict[str, Any]) -> str:
        return (
            f"{payload.get('tenant_name')} has not paid {payload.get('amount_due')} for "
            f"{payload.get('property_address')} ({payload.get('days_overdue', 0)} days late)."
        )

    def build(self, payload: dict[str, Any]) -> list[Notification]:
        return [
            Notification(
                user_id=payload["owner_id"],
                type="payment_overdue_alert",
                title="Overdue rent",
                body=self._body(payload),
                metadata={
                    "invoice_id": payload["invoice_id"],
                    "days_overdue": payload.get("days_overdue"),
                },
            )
        ]

    def emails(self, payload: dict[str, Any]) -> list[Email]:
        return [
            Email(
                to_user_id=payload["owner_id"],
                subject="Overdue rent detected",
                body=self._body(payload),
                cta_url=f"/owner/invoices/{payload['invoice_id']}",
            )
        ]
