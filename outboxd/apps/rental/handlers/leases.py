"""Lease lifecycle handlers."""

from typing import Any

from outboxd.apps.rental.handlers.notifications import Email, Notification, NotificationHandler


class LeaseTenantSigned(NotificationHandler):
    """Asks the owner to countersign once the tenant has signed."""

    handles = ["Lease.TenantSigned"]
    required_fields = ("lease_id",)

    def build(self, payload: dict[str, Any]) -> list[Notification]:
        # Nothing to tell when the owner has no account yet
        if not payload.get("owner_user_id"):
            return []
        return [
            Notification(
                user_id=payload["owner_user_id"],
                type="lease_tenant_signed",
                title="Tenant signature received",
                body=f"{payload.get('tenant_name')} signed the lease for "
                f"{payload.get('property_address')}. Your turn to sign.",
                metadata={"lease_id": payload["lease_id"], "action": "sign_required"},
            )
        ]

    def emails(self, payload: dict[str, Any]) -> list[Email]:
        if not payload.get("owner_user_id"):
            return []
        return [
            Email(
                to_user_id=payload["owner_user_id"],
                subject=f"{payload.get('tenant_name')} signed the lease",
                body=f"The tenant signed the lease for {payload.get('property_address')}. "
                "Sign in to complete the signature.",
                cta_url=f"/owner/leases/{payload['lease_id']}",
            )
        ]


class LeaseActivated(NotificationHandler):
    handles = ["Lease.Activated"]
    required_fields = ("lease_id",)

    def build(self, payload: dict[str, Any]) -> list[Notification]:
        if not payload.get("tenant_user_id"):
            return []
        where = payload.get("property_address") or "the property"
        return [
            Notification(
                user_id=payload["tenant_user_id"],
                type="lease_activated",
                title="Lease active",
                body=f"Your lease for {where} is now active. Welcome home!",
                metadata={"lease_id": payload["lease_id"]},
            )
        ]
