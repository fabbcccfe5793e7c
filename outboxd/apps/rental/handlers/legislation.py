"""Legislation update fan-out."""

from typing import Any

from outboxd.apps.rental.handlers.notifications import Notification, NotificationHandler


class LegislationUpdated(NotificationHandler):
    """Notifies every affected owner and tenant of a rule change.

    Each recipient's notification is deduplicated on its own, so a retry
    after a partial fan-out only reaches the users that were missed.
    """

    handles = ["Legislation.Updated"]
    required_fields = ("version", "affected_user_ids")

    def build(self, payload: dict[str, Any]) -> list[Notification]:
        title = payload.get("title") or "Rental legislation update"
        return [
            Notification(
                user_id=user_id,
                type="legislation_updated",
                title=title,
                body=payload.get("summary") or "Rules that apply to your lease have changed.",
                metadata={"version": payload["version"]},
            )
            for user_id in payload["affected_user_ids"]
        ]
