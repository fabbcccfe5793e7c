"""Outbox event record for outboxd."""

import json
import re
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

# UUID v4 regex pattern for validation
_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# Maximum payload size (1MB)
MAX_PAYLOAD_SIZE = 1_000_000

# Retry ceiling applied when a producer does not set one
DEFAULT_MAX_RETRIES = 3


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def _is_stored(info: ValidationInfo) -> bool:
    return bool(info.context and info.context.get("stored"))


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class EventStatus(str, Enum):
    """Lifecycle states of an outbox event."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({EventStatus.COMPLETED, EventStatus.FAILED})


class OutboxEvent(BaseModel):
    """Immutable snapshot of one outbox row.

    Stores hand out snapshots; every state transition produces a new
    instance (``model_copy(update=...)``) rather than mutating in place.

    Attributes:
        id: UUID v4 string, auto-generated if not provided.
        event_type: Non-empty discriminator used to resolve a handler.
        payload: JSON-serializable dictionary (max 1MB when serialized).
        status: Current lifecycle state.
        scheduled_at: Earliest time the event may be claimed.
        retry_count: Number of failed attempts so far.
        max_retries: Failed attempts allowed before the event is marked failed.
        error_message: Reason of the most recent failed attempt.
        processed_at: Time of the most recent claim.
        created_at: Creation time, audit only.
        claimed_by: Worker currently holding the claim, if any.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: EventStatus = EventStatus.PENDING
    scheduled_at: datetime = Field(default_factory=utcnow)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1)
    error_message: str | None = None
    processed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    claimed_by: str | None = None

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @classmethod
    def from_stored(cls, data: dict[str, Any]) -> "OutboxEvent":
        """Build a snapshot from a stored row.

        Rows may come from any producer writing to the outbox table, so only
        the structural checks apply: any non-empty id is accepted and the
        payload size limit is not enforced.
        """
        return cls.model_validate(data, context={"stored": True})

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str, info: ValidationInfo) -> str:
        """Ensure id is a valid UUID v4 string (any non-empty id for stored rows)."""
        if _is_stored(info):
            if not v.strip():
                raise ValueError("id must not be empty")
            return v
        if not _UUID_PATTERN.match(v):
            raise ValueError(f"id must be a valid UUID v4 string, got: {v!r}")
        return v.lower()  # Normalize to lowercase

    @field_validator("event_type")
    @classmethod
    def validate_event_type(cls, v: str) -> str:
        """Ensure event_type is non-empty after whitespace stripping."""
        v = v.strip()
        if not v:
            raise ValueError("event_type must not be empty")
        return v

    @field_validator("payload")
    @classmethod
    def validate_payload(cls, v: dict[str, Any], info: ValidationInfo) -> dict[str, Any]:
        """Ensure payload is strictly JSON-serializable and within size limits."""
        if _is_stored(info):
            return v
        try:
            serialized = json.dumps(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"payload must be JSON-serializable: {e}") from e

        byte_length = len(serialized.encode("utf-8"))
        if byte_length > MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"payload exceeds maximum size of {MAX_PAYLOAD_SIZE} bytes "
                f"(got {byte_length} bytes)"
            )
        return v

    @field_validator("scheduled_at", "created_at")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("processed_at")
    @classmethod
    def validate_optional_timestamp(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    @model_validator(mode="after")
    def validate_failed_retry_bound(self, info: ValidationInfo) -> "OutboxEvent":
        """A failed event never records more attempts than it was allowed."""
        if _is_stored(info):
            return self
        if self.status == EventStatus.FAILED and self.retry_count > self.max_retries:
            raise ValueError(
                f"failed event has retry_count {self.retry_count} "
                f"above max_retries {self.max_retries}"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_due(self, now: datetime) -> bool:
        """Return True if the event is pending and its scheduled time has passed."""
        return self.status == EventStatus.PENDING and self.scheduled_at <= ensure_utc(now)
