"""Core components of the outboxd dispatcher.

Types:
    OutboxEvent: Immutable snapshot of an outbox row.
    EventStatus: pending, processing, completed, failed.
    Handler: Abstract base class for event handlers.
    HandlerOutcome: Success or failure-with-reason reported by a handler.
    HandlerRegistry: Maps event types to handlers.
    BackoffPolicy: Exponential retry delays.
    Dispatcher: Claims due events and records handler outcomes.
    DispatchSummary: Counts from one run_once() invocation.
    DispatcherConfig: Settings read from OUTBOX_* environment variables.
    Outbox: Producer helper writing pending events.

Errors:
    OutboxError: Base class.
    StoreUnavailableError: Store unreachable during claim; invocation aborted.
    DuplicateHandlerError: Two handlers registered for one event type.
    DuplicateEventError: Event id added twice.
    HandlerTimeoutError: Handler exceeded its timeout.
"""

from outboxd.core.backoff import BackoffPolicy
from outboxd.core.config import DispatcherConfig, get_config
from outboxd.core.dispatcher import Dispatcher, DispatcherStats, DispatchSummary
from outboxd.core.errors import (
    DuplicateEventError,
    DuplicateHandlerError,
    HandlerTimeoutError,
    OutboxError,
    StoreUnavailableError,
)
from outboxd.core.event import (
    DEFAULT_MAX_RETRIES,
    MAX_PAYLOAD_SIZE,
    EventStatus,
    OutboxEvent,
    utcnow,
)
from outboxd.core.handler import FunctionHandler, Handler, HandlerOutcome, best_effort
from outboxd.core.producer import Outbox
from outboxd.core.registry import HandlerRegistry

__all__ = [
    "BackoffPolicy",
    "DEFAULT_MAX_RETRIES",
    "DispatchSummary",
    "Dispatcher",
    "DispatcherConfig",
    "DispatcherStats",
    "DuplicateEventError",
    "DuplicateHandlerError",
    "EventStatus",
    "FunctionHandler",
    "Handler",
    "HandlerOutcome",
    "HandlerRegistry",
    "HandlerTimeoutError",
    "MAX_PAYLOAD_SIZE",
    "Outbox",
    "OutboxError",
    "OutboxEvent",
    "StoreUnavailableError",
    "best_effort",
    "get_config",
    "utcnow",
]
