"""outboxd - Async outbox event dispatcher with retry and backoff."""

from outboxd.core import (
    BackoffPolicy,
    Dispatcher,
    DispatcherConfig,
    DispatcherStats,
    DispatchSummary,
    DuplicateEventError,
    DuplicateHandlerError,
    EventStatus,
    FunctionHandler,
    Handler,
    HandlerOutcome,
    HandlerRegistry,
    HandlerTimeoutError,
    Outbox,
    OutboxError,
    OutboxEvent,
    StoreUnavailableError,
    best_effort,
)
from outboxd.stores import EventStore, InMemoryEventStore, SQLAlchemyEventStore, create_store

__version__ = "0.1.0"

__all__ = [
    # Core
    "OutboxEvent",
    "EventStatus",
    "Handler",
    "FunctionHandler",
    "HandlerOutcome",
    "HandlerRegistry",
    "BackoffPolicy",
    "Dispatcher",
    "DispatchSummary",
    "DispatcherStats",
    "DispatcherConfig",
    "Outbox",
    "best_effort",
    # Errors
    "OutboxError",
    "StoreUnavailableError",
    "DuplicateHandlerError",
    "DuplicateEventError",
    "HandlerTimeoutError",
    # Stores
    "EventStore",
    "InMemoryEventStore",
    "SQLAlchemyEventStore",
    "create_store",
    # Meta
    "__version__",
]
