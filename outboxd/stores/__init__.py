"""Event store implementations for the outbox table."""

from typing import Any

from outboxd.stores.base import EventStore
from outboxd.stores.inmemory import InMemoryEventStore
from outboxd.stores.sql import SQLAlchemyEventStore

__all__ = ["EventStore", "InMemoryEventStore", "SQLAlchemyEventStore", "create_store"]


def create_store(url: str, **kwargs: Any) -> EventStore:
    """Build a store from a URL.

    - ``memory://``: InMemoryEventStore
    - ``redis://`` / ``rediss://``: RedisEventStore (requires the redis extra)
    - anything else: SQLAlchemyEventStore on an async driver URL,
      e.g. ``sqlite+aiosqlite:///outbox.db`` or ``postgresql+asyncpg://...``
    """
    scheme = url.split("://", 1)[0].lower() if "://" in url else ""
    if not scheme:
        raise ValueError(f"Store URL must include a scheme, got {url!r}")
    if scheme == "memory":
        return InMemoryEventStore()
    if scheme in ("redis", "rediss"):
        from outboxd.stores.redis_store import RedisEventStore

        return RedisEventStore(redis_url=url, **kwargs)
    return SQLAlchemyEventStore.from_url(url, **kwargs)
