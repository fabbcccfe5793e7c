"""Redis implementation of the outbox table.

Layout (all keys under ``key_prefix``):
- ``{prefix}:event:{id}``: hash holding the event fields
- ``{prefix}:pending``: sorted set of pending ids scored by ``scheduled_at``
- ``{prefix}:processing``: sorted set of claimed ids scored by ``processed_at``
- ``{prefix}:completed`` / ``{prefix}:failed``: sorted sets scored by transition time

Claims and transitions run as Lua scripts, so each one is atomic on the
server. Scripts build event keys from the prefix and are therefore not
Redis Cluster safe; use a single node or a hash-tagged prefix.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any
from urllib.parse import urlparse, urlunparse

from outboxd.core.errors import DuplicateEventError
from outboxd.core.event import EventStatus, OutboxEvent, ensure_utc, utcnow
from outboxd.stores.base import due_order_key

try:
    import redis.asyncio as redis
except ImportError as e:
    raise ImportError(
        "Redis store requires the 'redis' package. "
        "Install it with: pip install outboxd[redis]"
    ) from e

logger = logging.getLogger("outboxd.stores.redis")

_ADD_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then return 0 end
redis.call('HSET', KEYS[1], unpack(ARGV, 3))
redis.call('ZADD', KEYS[2], ARGV[1], ARGV[2])
return 1
"""

_CLAIM_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[2]))
local claimed = {}
for _, id in ipairs(ids) do
  local key = ARGV[4] .. id
  redis.call('ZREM', KEYS[1], id)
  if redis.call('HGET', key, 'status') == 'pending' then
    redis.call('ZADD', KEYS[2], ARGV[1], id)
    redis.call('HSET', key, 'status', 'processing', 'processed_at', ARGV[5], 'claimed_by', ARGV[3])
    table.insert(claimed, id)
  end
end
return claimed
"""

_TRANSITION_SCRIPT = """
if redis.call('HGET', KEYS[1], 'status') ~= 'processing' then return 0 end
if redis.call('HGET', KEYS[1], 'claimed_by') ~= ARGV[1] then return 0 end
redis.call('ZREM', KEYS[2], ARGV[2])
redis.call('ZADD', KEYS[3], ARGV[3], ARGV[2])
redis.call('HDEL', KEYS[1], 'claimed_by')
if #ARGV > 3 then redis.call('HSET', KEYS[1], unpack(ARGV, 4)) end
return 1
"""

_RELEASE_STALE_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', '(' .. ARGV[1])
for _, id in ipairs(ids) do
  local key = ARGV[2] .. id
  redis.call('ZREM', KEYS[1], id)
  redis.call('HSET', key, 'status', 'pending')
  redis.call('HDEL', key, 'claimed_by')
  local scheduled = redis.call('HGET', key, 'scheduled_score')
  redis.call('ZADD', KEYS[2], scheduled, id)
end
return #ids
"""


def _sanitize_url(url: str) -> str:
    """Mask password in Redis URL for logging."""
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = f"{parsed.username or ''}:****@{parsed.hostname}"
            if parsed.port:
                netloc += f":{parsed.port}"
            return urlunparse(
                (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
            )
        return f"{parsed.hostname}:{parsed.port or 6379}"
    except Exception:
        return "<url>"


def _score(value: datetime) -> str:
    return repr(ensure_utc(value).timestamp())


def _decode_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


class RedisEventStore:
    """Outbox table kept in Redis hashes and sorted sets."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "outboxd",
        pool_size: int = 10,
        client: Any = None,
    ) -> None:
        """Initialize the Redis store.

        Args:
            redis_url: Redis connection URL.
            key_prefix: Prefix of every key the store touches.
            pool_size: Connection pool size.
            client: Pre-built ``redis.asyncio.Redis`` client (must decode responses).
        """
        self._url = redis_url
        self._url_safe = _sanitize_url(redis_url)
        self.key_prefix = key_prefix
        self._pool_size = pool_size
        self._client = client
        self._conn_lock = asyncio.Lock()
        self._add_script: Any = None
        self._claim: Any = None
        self._transition_script: Any = None
        self._release_stale: Any = None

    def _key(self, suffix: str) -> str:
        return f"{self.key_prefix}:{suffix}"

    def _event_key(self, event_id: str) -> str:
        return self._key(f"event:{event_id}")

    def _status_key(self, status: EventStatus) -> str:
        return self._key(status.value)

    async def _get_client(self) -> Any:
        if self._client is not None and self._claim is not None:
            return self._client
        async with self._conn_lock:
            if self._client is None:
                pool = redis.ConnectionPool.from_url(
                    self._url, max_connections=self._pool_size, decode_responses=True
                )
                self._client = redis.Redis(connection_pool=pool)
                logger.info(f"Connected to Redis at {self._url_safe}")
            if self._claim is None:
                self._add_script = self._client.register_script(_ADD_SCRIPT)
                self._claim = self._client.register_script(_CLAIM_SCRIPT)
                self._transition_script = self._client.register_script(_TRANSITION_SCRIPT)
                self._release_stale = self._client.register_script(_RELEASE_STALE_SCRIPT)
        return self._client

    def _serialize(self, event: OutboxEvent) -> dict[str, str]:
        data = {
            "id": event.id,
            "event_type": event.event_type,
            "payload": json.dumps(event.payload),
            "status": event.status.value,
            "scheduled_at": event.scheduled_at.isoformat(),
            "scheduled_score": _score(event.scheduled_at),
            "retry_count": str(event.retry_count),
            "max_retries": str(event.max_retries),
            "created_at": event.created_at.isoformat(),
        }
        if event.error_message is not None:
            data["error_message"] = event.error_message
        if event.processed_at is not None:
            data["processed_at"] = event.processed_at.isoformat()
        if event.claimed_by is not None:
            data["claimed_by"] = event.claimed_by
        return data

    @staticmethod
    def _deserialize(data: dict[str, str]) -> OutboxEvent:
        return OutboxEvent.from_stored(
            {
                "id": data["id"],
                "event_type": data["event_type"],
                "payload": json.loads(data["payload"]),
                "status": EventStatus(data["status"]),
                "scheduled_at": _decode_dt(data["scheduled_at"]),
                "retry_count": int(data["retry_count"]),
                "max_retries": int(data["max_retries"]),
                "error_message": data.get("error_message"),
                "processed_at": _decode_dt(data.get("processed_at")),
                "created_at": _decode_dt(data["created_at"]),
                "claimed_by": data.get("claimed_by"),
            }
        )

    def _index_score(self, event: OutboxEvent) -> str:
        if event.status == EventStatus.PENDING:
            return _score(event.scheduled_at)
        if event.status == EventStatus.PROCESSING and event.processed_at is not None:
            return _score(event.processed_at)
        return _score(event.created_at)

    async def add(self, event: OutboxEvent) -> None:
        await self._get_client()
        pairs = [part for item in self._serialize(event).items() for part in item]
        added = await self._add_script(
            keys=[self._event_key(event.id), self._status_key(event.status)],
            args=[self._index_score(event), event.id, *pairs],
        )
        if not added:
            raise DuplicateEventError(f"Event {event.id} already exists")
        logger.debug(f"Added {event.id} to {self.key_prefix}")

    async def _load_decoded(
        self, event_ids: list[str]
    ) -> tuple[list[OutboxEvent], list[tuple[str, str]]]:
        """Load events, returning (id, error) pairs for hashes that do not decode."""
        if not event_ids:
            return [], []
        client = await self._get_client()
        async with client.pipeline(transaction=False) as pipe:
            for event_id in event_ids:
                pipe.hgetall(self._event_key(event_id))
            rows = await pipe.execute()
        events, broken = [], []
        for event_id, row in zip(event_ids, rows):
            if not row:
                continue
            try:
                events.append(self._deserialize(row))
            except (KeyError, ValueError) as e:
                broken.append((event_id, f"{type(e).__name__}: {e}"))
        return events, broken

    async def _load(self, event_ids: list[str]) -> list[OutboxEvent]:
        events, broken = await self._load_decoded(event_ids)
        for event_id, error in broken:
            logger.warning(f"Skipping undecodable outbox event {event_id}: {error}")
        return events

    async def get(self, event_id: str) -> OutboxEvent | None:
        events = await self._load([event_id])
        return events[0] if events else None

    async def select_due(self, limit: int, now: datetime) -> list[OutboxEvent]:
        client = await self._get_client()
        ids = await client.zrangebyscore(
            self._status_key(EventStatus.PENDING), "-inf", _score(now), start=0, num=limit
        )
        events = [e for e in await self._load(ids) if e.is_due(now)]
        return sorted(events, key=due_order_key)

    async def claim_due(self, limit: int, now: datetime, worker_id: str) -> list[OutboxEvent]:
        await self._get_client()
        now = ensure_utc(now)
        ids = await self._claim(
            keys=[self._status_key(EventStatus.PENDING), self._status_key(EventStatus.PROCESSING)],
            args=[_score(now), limit, worker_id, self._key("event:"), now.isoformat()],
        )
        events, broken = await self._load_decoded(list(ids))
        for event_id, error in broken:
            await self._transition(
                event_id,
                worker_id,
                EventStatus.FAILED,
                error_message=f"Undecodable outbox event: {error}",
            )
            logger.error(
                f"Marked undecodable outbox event {event_id} as failed: {error}",
                extra={"event_id": event_id, "worker_id": worker_id, "status": "failed"},
            )
        return sorted(events, key=due_order_key)

    async def _transition(
        self, event_id: str, worker_id: str, target: EventStatus, **fields: Any
    ) -> bool:
        await self._get_client()
        score = fields.pop("score", None) or _score(utcnow())
        pairs: list[str] = ["status", target.value]
        for name, value in fields.items():
            pairs.extend([name, str(value)])
        applied = await self._transition_script(
            keys=[
                self._event_key(event_id),
                self._status_key(EventStatus.PROCESSING),
                self._status_key(target),
            ],
            args=[worker_id, event_id, score, *pairs],
        )
        return bool(applied)

    async def mark_completed(self, event_id: str, worker_id: str) -> bool:
        return await self._transition(event_id, worker_id, EventStatus.COMPLETED)

    async def reschedule(
        self,
        event_id: str,
        worker_id: str,
        retry_count: int,
        scheduled_at: datetime,
        error_message: str,
    ) -> bool:
        scheduled_at = ensure_utc(scheduled_at)
        return await self._transition(
            event_id,
            worker_id,
            EventStatus.PENDING,
            score=_score(scheduled_at),
            retry_count=retry_count,
            scheduled_at=scheduled_at.isoformat(),
            scheduled_score=_score(scheduled_at),
            error_message=error_message,
        )

    async def mark_failed(
        self, event_id: str, worker_id: str, retry_count: int, error_message: str
    ) -> bool:
        return await self._transition(
            event_id,
            worker_id,
            EventStatus.FAILED,
            retry_count=retry_count,
            error_message=error_message,
        )

    async def release(self, event_id: str, worker_id: str) -> bool:
        event = await self.get(event_id)
        if event is None:
            return False
        return await self._transition(
            event_id, worker_id, EventStatus.PENDING, score=_score(event.scheduled_at)
        )

    async def release_stale(self, older_than: datetime) -> int:
        await self._get_client()
        released = await self._release_stale(
            keys=[self._status_key(EventStatus.PROCESSING), self._status_key(EventStatus.PENDING)],
            args=[_score(older_than), self._key("event:")],
        )
        return int(released)

    async def count_by_status(self) -> dict[str, int]:
        client = await self._get_client()
        async with client.pipeline(transaction=False) as pipe:
            for status in EventStatus:
                pipe.zcard(self._status_key(status))
            counts = await pipe.execute()
        return {status.value: int(count) for status, count in zip(EventStatus, counts)}

    async def list_by_status(self, status: EventStatus, limit: int = 100) -> list[OutboxEvent]:
        """Return up to ``limit`` events in ``status``, ordered by their index score."""
        client = await self._get_client()
        ids = await client.zrange(self._status_key(status), 0, limit - 1)
        return await self._load(list(ids))

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._claim = None
            logger.info("Closed Redis connection")

    async def delete_all(self) -> None:
        """Delete every key under the prefix (for testing)."""
        client = await self._get_client()
        keys = [k async for k in client.scan_iter(match=f"{self.key_prefix}:*")]
        if keys:
            await client.delete(*keys)