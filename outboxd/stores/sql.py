"""SQLAlchemy (async) implementation of the outbox table."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Index, Integer, String, Text, func, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from outboxd.core.errors import DuplicateEventError
from outboxd.core.event import DEFAULT_MAX_RETRIES, EventStatus, OutboxEvent, ensure_utc, utcnow
from outboxd.stores.base import due_order_key

logger = logging.getLogger("outboxd.stores.sql")


class Base(DeclarativeBase):
    """Declarative base for outboxd tables."""


class OutboxRecord(Base):
    """Row of the ``outbox`` table."""

    __tablename__ = "outbox"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(255), index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON().with_variant(JSONB, "postgresql"))
    status: Mapped[EventStatus] = mapped_column(
        Enum(
            EventStatus,
            native_enum=False,
            length=16,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        default=EventStatus.PENDING,
    )
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=DEFAULT_MAX_RETRIES)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    claimed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_outbox_status_scheduled_at", "status", "scheduled_at"),
        Index("ix_outbox_status_processed_at", "status", "processed_at"),
    )


def _to_event(row: OutboxRecord) -> OutboxEvent:
    return OutboxEvent.from_stored(
        {
            "id": row.id,
            "event_type": row.event_type,
            "payload": row.payload if row.payload is not None else {},
            "status": row.status,
            "scheduled_at": ensure_utc(row.scheduled_at),
            "retry_count": row.retry_count,
            "max_retries": row.max_retries,
            "error_message": row.error_message,
            "processed_at": ensure_utc(row.processed_at) if row.processed_at else None,
            "created_at": ensure_utc(row.created_at),
            "claimed_by": row.claimed_by,
        }
    )


def _decode_rows(rows) -> tuple[list[OutboxEvent], list[tuple[str, str]]]:
    """Split rows into events and (id, error) pairs for rows that do not decode."""
    events, broken = [], []
    for row in rows:
        try:
            events.append(_to_event(row))
        except ValueError as e:
            broken.append((row.id, str(e)))
    return events, broken


def _warn_broken(broken: list[tuple[str, str]]) -> None:
    for event_id, error in broken:
        logger.warning(f"Skipping undecodable outbox row {event_id}: {error}")


class SQLAlchemyEventStore:
    """Outbox table on any SQLAlchemy async dialect.

    Claims are a single ``UPDATE ... WHERE id IN (due subquery) AND
    status = 'pending' RETURNING *`` where the dialect supports UPDATE
    RETURNING (PostgreSQL adds ``FOR UPDATE SKIP LOCKED`` to the subquery),
    and a per-row compare-and-swap update otherwise.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine

    @classmethod
    def from_url(cls, url: str, **engine_kwargs: Any) -> "SQLAlchemyEventStore":
        """Build a store owning its own engine."""
        engine = create_async_engine(url, **engine_kwargs)
        factory = async_sessionmaker(engine, expire_on_commit=False)
        return cls(factory, engine=engine)

    async def create_schema(self) -> None:
        """Create the outbox table if it does not exist."""
        if self._engine is None:
            raise RuntimeError("create_schema() requires a store built with an engine")
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def add(self, event: OutboxEvent) -> None:
        try:
            await self._insert(event)
        except IntegrityError as e:
            raise DuplicateEventError(f"Event {event.id} already exists") from e

    async def _insert(self, event: OutboxEvent) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(
                OutboxRecord(
                    id=event.id,
                    event_type=event.event_type,
                    payload=event.payload,
                    status=event.status,
                    scheduled_at=event.scheduled_at,
                    retry_count=event.retry_count,
                    max_retries=event.max_retries,
                    error_message=event.error_message,
                    processed_at=event.processed_at,
                    created_at=event.created_at,
                    claimed_by=event.claimed_by,
                )
            )

    async def get(self, event_id: str) -> OutboxEvent | None:
        async with self._session_factory() as session:
            row = await session.get(OutboxRecord, event_id)
            if row is None:
                return None
            events, broken = _decode_rows([row])
            _warn_broken(broken)
            return events[0] if events else None

    def _due_query(self, limit: int, now: datetime):
        return (
            select(OutboxRecord.id)
            .where(OutboxRecord.status == EventStatus.PENDING)
            .where(OutboxRecord.scheduled_at <= ensure_utc(now))
            .order_by(OutboxRecord.scheduled_at, OutboxRecord.created_at, OutboxRecord.id)
            .limit(limit)
        )

    async def select_due(self, limit: int, now: datetime) -> list[OutboxEvent]:
        async with self._session_factory() as session:
            ids = select(OutboxRecord).where(OutboxRecord.id.in_(self._due_query(limit, now)))
            rows = (await session.scalars(ids)).all()
            events, broken = _decode_rows(rows)
            _warn_broken(broken)
            return sorted(events, key=due_order_key)

    async def claim_due(self, limit: int, now: datetime, worker_id: str) -> list[OutboxEvent]:
        now = ensure_utc(now)
        claim_values = {
            "status": EventStatus.PROCESSING,
            "processed_at": now,
            "claimed_by": worker_id,
        }
        async with self._session_factory() as session, session.begin():
            dialect = session.bind.dialect
            due = self._due_query(limit, now)
            if dialect.name == "postgresql":
                due = due.with_for_update(skip_locked=True)

            if dialect.update_returning:
                stmt = (
                    update(OutboxRecord)
                    .where(OutboxRecord.id.in_(due.scalar_subquery()))
                    .where(OutboxRecord.status == EventStatus.PENDING)
                    .values(**claim_values)
                    .returning(OutboxRecord)
                    .execution_options(synchronize_session=False)
                )
                rows = (await session.scalars(stmt)).all()
                claimed = await self._decode_claimed(session, rows, worker_id)
            else:
                candidate_ids = (await session.scalars(due)).all()
                won = []
                for event_id in candidate_ids:
                    result = await session.execute(
                        update(OutboxRecord)
                        .where(OutboxRecord.id == event_id)
                        .where(OutboxRecord.status == EventStatus.PENDING)
                        .values(**claim_values)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        won.append(event_id)
                rows = (
                    await session.scalars(select(OutboxRecord).where(OutboxRecord.id.in_(won)))
                ).all()
                claimed = await self._decode_claimed(session, rows, worker_id)

        return sorted(claimed, key=due_order_key)

    async def _decode_claimed(
        self, session: AsyncSession, rows, worker_id: str
    ) -> list[OutboxEvent]:
        """Decode claimed rows, marking rows that do not decode as failed."""
        events, broken = _decode_rows(rows)
        for event_id, error in broken:
            await session.execute(
                update(OutboxRecord)
                .where(OutboxRecord.id == event_id)
                .where(OutboxRecord.claimed_by == worker_id)
                .values(
                    status=EventStatus.FAILED,
                    error_message=f"Undecodable outbox row: {error}",
                    claimed_by=None,
                )
                .execution_options(synchronize_session=False)
            )
            logger.error(
                f"Marked undecodable outbox row {event_id} as failed: {error}",
                extra={"event_id": event_id, "worker_id": worker_id, "status": "failed"},
            )
        return events

    async def _transition(self, event_id: str, worker_id: str, **values: Any) -> bool:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(OutboxRecord)
                .where(OutboxRecord.id == event_id)
                .where(OutboxRecord.status == EventStatus.PROCESSING)
                .where(OutboxRecord.claimed_by == worker_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def mark_completed(self, event_id: str, worker_id: str) -> bool:
        return await self._transition(
            event_id, worker_id, status=EventStatus.COMPLETED, claimed_by=None
        )

    async def reschedule(
        self,
        event_id: str,
        worker_id: str,
        retry_count: int,
        scheduled_at: datetime,
        error_message: str,
    ) -> bool:
        return await self._transition(
            event_id,
            worker_id,
            status=EventStatus.PENDING,
            retry_count=retry_count,
            scheduled_at=ensure_utc(scheduled_at),
            error_message=error_message,
            claimed_by=None,
        )

    async def mark_failed(
        self, event_id: str, worker_id: str, retry_count: int, error_message: str
    ) -> bool:
        return await self._transition(
            event_id,
            worker_id,
            status=EventStatus.FAILED,
            retry_count=retry_count,
            error_message=error_message,
            claimed_by=None,
        )

    async def release(self, event_id: str, worker_id: str) -> bool:
        return await self._transition(
            event_id, worker_id, status=EventStatus.PENDING, claimed_by=None
        )

    async def release_stale(self, older_than: datetime) -> int:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(OutboxRecord)
                .where(OutboxRecord.status == EventStatus.PROCESSING)
                .where(OutboxRecord.processed_at < ensure_utc(older_than))
                .values(status=EventStatus.PENDING, claimed_by=None)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    async def count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in EventStatus}
        async with self._session_factory() as session:
            result = await session.execute(
                select(OutboxRecord.status, func.count()).group_by(OutboxRecord.status)
            )
            for status, count in result.all():
                counts[EventStatus(status).value] = count
        return counts

    async def list_by_status(self, status: EventStatus, limit: int = 100) -> list[OutboxEvent]:
        async with self._session_factory() as session:
            rows = (
                await session.scalars(
                    select(OutboxRecord)
                    .where(OutboxRecord.status == status)
                    .order_by(OutboxRecord.created_at, OutboxRecord.id)
                    .limit(limit)
                )
            ).all()
            events, broken = _decode_rows(rows)
            _warn_broken(broken)
            return events

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Disposed outbox engine")
