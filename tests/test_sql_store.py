"""Tests for SQLAlchemyEventStore on sqlite+aiosqlite."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import insert

from outboxd.core.config import DispatcherConfig
from outboxd.core.dispatcher import Dispatcher
from outboxd.core.errors import DuplicateEventError
from outboxd.core.event import EventStatus
from outboxd.core.registry import HandlerRegistry
from outboxd.stores import create_store
from outboxd.stores.base import EventStore
from outboxd.stores.sql import OutboxRecord, SQLAlchemyEventStore
from tests.conftest import EPOCH, FrozenClock, make_event


@pytest.fixture
async def sql_store(tmp_path):
    store = SQLAlchemyEventStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'outbox.db'}")
    await store.create_schema()
    yield store
    await store.close()


def test_satisfies_event_store_protocol(tmp_path):
    store = SQLAlchemyEventStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'p.db'}")
    assert isinstance(store, EventStore)


def test_factory_builds_sql_store_for_driver_urls(tmp_path):
    store = create_store(f"sqlite+aiosqlite:///{tmp_path / 'f.db'}")
    assert isinstance(store, SQLAlchemyEventStore)


class TestPersistence:
    async def test_roundtrip_preserves_fields(self, sql_store):
        event = make_event(
            payload={"tenant_id": "t-1", "amount": 850, "tags": ["rent", "october"]},
            max_retries=5,
        )
        await sql_store.add(event)

        stored = await sql_store.get(event.id)

        assert stored == event
        assert stored.scheduled_at.tzinfo is not None

    async def test_duplicate_id_rejected(self, sql_store):
        event = make_event()
        await sql_store.add(event)
        with pytest.raises(DuplicateEventError):
            await sql_store.add(event)

    async def test_create_schema_is_idempotent(self, sql_store):
        await sql_store.create_schema()
        assert await sql_store.count_by_status() == {
            "pending": 0,
            "processing": 0,
            "completed": 0,
            "failed": 0,
        }

    async def test_create_schema_needs_engine(self, sql_store):
        borrowed = SQLAlchemyEventStore(sql_store._session_factory)
        with pytest.raises(RuntimeError):
            await borrowed.create_schema()


class TestClaims:
    async def test_select_due_is_ordered_and_side_effect_free(self, sql_store):
        later = make_event(scheduled_at=EPOCH - timedelta(minutes=1))
        earlier = make_event(scheduled_at=EPOCH - timedelta(minutes=5))
        future = make_event(scheduled_at=EPOCH + timedelta(minutes=5))
        for event in (later, earlier, future):
            await sql_store.add(event)

        selected = await sql_store.select_due(10, EPOCH)

        assert [e.id for e in selected] == [earlier.id, later.id]
        assert (await sql_store.count_by_status())["pending"] == 3

    async def test_claim_marks_processing_in_due_order(self, sql_store):
        events = [make_event(scheduled_at=EPOCH - timedelta(seconds=s)) for s in (1, 9, 5)]
        for event in events:
            await sql_store.add(event)

        claimed = await sql_store.claim_due(2, EPOCH, "worker-a")

        assert [e.id for e in claimed] == [events[1].id, events[2].id]
        assert all(e.status == EventStatus.PROCESSING for e in claimed)
        assert all(e.claimed_by == "worker-a" for e in claimed)
        assert all(e.processed_at == EPOCH for e in claimed)

    async def test_second_claim_sees_nothing(self, sql_store):
        await sql_store.add(make_event())
        assert len(await sql_store.claim_due(10, EPOCH, "worker-a")) == 1
        assert await sql_store.claim_due(10, EPOCH, "worker-b") == []


class TestTransitions:
    async def _claimed(self, store):
        event = make_event()
        await store.add(event)
        [claimed] = await store.claim_due(1, EPOCH, "worker-a")
        return claimed

    async def test_reschedule_fenced_by_worker(self, sql_store):
        event = await self._claimed(sql_store)
        next_at = EPOCH + timedelta(minutes=2)

        assert not await sql_store.reschedule(event.id, "worker-b", 1, next_at, "nope")
        assert await sql_store.reschedule(event.id, "worker-a", 1, next_at, "smtp down")

        stored = await sql_store.get(event.id)
        assert stored.status == EventStatus.PENDING
        assert stored.retry_count == 1
        assert stored.scheduled_at == next_at
        assert stored.error_message == "smtp down"
        assert stored.claimed_by is None

    async def test_mark_failed_is_terminal(self, sql_store):
        event = await self._claimed(sql_store)
        assert await sql_store.mark_failed(event.id, "worker-a", 3, "gave up")
        assert not await sql_store.mark_completed(event.id, "worker-a")

        failed = await sql_store.list_by_status(EventStatus.FAILED)
        assert [e.id for e in failed] == [event.id]
        assert failed[0].error_message == "gave up"

    async def test_release_stale_keeps_retry_count(self, sql_store):
        event = make_event(retry_count=2)
        await sql_store.add(event)
        await sql_store.claim_due(1, EPOCH, "crashed")

        assert await sql_store.release_stale(EPOCH - timedelta(minutes=1)) == 0
        assert await sql_store.release_stale(EPOCH + timedelta(minutes=1)) == 1

        stored = await sql_store.get(event.id)
        assert stored.status == EventStatus.PENDING
        assert stored.retry_count == 2
        assert not await sql_store.mark_completed(event.id, "crashed")


async def test_dispatcher_end_to_end_on_sqlite(sql_store):
    registry = HandlerRegistry()
    delivered = []

    @registry.on("Payment.Succeeded")
    async def deliver(event_type, payload):
        if payload.get("fail"):
            raise ConnectionError("push gateway down")
        delivered.append(payload["n"])

    for n in range(3):
        await sql_store.add(
            make_event(payload={"n": n}, scheduled_at=EPOCH - timedelta(seconds=3 - n))
        )
    await sql_store.add(make_event(payload={"n": 99, "fail": True}))

    clock = FrozenClock()
    dispatcher = Dispatcher(
        sql_store,
        registry,
        config=DispatcherConfig(_env_file=None, json_logs=False),
        clock=clock,
    )
    summary = await dispatcher.run_once()

    assert (summary.total, summary.processed, summary.rescheduled) == (4, 3, 1)
    assert delivered == [0, 1, 2]
    counts = await sql_store.count_by_status()
    assert counts["completed"] == 3
    assert counts["pending"] == 1


class TestForeignRows:
    async def _insert_raw(self, sql_store, **values):
        row = {
            "event_type": "Payment.Succeeded",
            "payload": {},
            "status": EventStatus.PENDING,
            "scheduled_at": EPOCH - timedelta(minutes=5),
            "retry_count": 0,
            "max_retries": 3,
            "created_at": EPOCH - timedelta(hours=1),
            **values,
        }
        async with sql_store._session_factory() as session, session.begin():
            await session.execute(insert(OutboxRecord).values(**row))

    async def test_non_uuid4_row_is_dispatched_with_the_rest(self, sql_store):
        legacy_id = str(uuid.uuid1())
        await self._insert_raw(sql_store, id=legacy_id, payload={"n": 1})
        good = make_event(payload={"n": 2})
        await sql_store.add(good)

        registry = HandlerRegistry()
        delivered = []

        @registry.on("Payment.Succeeded")
        async def deliver(event_type, payload):
            delivered.append(payload["n"])

        dispatcher = Dispatcher(
            sql_store,
            registry,
            config=DispatcherConfig(_env_file=None, json_logs=False),
            clock=FrozenClock(),
        )
        summary = await dispatcher.run_once()

        assert (summary.total, summary.processed) == (2, 2)
        assert delivered == [1, 2]
        assert (await sql_store.get(legacy_id)).status == EventStatus.COMPLETED
        assert (await sql_store.get(good.id)).status == EventStatus.COMPLETED

    async def test_undecodable_row_is_failed_and_does_not_block_claim(self, sql_store):
        await self._insert_raw(sql_store, id="broken-1", payload=["not", "an", "object"])
        good = make_event()
        await sql_store.add(good)

        claimed = await sql_store.claim_due(10, EPOCH, "worker-a")

        assert [e.id for e in claimed] == [good.id]
        assert await sql_store.claim_due(10, EPOCH, "worker-b") == []
        counts = await sql_store.count_by_status()
        assert counts["failed"] == 1
        assert counts["processing"] == 1
        assert await sql_store.list_by_status(EventStatus.FAILED) == []
        assert await sql_store.get("broken-1") is None
