"""Outbox dispatcher.

The Dispatcher runs one pass over the outbox per invocation:
- Hands stuck claims back to pending (when a stale timeout is configured)
- Atomically claims a bounded batch of due events
- Routes each event to its handler and records the outcome on the event

IMPORTANT: Dispatcher keeps NO event state between invocations. Every
state change goes through the store, so any number of short-lived
invocations can run side by side.
"""

import asyncio
import inspect
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from uuid import uuid4

from outboxd.core.backoff import BackoffPolicy
from outboxd.core.config import DispatcherConfig
from outboxd.core.errors import HandlerTimeoutError, StoreUnavailableError
from outboxd.core.event import OutboxEvent, utcnow
from outboxd.core.handler import Handler, HandlerOutcome
from outboxd.core.logging import configure_dispatcher_logger
from outboxd.core.registry import HandlerRegistry
from outboxd.stores.base import EventStore


@dataclass
class DispatchSummary:
    """Result of one ``run_once()`` invocation.

    ``processed`` counts events that ended ``completed`` (unknown types
    included), ``failed`` counts failed attempts, whether rescheduled or
    terminal. Every claimed event lands in exactly one of ``processed``,
    ``failed``, ``deferred``, ``lost_claims`` or ``store_errors``.
    """

    processed: int = 0
    failed: int = 0
    total: int = 0
    unhandled: int = 0
    rescheduled: int = 0
    dead_lettered: int = 0
    deferred: int = 0
    reclaimed: int = 0
    lost_claims: int = 0
    store_errors: int = 0
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, int | float]:
        return asdict(self)


@dataclass
class DispatcherStats:
    """Cumulative statistics across invocations of one Dispatcher."""

    runs: int = 0
    events_claimed: int = 0
    events_completed: int = 0
    events_rescheduled: int = 0
    events_failed: int = 0
    events_unhandled: int = 0
    events_deferred: int = 0
    events_reclaimed: int = 0
    handler_errors: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    store_errors: int = 0
    lost_claims: int = 0


class Dispatcher:
    """Claims due outbox events and delivers them to registered handlers."""

    def __init__(
        self,
        store: EventStore,
        registry: HandlerRegistry,
        config: DispatcherConfig | None = None,
        backoff: BackoffPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.registry = registry
        self.config = config or DispatcherConfig()
        self.backoff = backoff or BackoffPolicy(
            base_seconds=self.config.base_backoff_seconds,
            jitter=self.config.backoff_jitter,
            max_delay_seconds=self.config.max_backoff_seconds,
        )
        self._clock = clock
        self._log = configure_dispatcher_logger(self.config.log_level, self.config.json_logs)
        self._stats = DispatcherStats()

    def get_stats(self) -> DispatcherStats:
        """Return a copy of cumulative statistics."""
        return DispatcherStats(
            runs=self._stats.runs,
            events_claimed=self._stats.events_claimed,
            events_completed=self._stats.events_completed,
            events_rescheduled=self._stats.events_rescheduled,
            events_failed=self._stats.events_failed,
            events_unhandled=self._stats.events_unhandled,
            events_deferred=self._stats.events_deferred,
            events_reclaimed=self._stats.events_reclaimed,
            handler_errors=defaultdict(int, self._stats.handler_errors),
            store_errors=self._stats.store_errors,
            lost_claims=self._stats.lost_claims,
        )

    async def _invoke_handler(self, handler: Handler, event: OutboxEvent) -> HandlerOutcome:
        """Invoke handler with timeout and normalise its result.

        Sync handlers run in a worker thread so the timeout also applies to
        them. A timed-out thread cannot be interrupted and runs to completion
        in the background.
        """
        timeout = self.config.handler_timeout_seconds
        if handler.is_coroutine:
            call = handler.handle(event.event_type, event.payload)
        else:
            call = asyncio.to_thread(handler.handle, event.event_type, event.payload)
        try:
            result = await asyncio.wait_for(call, timeout=timeout)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=timeout)
        except TimeoutError:
            raise HandlerTimeoutError(handler.name, timeout)

        if result is None:
            return HandlerOutcome.success()
        if isinstance(result, HandlerOutcome):
            return result
        raise TypeError(
            f"Handler {handler.name} must return HandlerOutcome or None, "
            f"got {type(result).__name__}"
        )

    async def run_once(self, worker_id: str | None = None) -> DispatchSummary:
        """Run one claim-and-dispatch pass.

        Raises:
            StoreUnavailableError: If the store cannot be reached to reclaim or
                claim events. Nothing has been dispatched in that case.
        """
        worker_id = worker_id or f"worker-{uuid4().hex[:8]}"
        started = time.monotonic()
        deadline = (
            started + self.config.run_budget_seconds
            if self.config.run_budget_seconds is not None
            else None
        )
        summary = DispatchSummary()
        self._stats.runs += 1

        if self.config.stale_claim_timeout_seconds is not None:
            cutoff = self._clock() - timedelta(seconds=self.config.stale_claim_timeout_seconds)
            try:
                summary.reclaimed = await self.store.release_stale(older_than=cutoff)
            except Exception as e:
                self._log.error(
                    f"Stale claim release failed: {e}",
                    extra={"worker_id": worker_id, "error": str(e)},
                )
                raise StoreUnavailableError(
                    "Event store unavailable during stale claim release",
                    operation="release_stale",
                    last_error=str(e),
                ) from e
            if summary.reclaimed:
                self._stats.events_reclaimed += summary.reclaimed
                self._log.warning(
                    f"Released {summary.reclaimed} stale claims back to pending",
                    extra={"worker_id": worker_id, "reclaimed": summary.reclaimed},
                )

        try:
            events = await self.store.claim_due(
                limit=self.config.batch_limit, now=self._clock(), worker_id=worker_id
            )
        except Exception as e:
            self._log.error(
                f"Claiming due events failed: {e}",
                extra={"worker_id": worker_id, "error": str(e)},
            )
            raise StoreUnavailableError(
                "Event store unavailable during claim",
                operation="claim_due",
                last_error=str(e),
            ) from e

        summary.total = len(events)
        self._stats.events_claimed += len(events)
        if not events:
            summary.duration_ms = (time.monotonic() - started) * 1000
            self._log.debug("No due events", extra={"worker_id": worker_id})
            return summary

        self._log.info(
            f"Claimed {len(events)} events",
            extra={"worker_id": worker_id, "claimed": len(events)},
        )

        if self.config.concurrency == 1:
            for event in events:
                await self._dispatch_within_budget(event, worker_id, deadline, summary)
        else:
            semaphore = asyncio.Semaphore(self.config.concurrency)

            async def bounded(event: OutboxEvent) -> None:
                async with semaphore:
                    await self._dispatch_within_budget(event, worker_id, deadline, summary)

            await asyncio.gather(*(bounded(event) for event in events))

        summary.duration_ms = (time.monotonic() - started) * 1000
        self._log.info(
            f"Dispatch pass finished: {summary.processed} processed, {summary.failed} failed",
            extra={"worker_id": worker_id, **summary.to_dict()},
        )
        return summary

    async def _dispatch_within_budget(
        self,
        event: OutboxEvent,
        worker_id: str,
        deadline: float | None,
        summary: DispatchSummary,
    ) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            await self._defer(event, worker_id, summary)
            return
        await self._dispatch(event, worker_id, summary)

    async def _defer(self, event: OutboxEvent, worker_id: str, summary: DispatchSummary) -> None:
        """Hand an unstarted event back to pending without counting an attempt."""
        try:
            released = await self.store.release(event.id, worker_id)
        except Exception as e:
            self._record_store_error(event, worker_id, "release", e, summary)
            return
        if not released:
            self._record_lost_claim(event, worker_id, "release", summary)
            return
        summary.deferred += 1
        self._stats.events_deferred += 1
        self._log.info(
            f"Run budget exhausted, released {event.event_type}",
            extra={"event_id": event.id, "event_type": event.event_type, "worker_id": worker_id},
        )

    async def _dispatch(self, event: OutboxEvent, worker_id: str, summary: DispatchSummary) -> None:
        handler = self.registry.resolve(event.event_type)

        if handler is None:
            self._log.warning(
                f"No handler registered for {event.event_type}, completing as no-op",
                extra={
                    "event_id": event.id,
                    "event_type": event.event_type,
                    "worker_id": worker_id,
                },
            )
            if await self._write(event, worker_id, "mark_completed", summary):
                summary.processed += 1
                summary.unhandled += 1
                self._stats.events_completed += 1
                self._stats.events_unhandled += 1
            return

        self._log.info(
            f"Dispatching {event.event_type} to {handler.name}",
            extra={
                "event_id": event.id,
                "event_type": event.event_type,
                "handler": handler.name,
                "retry_count": event.retry_count,
                "worker_id": worker_id,
            },
        )

        try:
            outcome = await self._invoke_handler(handler, event)
        except Exception as e:
            outcome = HandlerOutcome.failure(str(e) or type(e).__name__)

        if outcome.ok:
            if await self._write(event, worker_id, "mark_completed", summary):
                summary.processed += 1
                self._stats.events_completed += 1
                self._log.info(
                    f"Handler {handler.name} completed {event.event_type}",
                    extra={
                        "event_id": event.id,
                        "event_type": event.event_type,
                        "handler": handler.name,
                        "status": "completed",
                        "worker_id": worker_id,
                    },
                )
            return

        self._stats.handler_errors[handler.name] += 1
        await self._record_failure(event, handler, outcome.reason or "", worker_id, summary)

    async def _record_failure(
        self,
        event: OutboxEvent,
        handler: Handler,
        reason: str,
        worker_id: str,
        summary: DispatchSummary,
    ) -> None:
        retry_count = event.retry_count + 1
        extra = {
            "event_id": event.id,
            "event_type": event.event_type,
            "handler": handler.name,
            "retry_count": retry_count,
            "worker_id": worker_id,
            "error": reason,
        }

        if retry_count >= event.max_retries:
            if await self._write(
                event,
                worker_id,
                "mark_failed",
                summary,
                retry_count=retry_count,
                error_message=reason,
            ):
                summary.failed += 1
                summary.dead_lettered += 1
                self._stats.events_failed += 1
                self._log.error(
                    f"Handler {handler.name} failed {event.event_type} "
                    f"({retry_count}/{event.max_retries}), giving up: {reason}",
                    extra={**extra, "status": "failed"},
                )
            return

        next_attempt = self.backoff.next_attempt_at(retry_count, now=self._clock())
        if await self._write(
            event,
            worker_id,
            "reschedule",
            summary,
            retry_count=retry_count,
            scheduled_at=next_attempt,
            error_message=reason,
        ):
            summary.failed += 1
            summary.rescheduled += 1
            self._stats.events_rescheduled += 1
            self._log.warning(
                f"Handler {handler.name} failed {event.event_type} "
                f"({retry_count}/{event.max_retries}), retrying at {next_attempt.isoformat()}: "
                f"{reason}",
                extra={**extra, "status": "pending", "scheduled_at": next_attempt.isoformat()},
            )

    async def _write(
        self,
        event: OutboxEvent,
        worker_id: str,
        operation: str,
        summary: DispatchSummary,
        **kwargs,
    ) -> bool:
        """Apply a fenced outcome write; False if it did not land."""
        try:
            applied = await getattr(self.store, operation)(event.id, worker_id, **kwargs)
        except Exception as e:
            self._record_store_error(event, worker_id, operation, e, summary)
            return False
        if not applied:
            self._record_lost_claim(event, worker_id, operation, summary)
            return False
        return True

    def _record_store_error(
        self,
        event: OutboxEvent,
        worker_id: str,
        operation: str,
        error: Exception,
        summary: DispatchSummary,
    ) -> None:
        # Event stays processing until the stale claim timeout hands it back
        summary.store_errors += 1
        self._stats.store_errors += 1
        self._log.error(
            f"Store {operation} failed for {event.event_type}: {error}",
            extra={
                "event_id": event.id,
                "event_type": event.event_type,
                "worker_id": worker_id,
                "operation": operation,
                "error": str(error),
            },
        )

    def _record_lost_claim(
        self, event: OutboxEvent, worker_id: str, operation: str, summary: DispatchSummary
    ) -> None:
        summary.lost_claims += 1
        self._stats.lost_claims += 1
        self._log.warning(
            f"Claim on {event.event_type} lost before {operation}, outcome discarded",
            extra={
                "event_id": event.id,
                "event_type": event.event_type,
                "worker_id": worker_id,
                "operation": operation,
            },
        )
