"""Handler base class for outboxd event handlers."""

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, ClassVar

_best_effort_log = logging.getLogger("outboxd.handlers")


@dataclass(frozen=True)
class HandlerOutcome:
    """Result reported by a handler.

    Handlers may also signal failure by raising; returning ``None`` means success.
    """

    ok: bool
    reason: str | None = None

    @classmethod
    def success(cls) -> "HandlerOutcome":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> "HandlerOutcome":
        return cls(ok=False, reason=reason or "handler reported failure")


HandlerReturn = HandlerOutcome | None


class Handler(ABC):
    """Base class for outbox event handlers.

    A handler declares the event types it reacts to via the ``handles`` class
    attribute. The dispatcher only looks at whether ``handle`` succeeded; what
    the handler does is its own business. Handlers may run more than once for
    the same event and must keep their visible side effects idempotent.

    Note: Validation of ``handles`` happens in HandlerRegistry on registration.
    """

    handles: ClassVar[list[str]] = []

    def __init__(self, name: str | None = None) -> None:
        """Initialize the Handler.

        Args:
            name: Optional name for the handler. Defaults to the class name.
        """
        self.name = name or self.__class__.__name__

    @property
    def is_coroutine(self) -> bool:
        """True when ``handle`` is a coroutine function."""
        return inspect.iscoroutinefunction(self.handle)

    @abstractmethod
    def handle(
        self,
        event_type: str,
        payload: dict[str, Any],
    ) -> HandlerReturn | Awaitable[HandlerReturn]:
        """Handle one outbox event.

        Args:
            event_type: The event type being delivered.
            payload: The event payload, opaque to the dispatcher.

        Returns:
            None or a HandlerOutcome, or an awaitable resolving to the same.
        """
        ...


class FunctionHandler(Handler):
    """Adapts a plain (sync or async) callable to the Handler interface."""

    def __init__(
        self,
        func: Callable[[str, dict[str, Any]], HandlerReturn | Awaitable[HandlerReturn]],
        event_types: list[str],
        name: str | None = None,
    ) -> None:
        super().__init__(name=name or getattr(func, "__name__", None))
        self.handles = list(event_types)
        self._func = func

    @property
    def is_coroutine(self) -> bool:
        return inspect.iscoroutinefunction(self._func)

    def handle(
        self, event_type: str, payload: dict[str, Any]
    ) -> HandlerReturn | Awaitable[HandlerReturn]:
        return self._func(event_type, payload)


async def best_effort(
    step_name: str,
    step: Callable[[], Any],
    *,
    logger: logging.Logger | None = None,
    **context: Any,
) -> Any:
    """Run a secondary handler step whose failure must not fail the event.

    The exception is reported through structured logging and ``None`` is
    returned. The primary side effect of the handler stays authoritative
    for the event's outcome.

    Args:
        step_name: Label recorded in the log record.
        step: Zero-argument callable, sync or async.
        logger: Logger to report failures on. Defaults to ``outboxd.handlers``.
        **context: Extra structured fields (event_id, user_id, ...).
    """
    log = logger or _best_effort_log
    try:
        result = step()
        if inspect.isawaitable(result):
            result = await result
        return result
    except Exception as e:
        log.warning(
            f"Best-effort step {step_name} failed: {e}",
            extra={"best_effort_step": step_name, "error": str(e), **context},
        )
        return None
