"""Handler registry mapping event types to handlers."""

from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from outboxd.core.errors import DuplicateHandlerError
from outboxd.core.handler import FunctionHandler, Handler, HandlerReturn

HandlerFunc = Callable[[str, dict[str, Any]], HandlerReturn | Awaitable[HandlerReturn]]


class HandlerRegistry:
    """Resolves an event type to exactly one handler."""

    def __init__(self, handlers: Iterable[Handler] = ()) -> None:
        self._handlers: dict[str, Handler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: Handler) -> Handler:
        """Register a handler for every type in its ``handles`` list.

        Raises:
            TypeError: If ``handles`` is not a list of non-empty strings.
            DuplicateHandlerError: If one of the types already has a handler.
        """
        self._validate(handler)
        for event_type in handler.handles:
            existing = self._handlers.get(event_type)
            if existing is not None and existing is not handler:
                raise DuplicateHandlerError(event_type, existing.name, handler.name)
        for event_type in handler.handles:
            self._handlers[event_type] = handler
        return handler

    def on(
        self, *event_types: str, name: str | None = None
    ) -> Callable[[HandlerFunc], HandlerFunc]:
        """Decorator registering a plain function as a handler.

        Example:
            @registry.on("Payment.Succeeded")
            async def notify_tenant(event_type, payload):
                ...
        """

        def decorator(func: HandlerFunc) -> HandlerFunc:
            self.register(FunctionHandler(func, list(event_types), name=name))
            return func

        return decorator

    def resolve(self, event_type: str) -> Handler | None:
        return self._handlers.get(event_type)

    @property
    def event_types(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, event_type: object) -> bool:
        return event_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    @staticmethod
    def _validate(handler: Handler) -> None:
        if not isinstance(handler.handles, list):
            raise TypeError(
                f"{handler.name}.handles must be a list[str], "
                f"got {type(handler.handles).__name__}"
            )
        for item in handler.handles:
            if not isinstance(item, str):
                raise TypeError(
                    f"{handler.name}.handles must contain only strings, "
                    f"found {type(item).__name__}: {item!r}"
                )
            if not item.strip():
                raise TypeError(f"{handler.name}.handles must not contain empty strings")
