"""Exception types raised by outboxd."""


class OutboxError(Exception):
    """Base class for outboxd errors."""


class StoreUnavailableError(OutboxError):
    """Raised when the event store cannot be reached for a claim or reclaim.

    The whole invocation is abandoned; the external scheduler is expected to
    trigger it again later.

    Attributes:
        operation: The store operation that failed.
        last_error: The underlying exception message.
    """

    def __init__(self, message: str, operation: str = "", last_error: str | None = None):
        self.operation = operation
        self.last_error = last_error
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.last_error:
            return f"{base} (last error: {self.last_error})"
        return base


class DuplicateHandlerError(OutboxError, ValueError):
    """Raised when a second handler is registered for the same event type."""

    def __init__(self, event_type: str, existing: str, new: str):
        self.event_type = event_type
        super().__init__(
            f"event type {event_type!r} already handled by {existing}, cannot register {new}"
        )


class HandlerTimeoutError(OutboxError, TimeoutError):
    """Raised when a handler exceeds its time allowance."""

    def __init__(self, handler_name: str, timeout: float):
        self.handler_name = handler_name
        self.timeout = timeout
        super().__init__(f"Handler {handler_name} timed out after {timeout}s")


class DuplicateEventError(OutboxError):
    """Raised when an event id is added to a store twice."""
