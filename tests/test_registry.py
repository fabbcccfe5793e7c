"""Tests for HandlerRegistry."""

import pytest

from outboxd.core.errors import DuplicateHandlerError
from outboxd.core.handler import FunctionHandler, Handler, HandlerOutcome
from outboxd.core.registry import HandlerRegistry


class PaymentHandler(Handler):
    handles = ["Payment.Succeeded", "Payment.Received"]

    def handle(self, event_type, payload):
        return None


class OtherPaymentHandler(Handler):
    handles = ["Payment.Received"]

    def handle(self, event_type, payload):
        return None


class TestRegistration:
    def test_resolves_every_declared_type(self):
        handler = PaymentHandler()
        registry = HandlerRegistry([handler])

        assert registry.resolve("Payment.Succeeded") is handler
        assert registry.resolve("Payment.Received") is handler
        assert len(registry) == 2
        assert registry.event_types == ["Payment.Received", "Payment.Succeeded"]

    def test_unknown_type_resolves_to_none(self):
        registry = HandlerRegistry([PaymentHandler()])
        assert registry.resolve("Lease.Activated") is None
        assert "Lease.Activated" not in registry

    def test_duplicate_type_rejected(self):
        registry = HandlerRegistry([PaymentHandler()])

        with pytest.raises(DuplicateHandlerError) as exc_info:
            registry.register(OtherPaymentHandler())

        assert exc_info.value.event_type == "Payment.Received"
        assert "PaymentHandler" in str(exc_info.value)

    def test_failed_registration_leaves_registry_untouched(self):
        class Mixed(Handler):
            handles = ["Lease.Activated", "Payment.Received"]

            def handle(self, event_type, payload):
                return None

        registry = HandlerRegistry([PaymentHandler()])
        with pytest.raises(DuplicateHandlerError):
            registry.register(Mixed())

        assert "Lease.Activated" not in registry

    def test_registering_same_instance_twice_is_idempotent(self):
        handler = PaymentHandler()
        registry = HandlerRegistry([handler])
        registry.register(handler)
        assert len(registry) == 2


class TestHandlesValidation:
    def test_handles_must_be_list(self):
        class TupleHandler(Handler):
            handles = ("Payment.Succeeded",)

            def handle(self, event_type, payload):
                return None

        with pytest.raises(TypeError, match="must be a list"):
            HandlerRegistry([TupleHandler()])

    def test_handles_entries_must_be_strings(self):
        class IntHandler(Handler):
            handles = ["Payment.Succeeded", 42]

            def handle(self, event_type, payload):
                return None

        with pytest.raises(TypeError, match="only strings"):
            HandlerRegistry([IntHandler()])

    def test_handles_entries_must_not_be_blank(self):
        class BlankHandler(Handler):
            handles = ["  "]

            def handle(self, event_type, payload):
                return None

        with pytest.raises(TypeError, match="empty"):
            HandlerRegistry([BlankHandler()])


class TestDecorator:
    def test_on_registers_function_handler(self):
        registry = HandlerRegistry()

        @registry.on("Lease.Activated", "Lease.Renewed")
        async def notify_tenant(event_type, payload):
            return HandlerOutcome.success()

        handler = registry.resolve("Lease.Renewed")
        assert isinstance(handler, FunctionHandler)
        assert handler.name == "notify_tenant"
        assert registry.resolve("Lease.Activated") is handler

    def test_on_returns_original_function(self):
        registry = HandlerRegistry()

        def audit(event_type, payload):
            return None

        assert registry.on("Audit.Logged", name="auditor")(audit) is audit
        assert registry.resolve("Audit.Logged").name == "auditor"
