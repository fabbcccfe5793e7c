"""Rental-management demo: notification handlers for lease and payment events."""

from outboxd.apps.rental.main import build_registry, run_demo

__all__ = ["build_registry", "run_demo"]
