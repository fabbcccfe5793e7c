"""Pytest configuration, Hypothesis profiles and shared fixtures."""

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import settings
from hypothesis import strategies as st

from outboxd.core.config import DispatcherConfig
from outboxd.core.event import OutboxEvent
from outboxd.stores.inmemory import InMemoryEventStore

# Register Hypothesis profiles
settings.register_profile("ci", max_examples=100)
settings.register_profile("dev", max_examples=20)

# Load dev profile by default, CI can override via --hypothesis-profile=ci
settings.load_profile("dev")

EPOCH = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


class FrozenClock:
    """Manually advanced clock for deterministic scheduling tests."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def valid_event_types():
    """Dotted event type names such as "Payment.Succeeded"."""
    segment = st.from_regex(r"[A-Z][A-Za-z]{0,15}", fullmatch=True)
    return st.tuples(segment, segment).map(lambda parts: ".".join(parts))


def valid_payloads():
    """Small JSON-compatible dictionaries."""
    text = st.text(alphabet=st.characters(blacklist_categories=("Cs",)), max_size=20)
    leaves = st.none() | st.booleans() | st.integers(min_value=-(2**53), max_value=2**53) | text
    values = st.recursive(
        leaves,
        lambda children: st.lists(children, max_size=3)
        | st.dictionaries(text, children, max_size=3),
        max_leaves=8,
    )
    return st.dictionaries(text, values, max_size=5)


def make_event(
    event_type: str = "Payment.Succeeded",
    scheduled_at: datetime = EPOCH,
    **fields,
) -> OutboxEvent:
    return OutboxEvent(
        event_type=event_type,
        scheduled_at=scheduled_at,
        created_at=fields.pop("created_at", EPOCH - timedelta(hours=1)),
        **fields,
    )


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio as the async backend."""
    return "asyncio"


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def config() -> DispatcherConfig:
    return DispatcherConfig(_env_file=None, json_logs=False)
