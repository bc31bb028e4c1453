"""Root pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from storage_node.config import ReconciliationSettings, runtime
from storage_node.event_bus import EventBus
from tests.helpers.storage_fakes import FakeContentStore, FakeDirectory


@pytest.fixture(autouse=True)
def isolated_dotenv(monkeypatch):
    """Keep developer .env files out of configuration tests."""
    monkeypatch.setattr(runtime, "_DOTENV_CANDIDATES", ())
    runtime.reset_default_values()
    yield
    runtime.reset_default_values()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def content_store() -> FakeContentStore:
    return FakeContentStore()


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def reconciliation_settings() -> ReconciliationSettings:
    return ReconciliationSettings(
        account="alice",
        interval_seconds=60.0,
        debounce_seconds=0.0,
        pin_timeout_seconds=1.0,
        pin_attempts=3,
        pin_retry_delay_seconds=0.0,
        max_concurrent_pins=4,
    )


@pytest.fixture
def recorded_events(bus):
    """Every event published on ``bus``, in order."""
    events = []
    bus.subscribe_all(events.append)
    return events
