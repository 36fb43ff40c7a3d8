"""
Shared fixtures for abac_authz tests.
"""

import pytest
from datetime import datetime, timezone

from abac_authz import ABACConfig
from abac_authz.storage import InMemoryABACStore


class FakeMonotonicClock:
    """Manually advanced monotonic clock for cache expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fixed_now():
    # A Wednesday
    return datetime(2024, 3, 6, 14, 30, 15, 123456, tzinfo=timezone.utc)


@pytest.fixture
def fixed_clock(fixed_now):
    return lambda: fixed_now


@pytest.fixture
def fake_clock():
    return FakeMonotonicClock()


@pytest.fixture
def quiet_config():
    """Configuration with security logging switched off."""
    return ABACConfig(logging={"enabled": False})


@pytest.fixture
def store():
    """
    Subject u1 without own attributes, role USER with clearance=2 and
    resource doc-1 owned by u1.
    """
    store = InMemoryABACStore()
    store.add_role("USER")
    store.add_subject("u1", role_id="USER")
    store.add_subject("u2", role_id="USER")
    store.assign_role_attribute("USER", "clearance", 2, type="number")
    store.add_resource("doc-1", resource_type="document", owner_id="u1")
    store.assign_resource_attribute("doc-1", "confidentiality", "internal")
    store.add_action("read")
    store.add_action("write")
    store.add_action("delete")
    return store
