"""Shared fixtures for flow limiter tests."""

import pytest

from flowlimiter.core.store import InMemoryStore


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.25):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """In-memory store sharing the fake clock with the limiters."""
    return InMemoryStore(clock=clock)
